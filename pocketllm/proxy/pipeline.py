"""Per-request chat lifecycle.

`prepare()` does everything that must happen before the event stream opens
(cache key, cache lookup, user turn); failures there are reported to the
client as a plain HTTP error. `astream()` then produces the event sequence:

    hit:   token* -> done
    miss:  token* -> done     (engine completed; transcript + cache committed)
           token* -> error    (engine failed; nothing committed)

Exactly one terminal event is yielded. If the consumer stops iterating
early (client disconnect), the upstream stream is closed and nothing is
committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator

from .cache import CacheAsideController
from .cache_key import derive_cache_key
from .inference import InferenceClient, InferenceError, MalformedLine
from .metrics import ProxyMetrics
from .sessions import SessionLedger
from .types import CacheEntry, ChatCompletionRequest, DoneEvent, ErrorEvent, StreamEvent, TokenEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedChat:
    request: ChatCompletionRequest
    key: str
    entry: CacheEntry | None

    @property
    def cache_hit(self) -> bool:
        return self.entry is not None


class ChatPipeline:
    def __init__(
        self,
        *,
        ledger: SessionLedger,
        cache: CacheAsideController,
        inference: InferenceClient,
        metrics: ProxyMetrics,
    ) -> None:
        self._ledger = ledger
        self._cache = cache
        self._inference = inference
        self._metrics = metrics

    async def prepare(self, request: ChatCompletionRequest) -> PreparedChat:
        self._metrics.incr("requests")

        # Key derivation and lookup come first so a failure there records no turn.
        key = derive_cache_key(request.prompt, request.system, request.params)
        entry = await self._cache.lookup(key)

        if request.session_id:
            await self._ledger.append_turn(request.session_id, "user", request.prompt)

        logger.debug("cache %s for %s…", "hit" if entry is not None else "miss", key[:12])
        return PreparedChat(request=request, key=key, entry=entry)

    async def astream(self, prepared: PreparedChat) -> AsyncIterator[StreamEvent]:
        if prepared.entry is not None:
            events = self._replay(prepared, prepared.entry)
        else:
            events = self._generate(prepared)

        # An early exit must close the inner generator, and with it the upstream stream.
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()

    async def _replay(self, prepared: PreparedChat, entry: CacheEntry) -> AsyncIterator[StreamEvent]:
        self._metrics.incr("cache_hits")
        for token in entry.tokens:
            yield TokenEvent(token)

        await self._commit_transcript(prepared, entry.text)
        yield DoneEvent()

    async def _generate(self, prepared: PreparedChat) -> AsyncIterator[StreamEvent]:
        self._metrics.incr("cache_misses")
        req = prepared.request

        tokens: list[str] = []
        completed = False
        upstream = self._inference.astream_generate(
            req.prompt,
            req.system,
            req.params,
            on_malformed=self._count_malformed,
        )
        try:
            async for event in upstream:
                if isinstance(event, TokenEvent):
                    tokens.append(event.token)
                    self._metrics.incr("tokens_streamed")
                    yield event
                    continue
                if isinstance(event, DoneEvent):
                    completed = True
                    break
        except InferenceError as exc:
            self._metrics.incr("errors")
            logger.warning("Inference stream failed after %d tokens: %s", len(tokens), exc)
            yield ErrorEvent(f"stream error: {exc}")
            return
        except Exception as exc:
            self._metrics.incr("errors")
            logger.exception("Unexpected failure while streaming from the engine")
            yield ErrorEvent(f"stream error: {exc}")
            return
        finally:
            await upstream.aclose()

        if not completed:
            self._metrics.incr("errors")
            yield ErrorEvent("stream error: engine stream ended without a completion signal")
            return

        await self._commit_transcript(prepared, "".join(tokens))
        try:
            await self._cache.record(prepared.key, tokens)
        except Exception:
            # The client already has the full response; only the cache write is lost.
            self._metrics.incr("errors")
            logger.warning("Failed to write cache entry %s…", prepared.key[:12], exc_info=True)

        yield DoneEvent()

    async def _commit_transcript(self, prepared: PreparedChat, text: str) -> None:
        session_id = prepared.request.session_id
        if not session_id:
            return
        try:
            await self._ledger.append_turn(session_id, "assistant", text)
        except Exception:
            self._metrics.incr("errors")
            logger.warning("Failed to append assistant turn to session %s", session_id, exc_info=True)

    def _count_malformed(self, line: MalformedLine) -> None:
        self._metrics.incr("malformed_fragments")
