"""Streaming client for an Ollama-compatible inference engine.

The engine answers `POST /api/generate` with newline-delimited JSON. Each
line may carry a text fragment (`response`) and/or a completion flag
(`done`). Lines are parsed independently and best-effort: a line that does
not decode to a JSON object is reported as `MalformedLine` and skipped.

No client-side timeout is applied; long generations are bounded only by the
engine. Closing the async iterator (or cancelling the task consuming it)
closes the upstream HTTP stream.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

import httpx

from .types import DoneEvent, GenerationParams, TokenEvent

logger = logging.getLogger(__name__)

SYSTEM_SEPARATOR = "\n\n"


class InferenceError(RuntimeError):
    pass


@dataclass(frozen=True)
class EngineFragment:
    """A successfully parsed engine line."""

    text: str
    done: bool = False


@dataclass(frozen=True)
class MalformedLine:
    """A line that could not be parsed; kept so callers can count it."""

    raw: str
    reason: str


ParsedLine = EngineFragment | MalformedLine


def parse_line(line: str) -> ParsedLine:
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as exc:
        return MalformedLine(raw=line, reason=f"invalid json: {exc.msg}")
    if not isinstance(obj, dict):
        return MalformedLine(raw=line, reason="not an object")

    text = obj.get("response")
    if not isinstance(text, str):
        text = ""
    return EngineFragment(text=text, done=bool(obj.get("done")))


def build_prompt(prompt: str, system: str | None) -> str:
    if system:
        return f"System: {system}{SYSTEM_SEPARATOR}{prompt}"
    return prompt


class InferenceClient:
    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=None)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def build_payload(self, prompt: str, system: str | None, params: GenerationParams) -> dict[str, Any]:
        return {
            "model": self.model,
            "prompt": build_prompt(prompt, system),
            "stream": True,
            "options": {
                "temperature": params.temperature,
                "top_p": params.top_p,
                "num_predict": params.max_tokens,
            },
        }

    async def health(self) -> bool:
        """Best-effort reachability probe (`GET /api/tags`)."""
        try:
            resp = await self._client.get(f"{self.base_url}/api/tags", timeout=2.0)
        except httpx.HTTPError:
            return False
        return resp.is_success

    async def astream_generate(
        self,
        prompt: str,
        system: str | None,
        params: GenerationParams,
        *,
        on_malformed: Callable[[MalformedLine], None] | None = None,
    ) -> AsyncIterator[TokenEvent | DoneEvent]:
        """Yield `TokenEvent`s in arrival order, then a single `DoneEvent`.

        Raises:
            InferenceError: connect failure, non-2xx status, transport error
                mid-stream, or end of stream without a done flag.
        """
        url = f"{self.base_url}/api/generate"
        payload = self.build_payload(prompt, system, params)

        try:
            async with self._client.stream("POST", url, json=payload) as resp:
                if not resp.is_success:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    raise InferenceError(f"Engine returned HTTP {resp.status_code}: {body[:200]}")

                async for line in resp.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue

                    parsed = parse_line(line)
                    if isinstance(parsed, MalformedLine):
                        logger.debug("Skipping malformed engine line (%s): %.80r", parsed.reason, parsed.raw)
                        if on_malformed is not None:
                            on_malformed(parsed)
                        continue

                    if parsed.text:
                        yield TokenEvent(parsed.text)
                    if parsed.done:
                        yield DoneEvent()
                        return
        except httpx.HTTPError as exc:
            raise InferenceError(f"Engine stream failed: {exc.__class__.__name__}: {exc}") from exc

        raise InferenceError("Engine stream ended without a completion signal")
