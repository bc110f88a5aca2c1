"""FastAPI app for the PocketLLM streaming proxy.

The HTTP layer lives under `apps/` and can depend on heavier deps (FastAPI, uvicorn).
All request handling beyond HTTP framing is delegated to `pocketllm/proxy`.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse, StreamingResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from pocketllm import __version__
from pocketllm.proxy.cache import CacheAsideController
from pocketllm.proxy.config import ProxyConfig
from pocketllm.proxy.governor import Admission, RequestGovernor
from pocketllm.proxy.inference import InferenceClient
from pocketllm.proxy.metrics import ProxyMetrics
from pocketllm.proxy.pipeline import ChatPipeline, PreparedChat
from pocketllm.proxy.sessions import SessionLedger
from pocketllm.proxy.store import DurableStore, StoreError
from pocketllm.proxy.types import ChatCompletionRequest, DoneEvent, GenerationParams, TokenEvent

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class AdmissionControlMiddleware:
    """ASGI middleware that applies the request governor to every HTTP request.

    Identity is the `x-api-key` header (or "anonymous") plus the client
    address. Rejected requests get a 429 before any route runs; admitted
    responses carry `RateLimit-*` headers.
    """

    def __init__(self, app: ASGIApp, *, governor: RequestGovernor, metrics: ProxyMetrics) -> None:
        self.app = app
        self.governor = governor
        self.metrics = metrics

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.governor.enabled:
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        client_host = request.client.host if request.client else None
        identity = self.governor.identity(request.headers.get("x-api-key"), client_host)
        admission = self.governor.admit(identity)

        if not admission.allowed:
            self.metrics.incr("rate_limited")
            headers = _rate_limit_headers(admission)
            headers["Retry-After"] = str(admission.retry_after_s)
            response = JSONResponse({"error": "Rate limit exceeded"}, status_code=429, headers=headers)
            await response(scope, receive, send)
            return

        extra = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in _rate_limit_headers(admission).items()]

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                message = dict(message)
                message["headers"] = list(message.get("headers", [])) + extra
            await send(message)

        await self.app(scope, receive, send_with_headers)


def _rate_limit_headers(admission: Admission) -> dict[str, str]:
    return {
        "RateLimit-Limit": str(admission.limit),
        "RateLimit-Remaining": str(admission.remaining),
        "RateLimit-Reset": str(admission.retry_after_s),
    }


def create_app(
    *,
    config: ProxyConfig,
    store: DurableStore | None = None,
    inference: InferenceClient | None = None,
    governor: RequestGovernor | None = None,
    metrics: ProxyMetrics | None = None,
    cache_now_fn: Callable[[], int] | None = None,
) -> FastAPI:
    store = store if store is not None else DurableStore(config.data_dir)
    metrics = metrics if metrics is not None else ProxyMetrics()
    if governor is None:
        governor = RequestGovernor(limit=config.rate_limit, window_s=config.rate_window_s)
    if inference is None:
        inference = InferenceClient(base_url=config.ollama_host, model=config.model)

    ledger = SessionLedger(store.sessions)
    cache = CacheAsideController(store.cache, ttl_ms=config.cache_ttl_ms, now_fn=cache_now_fn)
    pipeline = ChatPipeline(ledger=ledger, cache=cache, inference=inference, metrics=metrics)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        store.initialize()
        try:
            yield
        finally:
            aclose = getattr(inference, "aclose", None)
            if callable(aclose):
                await aclose()

    app = FastAPI(title="PocketLLM Proxy", version=__version__, lifespan=lifespan)
    app.state.metrics = metrics
    app.state.store = store

    app.add_middleware(AdmissionControlMiddleware, governor=governor, metrics=metrics)
    # Added last so it wraps the admission middleware and 429s still carry CORS headers.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StoreError)
    async def _store_error_handler(_request: Request, exc: StoreError) -> JSONResponse:
        metrics.incr("errors")
        logger.error("Store failure: %s", exc)
        return _backend_error(exc)

    async def _json_dict_or_empty(request: Request) -> dict[str, Any]:
        body = await request.body()
        if not body.strip():
            return {}
        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Request body must be valid JSON.") from exc
        if isinstance(payload, dict):
            return payload
        raise HTTPException(status_code=400, detail="Request body must be a JSON object.")

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    @app.get("/v1/health")
    async def health(check_engine: bool = False) -> dict[str, str]:
        out = {"status": "ok", "model": config.model}
        if check_engine:
            probe = getattr(inference, "health", None)
            reachable = bool(await probe()) if callable(probe) else False
            out["engine"] = "ok" if reachable else "unreachable"
        return out

    # -------------------------------------------------------------------------
    # Session Management
    # -------------------------------------------------------------------------

    @app.get("/v1/sessions")
    async def list_sessions() -> Any:
        sessions = await ledger.list_sessions()
        return JSONResponse([s.to_dict() for s in sessions])

    @app.get("/v1/sessions/{session_id}")
    async def get_session(session_id: str) -> Any:
        session = await ledger.get_session(session_id)
        if session is None:
            return JSONResponse({"error": "not_found"}, status_code=404)
        return JSONResponse(session.to_dict())

    @app.post("/v1/sessions")
    async def create_session(request: Request) -> Any:
        """Create an empty session; `title` is optional."""
        payload = await _json_dict_or_empty(request)
        title = payload.get("title")
        if title is not None and not isinstance(title, str):
            raise HTTPException(status_code=400, detail="'title' must be a string.")
        session = await ledger.create_session(title)
        return JSONResponse({"id": session.id, "title": session.title})

    @app.delete("/v1/sessions/{session_id}")
    async def delete_session(session_id: str) -> Any:
        await ledger.delete_session(session_id)
        return JSONResponse({"ok": True})

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    @app.get("/v1/cache")
    async def list_cache_keys() -> Any:
        return JSONResponse({"keys": await cache.list_keys()})

    @app.delete("/v1/cache")
    async def clear_cache() -> Any:
        await cache.clear()
        return JSONResponse({"ok": True})

    # -------------------------------------------------------------------------
    # Admin
    # -------------------------------------------------------------------------

    @app.get("/v1/admin/metrics")
    async def admin_metrics() -> Any:
        return JSONResponse(metrics.snapshot())

    # -------------------------------------------------------------------------
    # Chat Completions
    # -------------------------------------------------------------------------

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request) -> Any:
        try:
            payload = await request.json()
        except Exception as exc:
            raise HTTPException(status_code=400, detail="Request body must be valid JSON.") from exc

        chat_req = _parse_chat_request(payload)

        # Nothing has been sent yet: failures here are still a plain HTTP error.
        try:
            prepared = await pipeline.prepare(chat_req)
        except Exception as exc:
            metrics.incr("errors")
            logger.exception("Chat request failed before streaming")
            return _backend_error(exc)

        event_iter = _stream_chat_events(pipeline=pipeline, prepared=prepared, request=request, metrics=metrics)
        return StreamingResponse(event_iter, media_type="text/event-stream", headers=SSE_HEADERS)

    return app


def _backend_error(exc: BaseException) -> JSONResponse:
    return JSONResponse({"error": "backend_error", "detail": str(exc)}, status_code=500)


def format_sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


async def _stream_chat_events(
    *,
    pipeline: ChatPipeline,
    prepared: PreparedChat,
    request: Request,
    metrics: ProxyMetrics,
) -> AsyncIterator[str]:
    events = pipeline.astream(prepared)
    terminal_sent = False
    try:
        async for event in events:
            # If the client disconnects mid-stream, stop consuming promptly.
            # Closing `events` below closes the upstream engine stream.
            if await request.is_disconnected():
                logger.info("Client disconnected mid-stream; abandoning request %s…", prepared.key[:12])
                break

            if isinstance(event, TokenEvent):
                yield format_sse("token", {"token": event.token})
                continue

            if isinstance(event, DoneEvent):
                yield format_sse("done", {})
            else:
                yield format_sse("error", {"message": event.message})
            terminal_sent = True
            break
    except Exception as exc:
        if not terminal_sent:
            metrics.incr("errors")
            logger.exception("Chat stream failed")
            yield format_sse("error", {"message": f"stream error: {exc}"})
    finally:
        await events.aclose()


def _parse_chat_request(payload: Any) -> ChatCompletionRequest:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object.")

    prompt = payload.get("prompt")
    if not isinstance(prompt, str):
        raise HTTPException(status_code=400, detail="'prompt' is required and must be a string.")

    system = payload.get("system")
    if system is None:
        system = ""
    if not isinstance(system, str):
        raise HTTPException(status_code=400, detail="'system' must be a string.")

    raw_params = payload.get("params")
    if raw_params is not None and not isinstance(raw_params, dict):
        raise HTTPException(status_code=400, detail="'params' must be an object.")
    try:
        params = GenerationParams.from_mapping(raw_params)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    session_id = payload.get("sessionId")
    if session_id is not None and not isinstance(session_id, str):
        raise HTTPException(status_code=400, detail="'sessionId' must be a string.")

    return ChatCompletionRequest(
        prompt=prompt,
        system=system,
        params=params,
        session_id=session_id or None,
    )
