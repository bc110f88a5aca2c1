"""HTTP client wrapper for talking to a PocketLLM proxy.

This module provides small, dependency-free primitives for JSON requests and
the proxy's typed SSE stream (`event: token|done|error`).
"""

from __future__ import annotations

import json
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Iterator


DEFAULT_URL = "http://127.0.0.1:3001"

TERMINAL_EVENTS = frozenset({"done", "error"})


@dataclass(frozen=True)
class HttpError(RuntimeError):
    message: str
    url: str | None = None
    status_code: int | None = None
    body: str | None = None

    def __str__(self) -> str:  # pragma: no cover
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.url:
            parts.append(f"url={self.url}")
        if self.body:
            parts.append(f"body={self.body}")
        return " ".join(parts)


@dataclass(frozen=True)
class SseEvent:
    event: str
    data: dict[str, Any] = field(default_factory=dict)


def _join_url(base_url: str, path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    return urllib.parse.urljoin(base_url.rstrip("/") + "/", path.lstrip("/"))


def iter_sse_events(stream: BinaryIO) -> Iterator[SseEvent]:
    """Yield typed SSE events; stops after the first terminal (`done`/`error`) event.

    Events without an `event:` line are reported as `message`. A `data:`
    payload that is not a JSON object is wrapped as `{"raw": <text>}`.
    """
    name = "message"
    data_lines: list[str] = []

    def _build() -> SseEvent:
        payload = "\n".join(data_lines)
        try:
            obj = json.loads(payload) if payload else {}
        except json.JSONDecodeError:
            obj = {"raw": payload}
        if not isinstance(obj, dict):
            obj = {"raw": obj}
        return SseEvent(event=name, data=obj)

    for raw in stream:
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        if not line:
            if data_lines:
                event = _build()
                yield event
                if event.event in TERMINAL_EVENTS:
                    return
            name = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        if line.startswith("event:"):
            name = line[6:].strip() or "message"
            continue
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip())

    if data_lines:
        yield _build()


class PocketClient:
    def __init__(self, *, base_url: str = DEFAULT_URL, timeout_s: float = 30.0, api_key: str | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = float(timeout_s)
        self.api_key = api_key

    def _build_request(self, method: str, url: str, payload: Any | None, accept: str) -> urllib.request.Request:
        body: bytes | None = None
        if payload is not None:
            body = json.dumps(payload, ensure_ascii=False).encode("utf-8")

        req = urllib.request.Request(url=url, method=method.upper(), data=body)
        req.add_header("Accept", accept)
        if payload is not None:
            req.add_header("Content-Type", "application/json")
        if self.api_key:
            req.add_header("x-api-key", self.api_key)
        return req

    def _open(self, req: urllib.request.Request, url: str, timeout_s: float | None) -> Any:
        try:
            return urllib.request.urlopen(req, timeout=timeout_s)
        except urllib.error.HTTPError as exc:
            body_text: str | None
            try:
                body_text = exc.read().decode("utf-8", errors="replace")
            except OSError:
                body_text = None
            raise HttpError(
                "HTTP error",
                url=url,
                status_code=getattr(exc, "code", None),
                body=body_text,
            ) from exc
        except urllib.error.URLError as exc:
            raise HttpError("Failed to reach server", url=url) from exc
        except socket.timeout as exc:
            raise HttpError("Request timed out", url=url) from exc

    def request_json(
        self,
        method: str,
        path: str,
        *,
        payload: Any | None = None,
        timeout_s: float | None = None,
    ) -> Any:
        url = _join_url(self.base_url, path)
        req = self._build_request(method, url, payload, "application/json")
        with self._open(req, url, self.timeout_s if timeout_s is None else timeout_s) as resp:
            raw = resp.read()
            try:
                return json.loads(raw.decode("utf-8"))
            except ValueError as exc:
                raise HttpError(
                    "Invalid JSON response",
                    url=url,
                    status_code=getattr(resp, "status", None),
                    body=raw.decode("utf-8", errors="replace"),
                ) from exc

    def stream_chat(
        self,
        prompt: str,
        *,
        system: str | None = None,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> Iterator[SseEvent]:
        """POST /v1/chat/completions and yield its events.

        No read timeout is applied: generations may take arbitrarily long.
        """
        payload: dict[str, Any] = {"prompt": prompt}
        if system:
            payload["system"] = system
        if params:
            payload["params"] = params
        if session_id:
            payload["sessionId"] = session_id

        url = _join_url(self.base_url, "/v1/chat/completions")
        req = self._build_request("POST", url, payload, "text/event-stream")
        resp = self._open(req, url, None)
        try:
            yield from iter_sse_events(resp)
        finally:
            resp.close()

    def health(self) -> dict[str, Any]:
        result = self.request_json("GET", "/v1/health?check_engine=true", timeout_s=min(self.timeout_s, 5.0))
        if not isinstance(result, dict):
            raise HttpError("Invalid /v1/health response", url=_join_url(self.base_url, "/v1/health"))
        return result
