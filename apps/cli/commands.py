from __future__ import annotations

import sys
from typing import Any, TextIO

from apps.cli.client import HttpError, PocketClient
from apps.cli.output import format_table, print_json, shorten


class CommandError(RuntimeError):
    pass


def _format_http_error(exc: HttpError, *, base_url: str, what: str | None = None) -> str:
    if exc.status_code is None and exc.message in {"Failed to reach server", "Request timed out"}:
        return f"Proxy unreachable at {base_url}. Start it with `python -m apps.server.main` or pass `--url`.\n{exc}"
    if exc.status_code == 404 and what:
        return f"{what} not found."
    if exc.status_code == 429:
        return "Rate limit exceeded (429). Try again later."
    return str(exc)


def _call(client: PocketClient, method: str, path: str, *, payload: Any = None, what: str | None = None) -> Any:
    try:
        return client.request_json(method, path, payload=payload)
    except HttpError as exc:
        raise CommandError(_format_http_error(exc, base_url=client.base_url, what=what)) from exc


def health(*, client: PocketClient, json_output: bool = False) -> int:
    try:
        info = client.health()
    except HttpError as exc:
        raise CommandError(_format_http_error(exc, base_url=client.base_url)) from exc
    if json_output:
        print_json(info)
        return 0
    print(f"proxy:  {info.get('status', '?')}  ({client.base_url})")
    print(f"model:  {info.get('model', '?')}")
    if "engine" in info:
        print(f"engine: {info['engine']}")
    return 0 if info.get("engine", "ok") == "ok" else 1


def chat(
    *,
    client: PocketClient,
    prompt: str,
    system: str | None = None,
    session_id: str | None = None,
    params: dict[str, Any] | None = None,
    out: TextIO | None = None,
) -> int:
    """Stream one completion to `out`. Returns 0 on `done`, 1 on `error` or a cut stream."""
    out = out or sys.stdout
    try:
        events = client.stream_chat(prompt, system=system, params=params, session_id=session_id)
        for event in events:
            if event.event == "token":
                out.write(str(event.data.get("token", "")))
                out.flush()
                continue
            if event.event == "done":
                out.write("\n")
                return 0
            if event.event == "error":
                out.write("\n")
                print(f"error: {event.data.get('message', 'unknown error')}", file=sys.stderr)
                return 1
    except HttpError as exc:
        raise CommandError(_format_http_error(exc, base_url=client.base_url, what="Session")) from exc

    out.write("\n")
    print("error: stream ended without a terminal event", file=sys.stderr)
    return 1


def session_ls(*, client: PocketClient, json_output: bool = False) -> int:
    sessions = _call(client, "GET", "/v1/sessions")
    if not isinstance(sessions, list):
        sessions = []
    if json_output:
        print_json(sessions)
        return 0

    rows: list[list[str]] = []
    for s in sessions:
        if not isinstance(s, dict):
            continue
        turns = s.get("turns") or []
        rows.append([str(s.get("id", "")), str(len(turns)), shorten(str(s.get("title", "")), 48)])
    print(format_table(["id", "turns", "title"], rows))
    return 0


def session_new(*, client: PocketClient, title: str | None = None, json_output: bool = False) -> int:
    payload = {"title": title} if title else {}
    created = _call(client, "POST", "/v1/sessions", payload=payload)
    if json_output:
        print_json(created)
    else:
        print(created.get("id", "") if isinstance(created, dict) else created)
    return 0


def session_show(*, client: PocketClient, session_id: str, json_output: bool = False) -> int:
    session = _call(client, "GET", f"/v1/sessions/{session_id}", what=f"Session {session_id}")
    if json_output:
        print_json(session)
        return 0
    if not isinstance(session, dict):
        raise CommandError("Invalid session response.")
    print(f"# {session.get('title', '')}  ({session.get('id', session_id)})")
    for turn in session.get("turns") or []:
        if isinstance(turn, dict):
            print(f"\n[{turn.get('role', '?')}]\n{turn.get('text', '')}")
    return 0


def session_rm(*, client: PocketClient, session_ids: list[str]) -> int:
    for sid in session_ids:
        _call(client, "DELETE", f"/v1/sessions/{sid}")
        print(f"removed {sid}")
    return 0


def cache_ls(*, client: PocketClient, json_output: bool = False) -> int:
    result = _call(client, "GET", "/v1/cache")
    keys = result.get("keys", []) if isinstance(result, dict) else []
    if json_output:
        print_json({"keys": keys})
        return 0
    for key in keys:
        print(key)
    print(f"{len(keys)} cache entr{'y' if len(keys) == 1 else 'ies'}", file=sys.stderr)
    return 0


def cache_clear(*, client: PocketClient) -> int:
    _call(client, "DELETE", "/v1/cache")
    print("cache cleared")
    return 0


def metrics(*, client: PocketClient, json_output: bool = False) -> int:
    snap = _call(client, "GET", "/v1/admin/metrics")
    if json_output or not isinstance(snap, dict):
        print_json(snap)
        return 0
    rows = [[str(k), str(v)] for k, v in sorted(snap.items())]
    print(format_table(["counter", "value"], rows))
    return 0
