"""`pocketllm`: PocketLLM CLI (HTTP client for the streaming proxy).

This is the CLI entrypoint. Run from source with:
  `python -m apps.cli.main --help`
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import Any, Sequence

from apps.cli import commands
from apps.cli.client import DEFAULT_URL, PocketClient
from apps.cli.commands import CommandError


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pocketllm", description="PocketLLM CLI (HTTP client)")
    p.add_argument(
        "--url",
        default=os.environ.get("POCKETLLM_URL", DEFAULT_URL),
        help="Proxy base URL (default: %(default)s)",
    )
    p.add_argument(
        "--api-key",
        default=os.environ.get("POCKETLLM_API_KEY"),
        help="Sent as x-api-key; used by the proxy as the rate-limit identity",
    )

    sub = p.add_subparsers(dest="command")

    health = sub.add_parser("health", help="Check the proxy and its inference engine")
    health.add_argument("--json", action="store_true", help="Output JSON")

    chat = sub.add_parser("chat", help="Stream one completion to stdout")
    chat.add_argument("prompt", help="User prompt")
    chat.add_argument("--system", default=None, help="System prompt")
    chat.add_argument("--session", dest="session_id", default=None, help="Session id to record the turns into")
    chat.add_argument("--temperature", type=float, default=None, help="Sampling temperature (proxy default: 0.7)")
    chat.add_argument("--top-p", type=float, default=None, help="Nucleus sampling (proxy default: 0.9)")
    chat.add_argument("--max-tokens", type=int, default=None, help="Max new tokens (proxy default: 256)")

    session = sub.add_parser("session", help="Manage conversation sessions")
    session_sub = session.add_subparsers(dest="session_cmd", required=True)
    session_ls = session_sub.add_parser("ls", help="List sessions")
    session_ls.add_argument("--json", action="store_true", help="Output JSON")
    session_new = session_sub.add_parser("new", help="Create a session and print its id")
    session_new.add_argument("--title", default=None, help="Session title")
    session_new.add_argument("--json", action="store_true", help="Output JSON")
    session_show = session_sub.add_parser("show", help="Print a session transcript")
    session_show.add_argument("session_id")
    session_show.add_argument("--json", action="store_true", help="Output JSON")
    session_rm = session_sub.add_parser("rm", help="Delete sessions")
    session_rm.add_argument("session_ids", nargs="+")

    cache = sub.add_parser("cache", help="Inspect or clear the response cache")
    cache_sub = cache.add_subparsers(dest="cache_cmd", required=True)
    cache_ls = cache_sub.add_parser("ls", help="List cache keys")
    cache_ls.add_argument("--json", action="store_true", help="Output JSON")
    cache_sub.add_parser("clear", help="Remove every cache entry")

    metrics = sub.add_parser("metrics", help="Show proxy counters")
    metrics.add_argument("--json", action="store_true", help="Output JSON")

    return p


def _chat_params(args: argparse.Namespace) -> dict[str, Any] | None:
    params: dict[str, Any] = {}
    if args.temperature is not None:
        params["temperature"] = float(args.temperature)
    if args.top_p is not None:
        params["top_p"] = float(args.top_p)
    if args.max_tokens is not None:
        params["max_tokens"] = int(args.max_tokens)
    return params or None


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    command = args.command
    if command is None:
        parser.print_help()
        return 2

    client = PocketClient(base_url=args.url, api_key=args.api_key)
    json_output = bool(getattr(args, "json", False))

    try:
        if command == "health":
            return commands.health(client=client, json_output=json_output)
        if command == "chat":
            return commands.chat(
                client=client,
                prompt=args.prompt,
                system=args.system,
                session_id=args.session_id,
                params=_chat_params(args),
            )
        if command == "session":
            if args.session_cmd == "ls":
                return commands.session_ls(client=client, json_output=json_output)
            if args.session_cmd == "new":
                return commands.session_new(client=client, title=args.title, json_output=json_output)
            if args.session_cmd == "show":
                return commands.session_show(client=client, session_id=args.session_id, json_output=json_output)
            if args.session_cmd == "rm":
                return commands.session_rm(client=client, session_ids=args.session_ids)
            parser.error(f"Unknown session subcommand: {args.session_cmd!r}")
            return 2
        if command == "cache":
            if args.cache_cmd == "ls":
                return commands.cache_ls(client=client, json_output=json_output)
            if args.cache_cmd == "clear":
                return commands.cache_clear(client=client)
            parser.error(f"Unknown cache subcommand: {args.cache_cmd!r}")
            return 2
        if command == "metrics":
            return commands.metrics(client=client, json_output=json_output)
    except CommandError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\ninterrupted", file=sys.stderr)
        return 130

    parser.error(f"Unknown command: {command!r}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
