"""PocketLLM proxy entrypoint (FastAPI + server-sent events).

Example:
    python -m apps.server.main --ollama-host http://127.0.0.1:11434 --model llama3.2 --port 3001

Every flag defaults to its environment variable (PORT, OLLAMA_HOST,
OLLAMA_MODEL, CACHE_TTL_MS, DATA_DIR, RATE_LIMIT_MAX, RATE_LIMIT_WINDOW_S).
"""

from __future__ import annotations

import argparse
import logging
from typing import Sequence

from apps.server.app import create_app
from pocketllm.proxy.config import ConfigError, ProxyConfig


def _parse_args(argv: Sequence[str] | None, defaults: ProxyConfig) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="PocketLLM streaming proxy")
    p.add_argument("--host", default=defaults.host, help="Bind host (default: %(default)s)")
    p.add_argument("--port", type=int, default=defaults.port, help="Bind port (default: %(default)s)")
    p.add_argument(
        "--ollama-host",
        default=defaults.ollama_host,
        help="Inference engine base URL (default: %(default)s)",
    )
    p.add_argument("--model", default=defaults.model, help="Model identifier (default: %(default)s)")
    p.add_argument(
        "--cache-ttl-ms",
        type=int,
        default=defaults.cache_ttl_ms,
        help="Cache entry time-to-live in milliseconds (default: %(default)s)",
    )
    p.add_argument("--data-dir", default=defaults.data_dir, help="Sessions/cache directory (default: %(default)s)")
    p.add_argument(
        "--rate-limit",
        type=int,
        default=defaults.rate_limit,
        help="Requests per window per identity, 0 = unlimited (default: %(default)s)",
    )
    p.add_argument(
        "--rate-window-s",
        type=float,
        default=defaults.rate_window_s,
        help="Rate-limit window in seconds (default: %(default)s)",
    )
    p.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: %(default)s)",
    )
    return p.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    try:
        defaults = ProxyConfig.from_env()
    except ConfigError as exc:
        raise SystemExit(f"[server] invalid environment: {exc}") from exc

    args = _parse_args(argv, defaults)

    try:
        config = ProxyConfig(
            host=args.host,
            port=args.port,
            ollama_host=args.ollama_host.rstrip("/"),
            model=args.model,
            cache_ttl_ms=args.cache_ttl_ms,
            data_dir=args.data_dir,
            rate_limit=args.rate_limit,
            rate_window_s=args.rate_window_s,
            cors_origins=defaults.cors_origins,
        )
    except ConfigError as exc:
        raise SystemExit(f"[server] invalid option: {exc}") from exc

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print(
        "[server] starting: "
        f"model={config.model!r} engine={config.ollama_host!r} data_dir={config.data_dir!r} "
        f"cache_ttl_ms={config.cache_ttl_ms} rate_limit={config.rate_limit}/{config.rate_window_s:g}s",
        flush=True,
    )
    app = create_app(config=config)

    try:
        import uvicorn
    except Exception as exc:  # pragma: no cover
        raise RuntimeError("uvicorn is required to run the server.") from exc

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
