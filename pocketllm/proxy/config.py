"""Proxy settings, read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ProxyConfig:
    """Process-wide settings. Flags passed to `apps.server.main` override these."""

    host: str = "0.0.0.0"
    port: int = 3001
    ollama_host: str = "http://ollama:11434"
    model: str = "llama3.2"
    cache_ttl_ms: int = 600_000
    data_dir: str = "./data"
    rate_limit: int = 60
    rate_window_s: float = 60.0
    cors_origins: tuple[str, ...] = ("*",)

    def __post_init__(self) -> None:
        if not 0 < int(self.port) < 65536:
            raise ConfigError(f"port must be in 1..65535, got {self.port!r}")
        if int(self.cache_ttl_ms) < 0:
            raise ConfigError("cache_ttl_ms must be >= 0")
        if int(self.rate_limit) < 0:
            raise ConfigError("rate_limit must be >= 0")
        if float(self.rate_window_s) < 0:
            raise ConfigError("rate_window_s must be >= 0")
        if not self.ollama_host:
            raise ConfigError("ollama_host must not be empty")
        if not self.model:
            raise ConfigError("model must not be empty")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ProxyConfig":
        env = os.environ if environ is None else environ
        defaults = cls()

        def _int(name: str, default: int) -> int:
            raw = env.get(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return int(raw)
            except ValueError as exc:
                raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc

        def _float(name: str, default: float) -> float:
            raw = env.get(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return float(raw)
            except ValueError as exc:
                raise ConfigError(f"{name} must be a number, got {raw!r}") from exc

        origins_raw = env.get("CORS_ORIGINS")
        if origins_raw:
            origins = tuple(o.strip() for o in origins_raw.split(",") if o.strip())
        else:
            origins = defaults.cors_origins

        return cls(
            host=env.get("HOST") or defaults.host,
            port=_int("PORT", defaults.port),
            ollama_host=(env.get("OLLAMA_HOST") or defaults.ollama_host).rstrip("/"),
            model=env.get("OLLAMA_MODEL") or defaults.model,
            cache_ttl_ms=_int("CACHE_TTL_MS", defaults.cache_ttl_ms),
            data_dir=env.get("DATA_DIR") or defaults.data_dir,
            rate_limit=_int("RATE_LIMIT_MAX", defaults.rate_limit),
            rate_window_s=_float("RATE_LIMIT_WINDOW_S", defaults.rate_window_s),
            cors_origins=origins,
        )
