"""Core proxy data types.

These types are internal to the library and are intentionally decoupled from:
- HTTP transport (FastAPI / SSE)
- the JSON envelopes used by the inference engine

At-rest and wire field names (`turns`, `createdAt`, ...) are produced by the
`to_dict()` helpers so existing data directories stay readable.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping


Role = Literal["user", "assistant"]

VALID_ROLES: frozenset[str] = frozenset({"user", "assistant"})


@dataclass(frozen=True)
class Turn:
    """One immutable transcript entry."""

    role: Role
    text: str

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Turn":
        role = d.get("role")
        if role not in VALID_ROLES:
            raise ValueError(f"Invalid turn role: {role!r}")
        return cls(role=role, text=str(d.get("text") or ""))  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "text": self.text}


@dataclass
class Session:
    """A titled, append-only conversation transcript."""

    id: str
    title: str
    turns: list[Turn] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Session":
        raw_turns = d.get("turns") or []
        turns = [Turn.from_dict(t) for t in raw_turns if isinstance(t, Mapping)]
        return cls(id=str(d.get("id") or ""), title=str(d.get("title") or ""), turns=turns)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "turns": [t.to_dict() for t in self.turns]}


@dataclass(frozen=True)
class CacheEntry:
    """A completed generation, replayable token by token."""

    key: str
    tokens: tuple[str, ...]
    created_at: int  # epoch milliseconds

    @classmethod
    def from_dict(cls, key: str, d: Mapping[str, Any]) -> "CacheEntry":
        raw_tokens = d.get("tokens") or []
        return cls(
            key=key,
            tokens=tuple(str(t) for t in raw_tokens),
            created_at=int(d.get("createdAt") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"tokens": list(self.tokens), "createdAt": self.created_at}

    @property
    def text(self) -> str:
        return "".join(self.tokens)


@dataclass(frozen=True)
class GenerationParams:
    """Sampling parameters with their effective defaults resolved."""

    temperature: float = 0.7
    top_p: float = 0.9
    max_tokens: int = 256

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "GenerationParams":
        """Resolve a client-supplied params object; missing or null fields take defaults.

        Raises:
            ValueError: if a supplied field is not a finite number.
        """
        defaults = cls()
        if not raw:
            return defaults

        def _num(name: str, default: float) -> float:
            value = raw.get(name)
            if value is None:
                return default
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"'params.{name}' must be a number.")
            try:
                finite = math.isfinite(value)
            except OverflowError:
                # Integers beyond float range.
                finite = False
            if not finite:
                raise ValueError(f"'params.{name}' must be a finite number.")
            return value

        return cls(
            temperature=float(_num("temperature", defaults.temperature)),
            top_p=float(_num("top_p", defaults.top_p)),
            max_tokens=int(_num("max_tokens", defaults.max_tokens)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"temperature": self.temperature, "top_p": self.top_p, "max_tokens": self.max_tokens}


@dataclass(frozen=True)
class ChatCompletionRequest:
    """Normalized body of `POST /v1/chat/completions`."""

    prompt: str
    system: str = ""
    params: GenerationParams = field(default_factory=GenerationParams)
    session_id: str | None = None


@dataclass(frozen=True)
class TokenEvent:
    """One text fragment, in arrival order."""

    token: str


@dataclass(frozen=True)
class DoneEvent:
    """Terminal event for a successful generation."""


@dataclass(frozen=True)
class ErrorEvent:
    """Terminal event for a failed generation."""

    message: str


StreamEvent = TokenEvent | DoneEvent | ErrorEvent
