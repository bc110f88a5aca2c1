"""Content-addressed cache keys for completed generations."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

from .types import GenerationParams


def _stable_json_dumps(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def canonical_request(
    prompt: str,
    system: str | None,
    params: GenerationParams | Mapping[str, Any] | None,
) -> str:
    """Serialize a request triple into its canonical form.

    Params are resolved to their effective values first, so an omitted field
    and the same field passed explicitly at its default produce the same form.
    """
    if not isinstance(params, GenerationParams):
        params = GenerationParams.from_mapping(params)
    return _stable_json_dumps(
        {
            "prompt": prompt,
            "system": system or "",
            "params": params.to_dict(),
        }
    )


def derive_cache_key(
    prompt: str,
    system: str | None = "",
    params: GenerationParams | Mapping[str, Any] | None = None,
) -> str:
    """Return the SHA-256 hex digest of the canonical request."""
    return hashlib.sha256(canonical_request(prompt, system, params).encode("utf-8")).hexdigest()
