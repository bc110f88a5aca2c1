"""Flat-file durable store.

Two independent JSON collections live under the data directory:
- `sessions.json`  `{"sessions": [...]}`
- `cache.json`     `{"entries": {...}}`

Each collection is read and written whole. Writes go to a temp file in the
same directory and are renamed over the target, so a reader sees either the
old document or the new one. Writers to one collection are serialized by a
per-collection `asyncio.Lock`; `update()` holds it across read-modify-write.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import tempfile
from pathlib import Path
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreError(RuntimeError):
    pass


class JsonCollection:
    """One JSON document on disk with a required top-level key."""

    def __init__(self, path: str | Path, *, root_key: str, empty: Any) -> None:
        self._path = Path(path)
        self._root_key = root_key
        self._empty = empty
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _empty_document(self) -> dict[str, Any]:
        return {self._root_key: copy.deepcopy(self._empty)}

    def _read_sync(self) -> dict[str, Any]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self._empty_document()
        except OSError as exc:
            raise StoreError(f"Failed to read {self._path}") from exc

        try:
            doc = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreError(f"Invalid JSON in {self._path}") from exc

        if not isinstance(doc, dict) or not isinstance(doc.get(self._root_key), type(self._empty)):
            raise StoreError(f"{self._path} must contain an object with a {self._root_key!r} field")
        return doc

    def _write_sync(self, doc: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        encoded = json.dumps(doc, ensure_ascii=False, indent=2) + "\n"

        tmp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=str(self._path.parent),
                delete=False,
                prefix=f".{self._path.stem}.",
                suffix=".tmp",
            ) as f:
                f.write(encoded)
                tmp_path = Path(f.name)
            tmp_path.replace(self._path)
            tmp_path = None
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)

    def initialize_sync(self) -> None:
        if not self._path.exists():
            self._write_sync(self._empty_document())

    async def read(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._read_sync)

    async def write(self, doc: dict[str, Any]) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write_sync, doc)

    async def update(self, mutate: Callable[[dict[str, Any]], T]) -> T:
        """Read the document, apply `mutate` in place, write it back.

        `mutate` runs under the collection lock and must not await.
        Returns whatever `mutate` returns.
        """
        async with self._lock:
            doc = await asyncio.to_thread(self._read_sync)
            result = mutate(doc)
            await asyncio.to_thread(self._write_sync, doc)
            return result


class DurableStore:
    """Owns the on-disk representation of sessions and cache entries."""

    SESSIONS_FILE = "sessions.json"
    CACHE_FILE = "cache.json"

    def __init__(self, data_dir: str | Path) -> None:
        self._data_dir = Path(data_dir)
        self.sessions = JsonCollection(self._data_dir / self.SESSIONS_FILE, root_key="sessions", empty=[])
        self.cache = JsonCollection(self._data_dir / self.CACHE_FILE, root_key="entries", empty={})

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def initialize(self) -> None:
        """Create the data directory and any missing collection file."""
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self.sessions.initialize_sync()
        self.cache.initialize_sync()
        logger.info("Durable store ready at %s", self._data_dir)
