"""Append-only session transcripts on top of the durable store."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from .store import JsonCollection
from .types import VALID_ROLES, Session, Turn

logger = logging.getLogger(__name__)


def _default_title() -> str:
    return "Session " + time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class SessionLedger:
    def __init__(self, collection: JsonCollection) -> None:
        self._collection = collection

    async def create_session(self, title: str | None = None) -> Session:
        session = Session(id=uuid.uuid4().hex, title=title or _default_title())

        def _add(doc: dict[str, Any]) -> None:
            doc["sessions"].append(session.to_dict())

        await self._collection.update(_add)
        return session

    async def append_turn(self, session_id: str, role: str, text: str) -> bool:
        """Append a turn; returns False (without raising) when the session does not exist."""
        if role not in VALID_ROLES:
            raise ValueError(f"Invalid turn role: {role!r}")
        turn = Turn(role=role, text=text)  # type: ignore[arg-type]

        def _append(doc: dict[str, Any]) -> bool:
            for raw in doc["sessions"]:
                if isinstance(raw, dict) and raw.get("id") == session_id:
                    turns = raw.setdefault("turns", [])
                    turns.append(turn.to_dict())
                    return True
            return False

        appended = await self._collection.update(_append)
        if not appended:
            logger.debug("append_turn: no session %s; dropping %s turn", session_id, role)
        return appended

    async def get_session(self, session_id: str) -> Session | None:
        doc = await self._collection.read()
        for raw in doc["sessions"]:
            if isinstance(raw, dict) and raw.get("id") == session_id:
                return Session.from_dict(raw)
        return None

    async def delete_session(self, session_id: str) -> bool:
        """Remove a session. Deleting an unknown id is a no-op that returns False."""

        def _delete(doc: dict[str, Any]) -> bool:
            before = len(doc["sessions"])
            doc["sessions"] = [
                s for s in doc["sessions"] if not (isinstance(s, dict) and s.get("id") == session_id)
            ]
            return len(doc["sessions"]) != before

        return await self._collection.update(_delete)

    async def list_sessions(self) -> list[Session]:
        doc = await self._collection.read()
        return [Session.from_dict(s) for s in doc["sessions"] if isinstance(s, dict)]
