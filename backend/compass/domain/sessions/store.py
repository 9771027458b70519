# compass/domain/sessions/store.py
"""
Session snapshots.

    flow_session          -> the most recent session (for "resume where I left off")
    flow_session_<id>     -> a specific session

Snapshots are best effort: a failed write is logged and the in-memory session
keeps going. Restores are strict: undecodable data raises SessionRestoreFailed.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Dict, Optional

from pydantic import ValidationError

from compass.adapters.storage import KeyValueStore
from compass.core.config import get_settings
from compass.core.errors import SessionBusy, SessionRestoreFailed, StorageError
from compass.domain.sessions.models import FlowSession, SessionStatus
from compass.utils.time import since

logger = logging.getLogger(__name__)

__all__ = ["CURRENT_SESSION_KEY", "session_key", "SessionStateStore"]

CURRENT_SESSION_KEY = "flow_session"


def session_key(session_id: str) -> str:
    return f"{CURRENT_SESSION_KEY}_{session_id}"


class SessionStateStore:
    def __init__(self, store: KeyValueStore, idle_timeout_s: Optional[float] = None):
        self.store = store
        if idle_timeout_s is None:
            idle_timeout_s = get_settings().SESSION_IDLE_TIMEOUT_S
        self.idle_timeout = timedelta(seconds=idle_timeout_s)
        self._owners: Dict[str, int] = {}

    # ---- ownership ----
    def claim(self, session_id: str, owner: object) -> None:
        """One runner per session id. Re-claiming by the same owner is a no-op."""
        holder = self._owners.get(session_id)
        if holder is not None and holder != id(owner):
            raise SessionBusy(session_id)
        self._owners[session_id] = id(owner)

    def release(self, session_id: str, owner: object) -> None:
        if self._owners.get(session_id) == id(owner):
            del self._owners[session_id]

    def is_claimed(self, session_id: str) -> bool:
        return session_id in self._owners

    # ---- persistence ----
    async def snapshot(self, session: FlowSession) -> bool:
        payload = session.model_dump_json()
        try:
            await self.store.put(session_key(session.id), payload)
            await self.store.put(CURRENT_SESSION_KEY, payload)
        except StorageError as e:
            logger.warning("Session snapshot failed: %s", e, extra={"session_id": session.id})
            return False
        return True

    async def restore(self, session_id: Optional[str] = None) -> Optional[FlowSession]:
        """
        Load a session (or the most recent one when no id is given).
        Sessions idle for longer than the timeout come back as abandoned.
        """
        key = session_key(session_id) if session_id else CURRENT_SESSION_KEY
        try:
            raw = await self.store.get(key)
        except StorageError as e:
            raise SessionRestoreFailed(session_id, e) from e
        if raw is None:
            return None
        try:
            session = FlowSession.model_validate_json(raw)
        except ValidationError as e:
            raise SessionRestoreFailed(session_id, e) from e

        if not session.is_finished and since(session.last_activity) > self.idle_timeout:
            logger.info("Session idle too long; marking abandoned", extra={"session_id": session.id})
            session.status = SessionStatus.ABANDONED
        return session

    @staticmethod
    def export(session: FlowSession) -> str:
        """Pretty-printed JSON of a session, same shape as a snapshot."""
        return session.model_dump_json(indent=2)

    async def clear(self, session_id: str) -> None:
        await self.store.delete(session_key(session_id))
        current = await self.store.get(CURRENT_SESSION_KEY)
        if current is None:
            return
        try:
            current_id = FlowSession.model_validate_json(current).id
        except ValidationError:
            current_id = None
        if current_id in (None, session_id):
            await self.store.delete(CURRENT_SESSION_KEY)
