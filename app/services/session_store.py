import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable

from app.core.exceptions import SessionNotFoundError
from app.core.settings import settings
from app.services.session_state import ComicSession

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    session: ComicSession
    last_access: float


class SessionStore:
    """Process-local registry of live sessions. Nothing survives a restart.

    Sessions idle for longer than `max_age_seconds` are evicted the next time
    a session is created.
    """

    def __init__(
        self,
        max_age_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[uuid.UUID, _Entry] = {}
        self._lock = threading.Lock()
        self._max_age_seconds = max_age_seconds
        self._clock = clock

    @property
    def max_age_seconds(self) -> float:
        if self._max_age_seconds is not None:
            return self._max_age_seconds
        return settings.session_max_age_seconds

    def _evict_expired(self, now: float) -> None:
        cutoff = now - self.max_age_seconds
        expired = [session_id for session_id, entry in self._entries.items() if entry.last_access < cutoff]
        for session_id in expired:
            del self._entries[session_id]
        if expired:
            logger.info("evicted %d idle sessions", len(expired))

    def create(self) -> ComicSession:
        session = ComicSession()
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            self._entries[session.id] = _Entry(session=session, last_access=now)
        return session

    def get(self, session_id: uuid.UUID) -> ComicSession:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is not None:
                entry.last_access = self._clock()
        if entry is None:
            raise SessionNotFoundError(session_id)
        return entry.session

    def delete(self, session_id: uuid.UUID) -> None:
        with self._lock:
            if self._entries.pop(session_id, None) is None:
                raise SessionNotFoundError(session_id)

    def list(self) -> list[ComicSession]:
        with self._lock:
            return [entry.session for entry in self._entries.values()]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


store = SessionStore()
