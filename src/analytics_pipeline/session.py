from __future__ import annotations

import threading
import time
import uuid
from typing import Callable, Optional

from .config import SESSION_EXPIRATION_IN_MIN
from .errors import StorageError
from .logger import DebugLogger
from .models import Session
from .storage import SESSION_KEY, KeyValueStore, MemoryStore


class SessionManager:
    """Rolling session with inactivity expiry.

    Every call to ``get_or_create_session_id`` extends the session window.
    The in-memory session is the working copy; storage is consulted on cold
    start so another process sharing the store continues the same session.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStore] = None,
        *,
        timeout_minutes: float = SESSION_EXPIRATION_IN_MIN,
        time_fn: Optional[Callable[[], float]] = None,
        debug_logger: Optional[DebugLogger] = None,
        storage_key: str = SESSION_KEY,
    ) -> None:
        self.storage = storage if storage is not None else MemoryStore()
        self.storage_key = storage_key
        self.timeout_s = float(timeout_minutes) * 60
        self.debug_logger = debug_logger or DebugLogger()
        self._time = time_fn or time.time
        self._session: Optional[Session] = None
        self._loaded = False
        self._lock = threading.Lock()

    def get_or_create_session_id(self) -> str:
        with self._lock:
            now = self._time()
            session = self._session if self._loaded else self._load()
            if session is None or not session.is_valid(now, self.timeout_s):
                if session is not None:
                    age_min = round((now - session.last_activity_at) / 60)
                    self.debug_logger.log("session", f"Session expired after {age_min} idle minutes")
                session = self._mint(now)
                self.debug_logger.log("session", f"Created new session {session.session_id}")
            else:
                session.last_activity_at = now
            self._session = session
            self._persist(session)
            return session.session_id

    def current_session_id(self) -> Optional[str]:
        return self._session.session_id if self._session else None

    def current_session(self) -> Optional[Session]:
        if self._session is None:
            return None
        return Session(
            session_id=self._session.session_id,
            started_at=self._session.started_at,
            last_activity_at=self._session.last_activity_at,
        )

    def is_session_expired(self) -> bool:
        session = self._session
        return session is None or not session.is_valid(self._time(), self.timeout_s)

    def session_age_minutes(self) -> int:
        if self._session is None:
            return 0
        return round((self._time() - self._session.started_at) / 60)

    def session_time_remaining_minutes(self) -> int:
        if self._session is None:
            return 0
        idle = self._time() - self._session.last_activity_at
        return max(0, round((self.timeout_s - idle) / 60))

    def regenerate_session(self) -> Session:
        with self._lock:
            session = self._mint(self._time())
            self._session = session
            self._loaded = True
            self._persist(session)
            self.debug_logger.log("session", f"Session regenerated {session.session_id}")
            return session

    def clear_session(self) -> bool:
        with self._lock:
            self._session = None
            self._loaded = True
            try:
                self.storage.remove(self.storage_key)
            except (StorageError, OSError) as exc:
                self.debug_logger.warn("session", f"Could not clear stored session: {exc}")
                return False
            self.debug_logger.log("session", "Session cleared from storage")
            return True

    def _load(self) -> Optional[Session]:
        self._loaded = True
        try:
            record = self.storage.get(self.storage_key)
        except (StorageError, OSError) as exc:
            self.debug_logger.warn("session", f"Storage unavailable, keeping session in memory: {exc}")
            return None
        session = Session.from_record(record)
        if session is not None:
            self.debug_logger.log("session", "Loaded existing session from storage")
        return session

    def _persist(self, session: Session) -> None:
        try:
            self.storage.set(self.storage_key, session.to_record())
        except (StorageError, OSError) as exc:
            self.debug_logger.warn("session", f"Could not persist session: {exc}")

    @staticmethod
    def _mint(now: float) -> Session:
        return Session(session_id=str(uuid.uuid4()), started_at=now, last_activity_at=now)
