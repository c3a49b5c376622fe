from __future__ import annotations

import threading
import uuid
from typing import Optional

from .errors import StorageError
from .logger import DebugLogger
from .models import UUID_RE
from .storage import CLIENT_ID_KEY, KeyValueStore, MemoryStore


class ClientIdStore:
    """Owns the long-lived client identifier of one installation."""

    def __init__(
        self,
        storage: Optional[KeyValueStore] = None,
        *,
        debug_logger: Optional[DebugLogger] = None,
        storage_key: str = CLIENT_ID_KEY,
    ) -> None:
        self.storage = storage if storage is not None else MemoryStore()
        self.storage_key = storage_key
        self.debug_logger = debug_logger or DebugLogger()
        self._client_id: Optional[str] = None
        self._persistent = False
        self._lock = threading.Lock()

    @property
    def is_persistent(self) -> bool:
        return self._persistent

    def get_or_create_client_id(self) -> str:
        with self._lock:
            if self._client_id is not None:
                return self._client_id
            try:
                stored = self.storage.get(self.storage_key)
                if isinstance(stored, str) and UUID_RE.match(stored):
                    self._client_id = stored
                    self._persistent = True
                    self.debug_logger.log("identity", "Loaded existing client ID from storage")
                    return stored
                client_id = self._generate()
                self.storage.set(self.storage_key, client_id)
            except (StorageError, OSError) as exc:
                self._client_id = self._generate()
                self._persistent = False
                self.debug_logger.warn(
                    "identity",
                    f"Storage unavailable, using process-lifetime client ID: {exc}",
                )
                return self._client_id
            self._client_id = client_id
            self._persistent = True
            self.debug_logger.log("identity", "Generated and saved new client ID")
            return client_id

    def current_client_id(self) -> Optional[str]:
        return self._client_id

    def regenerate_client_id(self) -> str:
        with self._lock:
            client_id = self._generate()
            self._client_id = client_id
            try:
                self.storage.set(self.storage_key, client_id)
                self._persistent = True
            except (StorageError, OSError) as exc:
                self._persistent = False
                self.debug_logger.warn("identity", f"Could not persist regenerated client ID: {exc}")
            self.debug_logger.log("identity", "Client ID regenerated")
            return client_id

    def clear_client_id(self) -> bool:
        with self._lock:
            self._client_id = None
            self._persistent = False
            try:
                self.storage.remove(self.storage_key)
            except (StorageError, OSError) as exc:
                self.debug_logger.warn("identity", f"Could not clear stored client ID: {exc}")
                return False
            self.debug_logger.log("identity", "Client ID cleared from storage")
            return True

    @staticmethod
    def _generate() -> str:
        # uuid4 draws its 128-bit value from os.urandom.
        return str(uuid.uuid4())
