from __future__ import annotations

import threading
from typing import Any, Dict, Optional

from .errors import StorageError
from .logger import DebugLogger
from .models import (
    MAX_USER_PROPERTY_COUNT,
    ParamValue,
    is_valid_identifier,
    sanitize_user_property_value,
)
from .storage import USER_PROPERTIES_KEY, KeyValueStore, MemoryStore


class UserPropertyStore:
    """Persisted user-scoped properties attached to every outgoing batch.

    Storage failures keep the change in memory for the rest of the process
    and are reported as warnings.
    """

    def __init__(
        self,
        storage: Optional[KeyValueStore] = None,
        *,
        debug_logger: Optional[DebugLogger] = None,
        storage_key: str = USER_PROPERTIES_KEY,
    ) -> None:
        self.storage = storage if storage is not None else MemoryStore()
        self.storage_key = storage_key
        self.debug_logger = debug_logger or DebugLogger()
        self._properties: Dict[str, ParamValue] = {}
        self._loaded = False
        self._lock = threading.Lock()

    def get_user_properties(self) -> Dict[str, ParamValue]:
        with self._lock:
            self._ensure_loaded()
            return dict(self._properties)

    def set_user_property(self, name: str, value: Any) -> bool:
        """Set ``name`` to ``value``; ``None`` removes the property."""
        if not is_valid_identifier(name):
            self.debug_logger.log("user_properties", f"Rejected invalid property name {name!r}")
            return False
        clean = sanitize_user_property_value(value)
        with self._lock:
            self._ensure_loaded()
            if clean is None:
                self._properties.pop(name, None)
            else:
                if name not in self._properties and len(self._properties) >= MAX_USER_PROPERTY_COUNT:
                    self.debug_logger.log(
                        "user_properties", f"Rejected {name!r}, limit of {MAX_USER_PROPERTY_COUNT} reached"
                    )
                    return False
                self._properties[name] = clean
            self._persist()
        self.debug_logger.log("user_properties", f"Set user property {name!r}")
        return True

    def clear_user_properties(self) -> bool:
        with self._lock:
            self._properties = {}
            self._loaded = True
            try:
                self.storage.remove(self.storage_key)
            except (StorageError, OSError) as exc:
                self.debug_logger.warn("user_properties", f"Could not clear stored user properties: {exc}")
                return False
        self.debug_logger.log("user_properties", "User properties cleared")
        return True

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        try:
            stored = self.storage.get(self.storage_key)
        except (StorageError, OSError) as exc:
            self.debug_logger.warn("user_properties", f"Could not load user properties: {exc}")
            return
        if not isinstance(stored, dict):
            return
        for name, value in stored.items():
            clean = sanitize_user_property_value(value)
            if is_valid_identifier(name) and clean is not None:
                self._properties[name] = clean
            if len(self._properties) >= MAX_USER_PROPERTY_COUNT:
                break

    def _persist(self) -> None:
        try:
            self.storage.set(self.storage_key, dict(self._properties))
        except (StorageError, OSError) as exc:
            self.debug_logger.warn("user_properties", f"Could not persist user properties: {exc}")
