from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Deque, List, Mapping, Optional

from .models import redact_for_logging

logger = logging.getLogger(__name__)


class DebugLogger:
    """Captures console-like diagnostics for the pipeline while debug mode is on."""

    def __init__(
        self,
        *,
        enabled: bool = False,
        max_entries: int = 500,
        sink: Optional[logging.Logger] = None,
    ) -> None:
        self._enabled = enabled
        self._entries: Deque[str] = deque(maxlen=max_entries)
        self._sink = sink or logger
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = bool(enabled)

    def log(self, channel: str, message: str, params: Optional[Mapping[str, Any]] = None) -> None:
        if not self._enabled:
            return
        entry = self._format(channel, message, params)
        self._record(entry)
        self._sink.debug(entry)

    def warn(self, channel: str, message: str, params: Optional[Mapping[str, Any]] = None) -> None:
        # Fallbacks stay visible at WARNING level even with debug mode off.
        entry = self._format(channel, message, params)
        if self._enabled:
            self._record(entry)
        self._sink.warning(entry)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def entries(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def _record(self, entry: str) -> None:
        with self._lock:
            self._entries.append(entry)

    @staticmethod
    def _format(channel: str, message: str, params: Optional[Mapping[str, Any]]) -> str:
        entry = f"> [{channel}] {message}"
        if params:
            entry = f"{entry} {redact_for_logging(params)}"
        return entry
