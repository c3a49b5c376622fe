"""Client-side telemetry pipeline: identity, sessions, batching and delivery."""

from .analytics import Analytics
from .config import AnalyticsConfig
from .errors import (
    AnalyticsError,
    ConfigurationError,
    EventValidationError,
    StorageError,
    TransportError,
)
from .identity import ClientIdStore
from .logger import DebugLogger
from .models import Event, PipelineState, PipelineStatus, QueueStatus, Session
from .session import SessionManager
from .storage import JsonFileStore, KeyValueStore, MemoryStore
from .tracker import EventTracker, FlushScheduler
from .transport import HttpTransport
from .user_properties import UserPropertyStore

__all__ = [
    "Analytics",
    "AnalyticsConfig",
    "AnalyticsError",
    "ClientIdStore",
    "ConfigurationError",
    "DebugLogger",
    "Event",
    "EventTracker",
    "EventValidationError",
    "FlushScheduler",
    "HttpTransport",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "PipelineState",
    "PipelineStatus",
    "QueueStatus",
    "Session",
    "SessionManager",
    "StorageError",
    "TransportError",
    "UserPropertyStore",
]
