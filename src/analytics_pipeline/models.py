from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from .errors import EventValidationError

ParamValue = Union[str, int, float, bool]

IDENTIFIER_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,39}$")
UUID_RE = re.compile(
    r"^[0-9a-f]{8}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{12}$",
    re.IGNORECASE,
)

MAX_PARAM_COUNT = 25
MAX_USER_PROPERTY_COUNT = 25
MAX_USER_PROPERTY_LENGTH = 36
MAX_STRING_LENGTH = 100
MAX_ENGAGEMENT_TIME_MSEC = 86_400_000
DEFAULT_ENGAGEMENT_TIME_MSEC = 1000

SENSITIVE_LOG_KEYS = ("password", "token", "secret", "key", "auth")

# event name -> (duration param that overrides the default, default msec)
_ENGAGEMENT_DEFAULTS: Dict[str, tuple] = {
    "page_view": (None, 1000),
    "prompt_view": ("view_duration_ms", 2000),
    "select_content": ("view_duration_ms", 2000),
    "prompt_copy": (None, 500),
    "search": ("search_duration_ms", 1500),
    "favorite_action": (None, 300),
    "rating_action": (None, 300),
    "prompt_create": ("creation_time_ms", 10000),
    "prompt_edit": ("creation_time_ms", 10000),
    "login": ("form_completion_time_ms", 5000),
    "sign_up": ("form_completion_time_ms", 5000),
    "extension_error": (None, 100),
}


class PipelineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {PipelineState.READY, PipelineState.FAILED}


@dataclass(frozen=True)
class Event:
    name: str
    params: Dict[str, ParamValue]
    timestamp: float
    client_id: str
    session_id: str
    engagement_time_msec: int = DEFAULT_ENGAGEMENT_TIME_MSEC
    user_properties: Dict[str, ParamValue] = field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        params: Dict[str, Any] = dict(self.params)
        params["session_id"] = self.session_id
        params["engagement_time_msec"] = self.engagement_time_msec
        return {"name": self.name, "params": params, "timestamp": self.timestamp}


@dataclass
class Session:
    session_id: str
    started_at: float
    last_activity_at: float

    def is_valid(self, now: float, timeout_s: float) -> bool:
        return now - self.last_activity_at < timeout_s

    def to_record(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "started_at": self.started_at,
            "last_activity_at": self.last_activity_at,
        }

    @classmethod
    def from_record(cls, record: Any) -> Optional["Session"]:
        if not isinstance(record, Mapping):
            return None
        session_id = record.get("session_id")
        started_at = record.get("started_at")
        last_activity_at = record.get("last_activity_at")
        if not isinstance(session_id, str) or not session_id:
            return None
        if not _is_timestamp(started_at) or not _is_timestamp(last_activity_at):
            return None
        return cls(
            session_id=session_id,
            started_at=float(started_at),
            last_activity_at=float(last_activity_at),
        )


@dataclass
class QueueStatus:
    queue_size: int
    max_queue_size: int
    is_processing: bool
    batch_size: int
    dropped_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queueSize": self.queue_size,
            "maxQueueSize": self.max_queue_size,
            "isProcessing": self.is_processing,
            "batchSize": self.batch_size,
            "droppedCount": self.dropped_count,
        }


@dataclass
class PipelineStatus:
    state: PipelineState
    initialized: bool
    environment_valid: bool
    queue_size: int
    max_queue_size: int
    is_processing: bool
    batch_size: int
    dropped_count: int = 0
    client_id: Optional[str] = None
    session_id: Optional[str] = None
    debug: bool = False
    enabled: bool = True
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "state": self.state.value,
            "initialized": self.initialized,
            "environmentValid": self.environment_valid,
            "queueSize": self.queue_size,
            "maxQueueSize": self.max_queue_size,
            "isProcessing": self.is_processing,
            "batchSize": self.batch_size,
            "droppedCount": self.dropped_count,
            "clientId": self.client_id,
            "sessionId": self.session_id,
            "debug": self.debug,
            "enabled": self.enabled,
        }
        payload.update(self.extra)
        return payload


def is_valid_identifier(name: Any) -> bool:
    return isinstance(name, str) and bool(IDENTIFIER_RE.match(name))


def validate_event_name(name: Any) -> str:
    if not is_valid_identifier(name):
        raise EventValidationError(f"Invalid event name: {name!r}")
    return name


def sanitize_params(params: Any) -> Dict[str, ParamValue]:
    """Keep valid parameter names and coerce values to wire-safe scalars.

    Invalid names and ``None`` values are skipped; anything beyond
    ``MAX_PARAM_COUNT`` accepted parameters is ignored.
    """
    if params is None:
        return {}
    if not isinstance(params, Mapping):
        raise EventValidationError("Event parameters must be a mapping")
    sanitized: Dict[str, ParamValue] = {}
    for key, value in params.items():
        if len(sanitized) >= MAX_PARAM_COUNT:
            break
        if not is_valid_identifier(key):
            continue
        clean = sanitize_param_value(value)
        if clean is not None:
            sanitized[key] = clean
    return sanitized


def sanitize_param_value(value: Any) -> Optional[ParamValue]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value if _is_finite(value) else 0
    if isinstance(value, str):
        return value[:MAX_STRING_LENGTH]
    return str(value)[:MAX_STRING_LENGTH]


def sanitize_user_property_value(value: Any) -> Optional[ParamValue]:
    clean = sanitize_param_value(value)
    if isinstance(clean, str):
        return clean[:MAX_USER_PROPERTY_LENGTH]
    return clean


def engagement_time_for(name: str, params: Mapping[str, Any]) -> int:
    explicit = params.get("engagement_time_msec")
    if _is_number(explicit) and explicit:
        return int(max(1, min(explicit, MAX_ENGAGEMENT_TIME_MSEC)))
    duration_key, default = _ENGAGEMENT_DEFAULTS.get(
        name, (None, DEFAULT_ENGAGEMENT_TIME_MSEC)
    )
    if duration_key:
        duration = params.get(duration_key)
        if _is_number(duration) and duration > 0:
            return int(min(duration, MAX_ENGAGEMENT_TIME_MSEC))
    return default


def redact_for_logging(params: Mapping[str, Any]) -> Dict[str, Any]:
    redacted: Dict[str, Any] = {}
    for key, value in params.items():
        if any(marker in str(key).lower() for marker in SENSITIVE_LOG_KEYS):
            redacted[key] = "[REDACTED]"
        elif isinstance(value, str) and len(value) > MAX_STRING_LENGTH:
            redacted[key] = value[:MAX_STRING_LENGTH] + "..."
        else:
            redacted[key] = value
    return redacted


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and _is_finite(value)
    )


def _is_finite(value: Union[int, float]) -> bool:
    # Ints beyond float range overflow in math.isfinite.
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _is_timestamp(value: Any) -> bool:
    return _is_number(value) and value > 0
