from __future__ import annotations

import re
import threading
import traceback
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .config import AnalyticsConfig
from .errors import ConfigurationError, StorageError
from .identity import ClientIdStore
from .logger import DebugLogger
from .models import PipelineState, PipelineStatus, is_valid_identifier
from .session import SessionManager
from .storage import ENABLED_KEY, JsonFileStore, KeyValueStore, MemoryStore
from .tracker import EventTracker, Executor, FlushScheduler
from .transport import HttpTransport
from .user_properties import UserPropertyStore

_FILE_PATH_RE = re.compile(r"(?:file|chrome-extension)://\S+")
_URL_RE = re.compile(r"https?://\S+")
_EMAIL_RE = re.compile(r"\b[\w._%+-]+@[\w.-]+\.[A-Z]{2,}\b", re.IGNORECASE)
_IPV4_RE = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")


class Analytics:
    """Single entry point for host code: init, track, flush, status, debug.

    Construct one instance per process and pass it to the call sites that
    need it. Nothing here raises into the host; every operation reports
    through its return value.
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        *,
        storage: Optional[KeyValueStore] = None,
        transport: Any = None,
        flush_executor: Optional[Executor] = None,
        time_fn: Optional[Callable[[], float]] = None,
        debug_logger: Optional[DebugLogger] = None,
        start_scheduler: bool = True,
    ) -> None:
        self.config = config or AnalyticsConfig.from_env()
        self.debug_logger = debug_logger or DebugLogger(enabled=self.config.debug)
        if storage is None:
            storage = (
                JsonFileStore(self.config.storage_path)
                if self.config.storage_path
                else MemoryStore()
            )
        self.storage = storage
        self.client_ids = ClientIdStore(storage, debug_logger=self.debug_logger)
        self.sessions = SessionManager(
            storage,
            timeout_minutes=self.config.session_timeout_minutes,
            time_fn=time_fn,
            debug_logger=self.debug_logger,
        )
        self.user_properties = UserPropertyStore(storage, debug_logger=self.debug_logger)
        self.transport = transport or HttpTransport.from_config(
            self.config, debug_logger=self.debug_logger
        )
        self.tracker = EventTracker.from_config(
            self.config,
            self.transport,
            time_fn=time_fn,
            flush_executor=flush_executor,
            debug_logger=self.debug_logger,
        )
        self._scheduler = FlushScheduler(
            self.tracker.drain, self.config.flush_interval_ms / 1000.0
        )
        self._start_scheduler = start_scheduler
        self._state = PipelineState.UNINITIALIZED
        self._closed = False
        self._enabled = self.config.enabled
        self._state_lock = threading.Lock()

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is PipelineState.READY and not self._closed

    @property
    def enabled(self) -> bool:
        return self._enabled

    def init(self) -> bool:
        with self._state_lock:
            if self._closed:
                return False
            if self._state.is_terminal:
                return self._state is PipelineState.READY
            self._state = PipelineState.INITIALIZING
            try:
                self.config.validate()
            except ConfigurationError as exc:
                self._state = PipelineState.FAILED
                self.debug_logger.warn("analytics", f"Disabled, invalid configuration: {exc}")
                return False
            self._enabled = self._load_enabled()
            self.client_ids.get_or_create_client_id()
            self.sessions.get_or_create_session_id()
            if self._start_scheduler:
                self._scheduler.start()
            self._state = PipelineState.READY
            self.debug_logger.log("analytics", "Initialized successfully")
            return True

    def track_event(self, name: str, params: Optional[Mapping[str, Any]] = None) -> bool:
        if not self.ready:
            self.debug_logger.log("analytics", f"Ignored '{name}', pipeline is {self._state.value}")
            return False
        if not self._enabled:
            self.debug_logger.log("analytics", f"Ignored '{name}', analytics is disabled")
            return False
        if not is_valid_identifier(name):
            self.debug_logger.log("analytics", f"Rejected invalid event name {name!r}")
            return False
        if name in self.config.blocked_events:
            self.debug_logger.log("analytics", f"Blocked event '{name}'")
            return False
        client_id = self.client_ids.get_or_create_client_id()
        session_id = self.sessions.get_or_create_session_id()
        return self.tracker.track_event(
            name,
            params,
            client_id=client_id,
            session_id=session_id,
            user_properties=self.user_properties.get_user_properties(),
        )

    track_custom_event = track_event

    def track_page_view(
        self,
        *,
        title: str = "Unknown Page",
        url: str = "",
        referrer: str = "",
        page: str = "unknown",
    ) -> bool:
        return self.track_event(
            "page_view",
            {
                "page_title": title,
                "page_location": url,
                "page_referrer": referrer,
                "extension_page": page,
            },
        )

    def track_search(
        self,
        query: str = "",
        *,
        results_count: int = 0,
        search_type: str = "text",
        filters_used: Sequence[str] = (),
        duration_ms: int = 0,
    ) -> bool:
        return self.track_event(
            "search",
            {
                "search_term": query,
                "results_count": results_count,
                "search_type": search_type,
                "filters_used": ",".join(filters_used),
                "has_filters": bool(filters_used),
                "query_length": len(query),
                "search_duration_ms": duration_ms,
            },
        )

    def track_prompt_view(
        self,
        prompt_id: str = "",
        *,
        category: str = "unknown",
        content: str = "",
        source: str = "unknown",
        is_favorite: bool = False,
        user_rating: float = 0,
        view_duration_ms: int = 0,
    ) -> bool:
        return self.track_event(
            "prompt_view",
            {
                "prompt_id": prompt_id,
                "prompt_category": category,
                "prompt_length": len(content),
                "view_source": source,
                "is_favorite": is_favorite,
                "user_rating": user_rating,
                "view_duration_ms": view_duration_ms,
            },
        )

    def track_prompt_copy(
        self,
        prompt_id: str = "",
        *,
        category: str = "unknown",
        content: str = "",
        copy_method: str = "button",
        is_favorite: bool = False,
    ) -> bool:
        return self.track_event(
            "prompt_copy",
            {
                "prompt_id": prompt_id,
                "prompt_category": category,
                "copy_method": copy_method,
                "prompt_length": len(content),
                "is_favorite": is_favorite,
            },
        )

    def track_favorite_action(
        self,
        prompt_id: str = "",
        *,
        action: str = "add",
        category: str = "unknown",
        total_favorites: int = 0,
    ) -> bool:
        return self.track_event(
            "favorite_action",
            {
                "prompt_id": prompt_id,
                "action": action,
                "prompt_category": category,
                "total_favorites": total_favorites,
            },
        )

    def track_rating(
        self,
        prompt_id: str = "",
        *,
        rating: float = 0,
        previous_rating: float = 0,
        category: str = "unknown",
    ) -> bool:
        return self.track_event(
            "rating_action",
            {
                "prompt_id": prompt_id,
                "rating_value": rating,
                "previous_rating": previous_rating,
                "is_update": previous_rating > 0,
                "prompt_category": category,
            },
        )

    def track_prompt_create(
        self,
        *,
        category: str = "unknown",
        content: str = "",
        is_private: bool = False,
        creation_time_ms: int = 0,
    ) -> bool:
        return self.track_event(
            "prompt_create",
            {
                "prompt_category": category,
                "prompt_length": len(content),
                "is_private": is_private,
                "creation_time_ms": creation_time_ms,
            },
        )

    def track_login(self, *, method: str = "email", success: bool = True, form_time_ms: int = 0) -> bool:
        return self.track_event(
            "login",
            {"method": method, "success": success, "form_completion_time_ms": form_time_ms},
        )

    def track_sign_up(self, *, method: str = "email", success: bool = True, form_time_ms: int = 0) -> bool:
        return self.track_event(
            "sign_up",
            {"method": method, "success": success, "form_completion_time_ms": form_time_ms},
        )

    def track_logout(self, *, session_duration_ms: int = 0) -> bool:
        return self.track_event("logout", {"session_duration_ms": session_duration_ms})

    def track_engagement(
        self,
        duration_ms: int = 0,
        *,
        engagement_type: str = "general",
        interactions: int = 1,
        context: str = "unknown",
    ) -> bool:
        return self.track_event(
            "user_engagement",
            {
                "engagement_time_msec": duration_ms,
                "engagement_type": engagement_type,
                "interactions": interactions,
                "context": context,
            },
        )

    def track_conversion(
        self,
        conversion_id: str = "goal",
        *,
        value: float = 1,
        currency: str = "USD",
        conversion_type: str = "goal",
        category: str = "engagement",
    ) -> bool:
        return self.track_event(
            "conversion",
            {
                "conversion_id": conversion_id,
                "value": value,
                "currency": currency,
                "conversion_type": conversion_type,
                "conversion_category": category,
            },
        )

    def track_error(
        self,
        error_type: str,
        error: Any = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        if isinstance(error, BaseException):
            message = str(error)
            name = type(error).__name__
            stack = _format_traceback(error)
        else:
            message = "" if error is None else str(error)
            name = "Unknown"
            stack = ""
        params: Dict[str, Any] = {
            "error_type": error_type,
            "error_message": sanitize_error_message(message),
            "error_stack": sanitize_stack_trace(stack),
            "error_name": name,
        }
        if context:
            params.update(context)
        return self.track_event("extension_error", params)

    def flush(self) -> bool:
        if not self.ready or not self._enabled:
            return False
        return self.tracker.flush()

    def clear_queue(self) -> None:
        self.tracker.clear_queue()

    def get_status(self) -> PipelineStatus:
        queue = self.tracker.get_queue_status()
        return PipelineStatus(
            state=self._state,
            initialized=self._state.is_terminal,
            environment_valid=self.config.is_valid(),
            queue_size=queue.queue_size,
            max_queue_size=queue.max_queue_size,
            is_processing=queue.is_processing,
            batch_size=queue.batch_size,
            dropped_count=queue.dropped_count,
            client_id=self.client_ids.current_client_id(),
            session_id=self.sessions.current_session_id(),
            debug=self.debug_logger.enabled,
            enabled=self._enabled,
        )

    def set_debug_mode(self, enabled: bool) -> None:
        self.tracker.set_debug_mode(enabled)

    def debug_entries(self) -> List[str]:
        return self.debug_logger.entries

    def set_enabled(self, enabled: bool) -> None:
        """Opt in or out of analytics. Opting out discards pending events.

        The choice is persisted so it survives restarts.
        """
        self._enabled = bool(enabled)
        try:
            self.storage.set(ENABLED_KEY, self._enabled)
        except (StorageError, OSError) as exc:
            self.debug_logger.warn("analytics", f"Could not persist analytics preference: {exc}")
        if not self._enabled:
            self.tracker.clear_queue()
        self.debug_logger.log("analytics", f"Analytics {'enabled' if self._enabled else 'disabled'}")

    def set_user_property(self, name: str, value: Any) -> bool:
        return self.user_properties.set_user_property(name, value)

    def get_user_properties(self) -> Dict[str, Any]:
        return self.user_properties.get_user_properties()

    def _load_enabled(self) -> bool:
        try:
            stored = self.storage.get(ENABLED_KEY)
        except (StorageError, OSError) as exc:
            self.debug_logger.warn("analytics", f"Could not load analytics preference: {exc}")
            return self._enabled
        return stored if isinstance(stored, bool) else self._enabled

    def reset_identity(self) -> bool:
        """Drop the stored client and session identifiers (privacy reset)."""
        cleared = self.client_ids.clear_client_id()
        cleared = self.sessions.clear_session() and cleared
        cleared = self.user_properties.clear_user_properties() and cleared
        if self.ready:
            self.client_ids.get_or_create_client_id()
            self.sessions.get_or_create_session_id()
        return cleared

    def shutdown(self, flush: bool = True) -> bool:
        with self._state_lock:
            if self._closed:
                return True
            self._closed = True
        self._scheduler.stop()
        delivered = True
        if flush and self._state is PipelineState.READY and self._enabled:
            self.tracker.wait_until_idle(self.config.request_timeout_s)
            delivered = self.tracker.drain()
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()
        self.debug_logger.log("analytics", "Shut down")
        return delivered

    def __enter__(self) -> "Analytics":
        self.init()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()


def sanitize_error_message(message: str) -> str:
    if not message:
        return "Unknown error"
    message = _FILE_PATH_RE.sub("[FILE_PATH]", message)
    message = _URL_RE.sub("[URL]", message)
    message = _EMAIL_RE.sub("[EMAIL]", message)
    message = _IPV4_RE.sub("[IP_ADDRESS]", message)
    return message[:300]


def sanitize_stack_trace(stack: str) -> str:
    if not stack:
        return ""
    lines = stack.splitlines()[:8]
    lines = [_URL_RE.sub("[URL]", _FILE_PATH_RE.sub("[FILE_PATH]", line)) for line in lines]
    return "\n".join(lines)[:800]


def _format_traceback(error: BaseException) -> str:
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))
