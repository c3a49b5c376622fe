from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import urlparse

from .errors import ConfigurationError

DEFAULT_ENDPOINT = "https://www.google-analytics.com/mp/collect"
SESSION_EXPIRATION_IN_MIN = 30
PLACEHOLDER_MARKERS = ("placeholder", "xxxxxxx")

_ENV_PREFIX = "ANALYTICS_"
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class AnalyticsConfig:
    endpoint: str = DEFAULT_ENDPOINT
    measurement_id: str = ""
    api_secret: str = ""
    max_queue_size: int = 100
    batch_size: int = 10
    flush_interval_ms: int = 5000
    debug: bool = False
    session_timeout_minutes: int = SESSION_EXPIRATION_IN_MIN
    request_timeout_s: float = 10.0
    max_batch_retries: int = 5
    max_event_age_s: int = 24 * 3600
    storage_path: Optional[str] = None
    enabled: bool = True
    blocked_events: Tuple[str, ...] = ()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AnalyticsConfig":
        """Build a config from ``ANALYTICS_*`` variables, keeping defaults for unset ones."""
        env = os.environ if environ is None else environ
        parsers: Dict[str, Callable[[str], object]] = {
            "endpoint": str,
            "measurement_id": str,
            "api_secret": str,
            "max_queue_size": int,
            "batch_size": int,
            "flush_interval_ms": int,
            "debug": lambda raw: raw.strip().lower() in _TRUTHY,
            "session_timeout_minutes": int,
            "request_timeout_s": float,
            "max_batch_retries": int,
            "max_event_age_s": int,
            "storage_path": str,
            "enabled": lambda raw: raw.strip().lower() in _TRUTHY,
            "blocked_events": _parse_name_list,
        }
        values: Dict[str, object] = {}
        for name, parse in parsers.items():
            env_var = f"{_ENV_PREFIX}{name.upper()}"
            raw = env.get(env_var)
            if raw is None or raw == "":
                continue
            try:
                values[name] = parse(raw)
            except ValueError as exc:
                raise ConfigurationError(f"{env_var} is not valid: {raw!r}") from exc
        return cls(**values)  # type: ignore[arg-type]

    def validate(self) -> None:
        parsed = urlparse(self.endpoint or "")
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ConfigurationError(f"Invalid endpoint: {self.endpoint!r}")
        for field_name in ("measurement_id", "api_secret"):
            self._validate_credential(field_name, getattr(self, field_name))
        for field_name in (
            "max_queue_size",
            "batch_size",
            "flush_interval_ms",
            "session_timeout_minutes",
            "request_timeout_s",
            "max_event_age_s",
        ):
            if getattr(self, field_name) <= 0:
                raise ConfigurationError(f"{field_name} must be positive")
        if self.max_batch_retries < 1:
            raise ConfigurationError("max_batch_retries must be at least 1")
        if self.batch_size > self.max_queue_size:
            raise ConfigurationError("batch_size cannot exceed max_queue_size")

    def is_valid(self) -> bool:
        try:
            self.validate()
        except ConfigurationError:
            return False
        return True

    @staticmethod
    def _validate_credential(field_name: str, value: str) -> None:
        if not value or not value.strip():
            raise ConfigurationError(f"Invalid {field_name}: value is required")
        if any(ch.isspace() for ch in value):
            raise ConfigurationError(f"Invalid {field_name}: whitespace is not allowed")
        lowered = value.lower()
        if any(marker in lowered for marker in PLACEHOLDER_MARKERS):
            raise ConfigurationError(
                f"Invalid {field_name}: please set proper analytics credentials"
            )


def _parse_name_list(raw: str) -> Tuple[str, ...]:
    return tuple(name.strip() for name in raw.split(",") if name.strip())
