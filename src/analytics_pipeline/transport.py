from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

import requests

from .config import AnalyticsConfig
from .errors import TransportError
from .logger import DebugLogger
from .models import Event

logger = logging.getLogger(__name__)


class HttpTransport:
    """Delivers one batch per call as a JSON POST to the configured endpoint.

    ``send`` never raises: every failure becomes ``False`` and retrying is
    left to the caller.
    """

    def __init__(
        self,
        *,
        endpoint: str,
        measurement_id: str,
        api_secret: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        debug_logger: Optional[DebugLogger] = None,
    ) -> None:
        self.endpoint = endpoint
        self.measurement_id = measurement_id
        self.api_secret = api_secret
        self.timeout = timeout
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.debug_logger = debug_logger or DebugLogger()

    @classmethod
    def from_config(
        cls,
        config: AnalyticsConfig,
        *,
        session: Optional[requests.Session] = None,
        debug_logger: Optional[DebugLogger] = None,
    ) -> "HttpTransport":
        return cls(
            endpoint=config.endpoint,
            measurement_id=config.measurement_id,
            api_secret=config.api_secret,
            timeout=config.request_timeout_s,
            session=session,
            debug_logger=debug_logger,
        )

    def build_payload(self, batch: Sequence[Event]) -> Dict[str, Any]:
        if not batch:
            raise TransportError("Cannot build a payload for an empty batch")
        head = batch[0]
        payload: Dict[str, Any] = {
            "client_id": head.client_id,
            "session_id": head.session_id,
            "events": [event.to_wire() for event in batch],
        }
        if head.user_properties:
            payload["user_properties"] = {
                name: {"value": value} for name, value in head.user_properties.items()
            }
        return payload

    def send(self, batch: Sequence[Event]) -> bool:
        if not batch:
            return True
        try:
            payload = self.build_payload(batch)
            response = self.session.post(
                self.endpoint,
                params={
                    "measurement_id": self.measurement_id,
                    "api_secret": self.api_secret,
                },
                headers={"Content-Type": "application/json"},
                json=payload,
                timeout=self.timeout,
            )
        except (requests.RequestException, TransportError, TypeError, ValueError) as exc:
            self.debug_logger.log("transport", f"Network error sending {len(batch)} events: {exc}")
            logger.debug("Analytics POST %s failed: %s", self.endpoint, exc)
            return False
        status = response.status_code
        if 200 <= status < 300:
            self.debug_logger.log("transport", f"Batch of {len(batch)} events accepted (HTTP {status})")
            return True
        self.debug_logger.log(
            "transport",
            f"Endpoint rejected batch of {len(batch)} events (HTTP {status}): {response.text[:200]}",
        )
        return False

    def close(self) -> None:
        if self._owns_session:
            self.session.close()
