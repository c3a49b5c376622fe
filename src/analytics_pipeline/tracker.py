from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, List, Mapping, Optional, Sequence

from .config import AnalyticsConfig
from .errors import EventValidationError
from .logger import DebugLogger
from .models import (
    Event,
    QueueStatus,
    engagement_time_for,
    sanitize_params,
    validate_event_name,
)

Executor = Callable[[Callable[[], None]], None]


@dataclass
class QueueEntry:
    event: Event
    attempts: int = 0


class FlushScheduler:
    """Cancelable background thread calling ``job`` every ``interval_s`` seconds."""

    def __init__(self, job: Callable[[], Any], interval_s: float) -> None:
        self.job = job
        self.interval_s = interval_s
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running and not self._stop.is_set():
            return
        # Each run owns its event so a lingering loop never sees a reset.
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop,), name="analytics-flush", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> bool:
        """Signal the loop and wait for it; ``False`` if it is still running."""
        self._stop.set()
        thread = self._thread
        if thread is None:
            return True
        if thread is not threading.current_thread():
            thread.join(timeout)
        if thread.is_alive():
            return False
        self._thread = None
        return True

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval_s):
            self.job()


class EventTracker:
    """Validates, queues and batches events for the transport.

    The queue holds at most ``max_queue_size`` entries; overflow evicts the
    oldest entries and counts them in ``dropped_count``. ``flush`` is the
    single exclusion point: a flush that finds another one in flight
    returns ``False`` immediately instead of waiting.
    """

    def __init__(
        self,
        transport: Any,
        *,
        max_queue_size: int = 100,
        batch_size: int = 10,
        max_batch_retries: int = 5,
        max_event_age_s: float = 24 * 3600,
        time_fn: Optional[Callable[[], float]] = None,
        flush_executor: Optional[Executor] = None,
        debug_logger: Optional[DebugLogger] = None,
    ) -> None:
        self.transport = transport
        self.max_queue_size = max_queue_size
        self.batch_size = batch_size
        self.max_batch_retries = max_batch_retries
        self.max_event_age_s = max_event_age_s
        self.flush_executor = flush_executor or self._default_flush_executor
        self.debug_logger = debug_logger or DebugLogger()
        self._time = time_fn or time.time
        self._queue: Deque[QueueEntry] = deque()
        self._queue_lock = threading.Lock()
        self._processing_lock = threading.Lock()
        self._flush_pending = False
        self._dropped_count = 0

    @classmethod
    def from_config(cls, config: AnalyticsConfig, transport: Any, **kwargs: Any) -> "EventTracker":
        return cls(
            transport,
            max_queue_size=config.max_queue_size,
            batch_size=config.batch_size,
            max_batch_retries=config.max_batch_retries,
            max_event_age_s=config.max_event_age_s,
            **kwargs,
        )

    @property
    def is_processing(self) -> bool:
        return self._processing_lock.locked()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count

    @property
    def queue_size(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    def track_event(
        self,
        name: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        client_id: str,
        session_id: str,
        user_properties: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        try:
            return self._enqueue(name, params, client_id, session_id, user_properties)
        except EventValidationError as exc:
            self.debug_logger.log("tracker", f"Rejected event: {exc}")
            return False
        except Exception as exc:  # tracking never raises into the host
            self.debug_logger.warn("tracker", f"Dropped event, {type(exc).__name__}: {exc}")
            return False

    def _enqueue(
        self,
        name: str,
        params: Optional[Mapping[str, Any]],
        client_id: str,
        session_id: str,
        user_properties: Optional[Mapping[str, Any]],
    ) -> bool:
        validate_event_name(name)
        clean = sanitize_params(params)
        event = Event(
            name=name,
            params=clean,
            timestamp=self._time(),
            client_id=client_id,
            session_id=session_id,
            engagement_time_msec=engagement_time_for(name, clean),
            user_properties=dict(user_properties or {}),
        )
        with self._queue_lock:
            self._queue.append(QueueEntry(event))
            evicted = self._enforce_capacity()
            queue_size = len(self._queue)
        if evicted:
            self.debug_logger.log(
                "queue", f"Queue full, dropped {evicted} oldest events", {"queueSize": queue_size}
            )
        self.debug_logger.log("tracker", f"Queued '{name}' ({queue_size}/{self.max_queue_size})", clean)
        if queue_size >= self.batch_size:
            self._schedule_flush()
        return True

    def flush(self) -> bool:
        if not self._processing_lock.acquire(blocking=False):
            self.debug_logger.log("queue", "Flush skipped, another batch is in flight")
            return False
        try:
            with self._queue_lock:
                if not self._queue:
                    return True
                count = min(self.batch_size, len(self._queue))
                batch = [self._queue.popleft() for _ in range(count)]
            delivered = self._send(batch)
            if delivered:
                self.debug_logger.log("queue", f"Flushed batch of {len(batch)} events")
                return True
            self._requeue(batch)
            return False
        finally:
            self._processing_lock.release()

    def drain(self) -> bool:
        """Flush batch after batch until the queue is empty or a flush fails."""
        while self.queue_size:
            if not self.flush():
                return False
        return True

    def wait_until_idle(self, timeout: float) -> bool:
        """Block until no batch is in flight, for at most ``timeout`` seconds."""
        if not self._processing_lock.acquire(timeout=timeout):
            return False
        self._processing_lock.release()
        return True

    def get_queue_status(self) -> QueueStatus:
        return QueueStatus(
            queue_size=self.queue_size,
            max_queue_size=self.max_queue_size,
            is_processing=self.is_processing,
            batch_size=self.batch_size,
            dropped_count=self._dropped_count,
        )

    def queued_events(self) -> List[Event]:
        with self._queue_lock:
            return [entry.event for entry in self._queue]

    def clear_queue(self) -> None:
        with self._queue_lock:
            self._queue.clear()
        self.debug_logger.log("queue", "Event queue cleared")

    def set_debug_mode(self, enabled: bool) -> None:
        self.debug_logger.set_enabled(enabled)
        self.debug_logger.log("tracker", f"Debug mode {'enabled' if enabled else 'disabled'}")

    def _send(self, batch: Sequence[QueueEntry]) -> bool:
        try:
            return bool(self.transport.send([entry.event for entry in batch]))
        except Exception as exc:  # transport boundary: any failure means "not delivered"
            self.debug_logger.warn("transport", f"Transport raised {type(exc).__name__}: {exc}")
            return False

    def _requeue(self, batch: List[QueueEntry]) -> None:
        now = self._time()
        survivors: List[QueueEntry] = []
        expired = 0
        for entry in batch:
            entry.attempts += 1
            too_old = now - entry.event.timestamp > self.max_event_age_s
            if entry.attempts >= self.max_batch_retries or too_old:
                expired += 1
                continue
            survivors.append(entry)
        with self._queue_lock:
            # Make room by dropping the oldest events queued behind the batch.
            overflow = len(self._queue) + len(survivors) - self.max_queue_size
            evicted = 0
            while overflow > 0 and self._queue:
                self._queue.popleft()
                overflow -= 1
                evicted += 1
            if overflow > 0:
                survivors = survivors[overflow:]
                evicted += overflow
            self._queue.extendleft(reversed(survivors))
            self._dropped_count += expired + evicted
        self.debug_logger.log(
            "queue",
            f"Delivery failed, re-queued {len(survivors)} events",
            {"expired": expired, "evicted": evicted},
        )

    def _enforce_capacity(self) -> int:
        evicted = 0
        while len(self._queue) > self.max_queue_size:
            self._queue.popleft()
            evicted += 1
        self._dropped_count += evicted
        return evicted

    def _schedule_flush(self) -> None:
        with self._queue_lock:
            if self._flush_pending:
                return
            self._flush_pending = True

        def job() -> None:
            with self._queue_lock:
                self._flush_pending = False
            self.drain()

        self.flush_executor(job)

    def _default_flush_executor(self, job: Callable[[], None]) -> None:
        worker = threading.Thread(target=job, daemon=True)
        worker.start()
