"""
Process-wide EventBus for post-commit fan-out.

Invariants:
  - Topics come from app.enums.events (TelemetryEvent, AlertEvent).
  - Publishers call ``publish`` only after the change they announce is committed.
  - Subscribers always receive a plain dict (or primitive) payload and run on
    a bounded worker pool; a full queue drops the event instead of blocking
    the publisher.
"""

import logging
import threading
import time
from collections import defaultdict
from dataclasses import asdict, is_dataclass
from enum import Enum
from queue import Empty, Full, Queue
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel

from app.config import load_config
from app.enums.events import EventType

logger = logging.getLogger(__name__)

Subscriber = Callable[[Any], None]

# Summarize drops at most once per interval, after a minimum number of drops
_DROP_WARNING_THRESHOLD = 10
_DROP_WARNING_INTERVAL_SECONDS = 60


def _topic(event_name: EventType | str) -> str:
    return event_name.value if isinstance(event_name, Enum) else str(event_name)


def _to_payload(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if is_dataclass(data) and not isinstance(data, type):
        return asdict(data)
    return data


class EventBus:
    """
    Singleton publish/subscribe router.

    Queue and worker pool sizes come from ``TELEMETRY_EVENTBUS_QUEUE_SIZE`` and
    ``TELEMETRY_EVENTBUS_WORKER_COUNT`` the first time the bus is created.
    """

    _instance: Optional["EventBus"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "EventBus":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    config = load_config()
                    instance = super().__new__(cls)
                    instance._setup(config.eventbus_queue_size, config.eventbus_worker_count)
                    cls._instance = instance
        return cls._instance

    def _setup(self, queue_size: int, worker_count: int) -> None:
        self.subscribers: Dict[str, list[Subscriber]] = defaultdict(list)
        self.lock = threading.Lock()
        self._queue_size = queue_size
        self._worker_count = worker_count
        self._queue: Queue = Queue(maxsize=queue_size)
        self._dropped_events = 0
        self._drops_by_event: Dict[str, int] = defaultdict(int)
        self._drops_since_last_warning = 0
        self._last_drop_warning_time = 0.0
        self._workers: list[threading.Thread] = []
        for index in range(worker_count):
            worker = threading.Thread(target=self._worker_loop, name=f"eventbus-{index}", daemon=True)
            worker.start()
            self._workers.append(worker)
        logger.info("EventBus workers started (pool=%s queue=%s)", worker_count, queue_size)

    @classmethod
    def get_instance(cls) -> "EventBus":
        return cls()

    # --- Subscription --------------------------------------------------------
    def subscribe(self, event_name: EventType | str, callback: Subscriber) -> Callable[[], None]:
        """
        Register *callback* for a topic.

        Returns:
            A function that removes the subscription again.
        """
        name = _topic(event_name)
        with self.lock:
            self.subscribers[name].append(callback)

        def unsubscribe() -> None:
            with self.lock:
                callbacks = self.subscribers.get(name, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def listener(self, event_name: EventType | str) -> Callable[[Subscriber], Subscriber]:
        """Decorator form of ``subscribe``."""

        def decorator(func: Subscriber) -> Subscriber:
            self.subscribe(event_name, func)
            return func

        return decorator

    # --- Delivery ------------------------------------------------------------
    def publish(self, event_name: EventType | str, data: Any | None = None) -> int:
        """
        Queue *data* for every subscriber of the topic.

        Returns:
            Number of deliveries queued (drops are counted, not raised).
        """
        name = _topic(event_name)
        payload = _to_payload(data)
        with self.lock:
            callbacks = list(self.subscribers.get(name, ()))
        queued = 0
        for callback in callbacks:
            try:
                self._queue.put_nowait((name, callback, payload))
                queued += 1
            except Full:
                self._record_drop(name)
        return queued

    def _worker_loop(self) -> None:
        while True:
            name, callback, payload = self._queue.get()
            try:
                callback(payload)
            except Exception:
                logger.exception("Subscriber failed for event %s", name)
            finally:
                self._queue.task_done()

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """Block until queued deliveries finish or *timeout* elapses."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self._queue.unfinished_tasks == 0:
                return True
            time.sleep(0.01)
        return self._queue.unfinished_tasks == 0

    def clear_subscribers(self) -> None:
        with self.lock:
            self.subscribers.clear()
        try:
            while True:
                self._queue.get_nowait()
                self._queue.task_done()
        except Empty:
            pass

    def _record_drop(self, event_name: str) -> None:
        self._dropped_events += 1
        self._drops_by_event[event_name] += 1
        self._drops_since_last_warning += 1

        now = time.time()
        if (
            self._drops_since_last_warning >= _DROP_WARNING_THRESHOLD
            and now - self._last_drop_warning_time >= _DROP_WARNING_INTERVAL_SECONDS
        ):
            top = sorted(self._drops_by_event.items(), key=lambda item: item[1], reverse=True)[:5]
            logger.warning(
                "EventBus dropping events: queue_size=%d total_dropped=%d recent_drops=%d top=[%s]. "
                "Consider raising TELEMETRY_EVENTBUS_QUEUE_SIZE.",
                self._queue_size,
                self._dropped_events,
                self._drops_since_last_warning,
                ", ".join(f"{k}:{v}" for k, v in top),
            )
            self._drops_since_last_warning = 0
            self._last_drop_warning_time = now

    def get_metrics(self) -> Dict[str, Any]:
        """Lightweight counters for health endpoints."""
        top_dropped = dict(sorted(self._drops_by_event.items(), key=lambda item: item[1], reverse=True)[:5])
        with self.lock:
            subscriber_count = sum(len(values) for values in self.subscribers.values())
        return {
            "queue_depth": self._queue.qsize(),
            "queue_size": self._queue_size,
            "workers": self._worker_count,
            "dropped_events": self._dropped_events,
            "drops_by_event_top5": top_dropped,
            "subscribers": subscriber_count,
        }
