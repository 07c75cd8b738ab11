"""
Event Bus Service - lifecycle notifications for SDK sessions and replays

Capture opened, replay paused, sensor discovered and the like are published
here and dispatched on a background thread. Stream data (points, packets,
errors) never goes through the bus: it is delivered synchronously via the
CallbackRegistry.

Subscribers are called with {"name": <event value>, "data": <payload>} and
without the subscription lock held, so a subscriber may (un)subscribe.
"""

import logging
import queue
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Events(Enum):
    """Event constants"""

    # SDK session events
    SDK_INITIALIZED = "sdk.initialized"
    SDK_DEINITIALIZED = "sdk.deinitialized"
    SDK_CLEARED = "sdk.cleared"
    SENSOR_ADDED = "sensor.added"

    # Capture replay events
    REPLAY_OPENED = "replay.opened"
    REPLAY_CLOSED = "replay.closed"
    REPLAY_STARTED = "replay.started"
    REPLAY_PAUSED = "replay.paused"
    REPLAY_SEEK = "replay.seek"
    REPLAY_SPEED_CHANGED = "replay.speed_changed"
    REPLAY_LOOP_CHANGED = "replay.loop_changed"
    REPLAY_END = "replay.end"


class EventBus:
    """
    Queued publish/subscribe with one dispatch thread.

    Events published while the bus is stopped stay queued until start().
    When the queue is full new events are dropped with a warning.
    """

    def __init__(self, max_queue_size: int = 5000):
        self._subscribers: dict[Events, list[Callable]] = {}
        self._sub_lock = threading.Lock()

        self._queue = queue.Queue(maxsize=max_queue_size)
        self._processing = False
        self._thread: threading.Thread | None = None

    def start(self):
        """Start event processing thread"""
        if self._processing:
            return
        self._processing = True
        self._thread = threading.Thread(target=self._process_events, name="EventBus-Dispatch", daemon=True)
        self._thread.start()
        logger.debug("EventBus started")

    def stop(self):
        """Stop event processing after draining what is already queued."""
        if not self._processing:
            return

        self._processing = False
        try:
            self._queue.put(None, timeout=0.5)  # Sentinel to wake thread
        except queue.Full:
            logger.warning("Failed to send shutdown sentinel, queue full")

        if self._thread:
            self._thread.join(timeout=3.0)
            if self._thread.is_alive():
                logger.error("EventBus thread did not stop cleanly within timeout")
        self._thread = None
        logger.debug("EventBus stopped")

    def flush(self, timeout: float = 2.0) -> bool:
        """
        Block until every event published so far has been dispatched.

        Returns:
            False if the bus is not running or the timeout expired
        """
        if not self._processing:
            return False
        done = threading.Event()
        try:
            self._queue.put(done, timeout=timeout)
        except queue.Full:
            return False
        return done.wait(timeout)

    def subscribe(self, event: Events, callback: Callable):
        """Subscribe to an event; subscribing the same callback twice is a no-op."""
        with self._sub_lock:
            callbacks = self._subscribers.setdefault(event, [])
            if callback in callbacks:
                return
            callbacks.append(callback)
        logger.debug(f"Subscribed to {event.value}")

    def unsubscribe(self, event: Events, callback: Callable):
        with self._sub_lock:
            callbacks = self._subscribers.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def publish(self, event: Events, data: Any = None):
        """Queue an event for dispatch."""
        try:
            self._queue.put_nowait((event, data))
        except queue.Full:
            logger.warning(f"Event queue full, dropping event: {event.value}")

    def _process_events(self):
        """Background thread to process events"""
        while True:
            try:
                item = self._queue.get(timeout=0.1)
            except queue.Empty:
                if not self._processing:
                    break
                continue

            if item is None:  # Sentinel
                break
            if isinstance(item, threading.Event):  # flush() marker
                item.set()
                continue

            self._dispatch(*item)

    def _dispatch(self, event: Events, data: Any):
        with self._sub_lock:
            callbacks = list(self._subscribers.get(event, ()))

        for callback in callbacks:
            try:
                callback({"name": event.value, "data": data})
            except Exception as e:
                logger.error(f"Error in callback for {event.value}: {e}", exc_info=True)

    def clear_all(self):
        """Clear all subscribers (for testing/cleanup)."""
        with self._sub_lock:
            self._subscribers.clear()


# Global instance
event_bus = EventBus()
