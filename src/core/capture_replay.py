"""
Capture Replay Controller

Deterministic playback of recorded sensor traffic.

States:
    CLOSED --open--> OPEN_PAUSED --resume--> OPEN_RUNNING
                         ^                        |
                         +---------pause----------+
    any open state --close--> CLOSED

Advancement:
- resume_blocking_once() / resume_blocking(duration): synchronous, on the
  calling thread, no sleeping between records
- resume(): background thread, records paced in real time scaled by speed

The two advancement paths are mutually exclusive: blocking calls stop the
background thread first, and every delivery happens under the advancement
lock, which is held across the stream callbacks.
"""

import logging
import math
import threading
import time
from numbers import Real

from config import config
from models import ErrorCode, ReplayState
from services import Events, event_bus

from .callback_registry import CallbackRegistry
from .capture_source import (
    DEFAULT_SOURCES,
    Capture,
    TruncatedCaptureError,
    UnsupportedCaptureError,
    load_capture,
)
from .sensor_driver import SensorDriver
from .sensor_error import SensorError

logger = logging.getLogger(__name__)


def _is_number(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


class CaptureReplay:
    """
    Controls capture file replay for one SDK session.

    Usage:
        replay = session.capture_replay
        if replay.open("drive.pcap"):
            ...
        replay.seek(5.0).ignore()
        replay.resume_blocking(1.0).raise_for_error()
        replay.resume()
        replay.pause()
        replay.close()
    """

    def __init__(
        self,
        driver: SensorDriver,
        callbacks: CallbackRegistry,
        bus=event_bus,
        sources=DEFAULT_SOURCES,
    ):
        """
        Initialize capture replay.

        Args:
            driver: Receives every replayed packet
            callbacks: Error stream for packets that fail to process
            bus: Event bus for lifecycle notifications
            sources: Capture readers, tried in order
        """
        self._driver = driver
        self._callbacks = callbacks
        self._bus = bus
        self._sources = sources

        # Advancement lock: held while delivering records (across callbacks)
        self._lock = threading.RLock()
        # Configuration lock: speed, loop and thread bookkeeping, never held across callbacks
        self._config_lock = threading.Lock()
        # Bumped by pause() and close(); a blocking call returns once it changes
        self._pause_count = 0
        # Wakes the playback thread out of its inter-record sleep
        self._wake = threading.Event()

        self._capture: Capture | None = None
        self._position = 0.0
        self._index = 0  # Next record to deliver
        self._at_end = False
        # Bumped whenever the position jumps (seek, loop wrap)
        self._timeline = 0

        self._enable_loop = bool(config.get("replay", "enable_loop", False))
        self._speed = float(config.get("replay", "default_speed", 1.0))
        self._join_timeout = float(config.get("replay", "thread_join_timeout", 2.0))

        self._running = False
        self._thread: threading.Thread | None = None
        self._thread_stop: threading.Event | None = None

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def is_open(self) -> bool:
        return self._capture is not None

    def open(self, path) -> SensorError:
        """
        Open capture file.

        Must be called before any other replay functions.
        """
        with self._lock:
            if self._capture is not None:
                return SensorError(
                    ErrorCode.ERROR_INVALID_ARGUMENTS,
                    f"capture already open: {self._capture.filename}",
                )

            try:
                capture = load_capture(path, self._sources)
            except UnsupportedCaptureError as e:
                return SensorError(ErrorCode.ERROR_INVALID_FILE_TYPE, str(e))
            except TruncatedCaptureError as e:
                return SensorError(ErrorCode.ERROR_EOF, f"{path}: {e}")
            except OSError as e:
                return SensorError(ErrorCode.ERROR_FILE_IO, f"{path}: {e}")
            except ValueError as e:
                return SensorError(ErrorCode.ERROR_CORRUPT_FILE, f"{path}: {e}")

            self._driver.clear()
            self._capture = capture
            self._position = 0.0
            self._index = 0
            self._at_end = False

        logger.info(
            f"Opened capture {capture.filename} "
            f"({len(capture)} packets, {capture.length:.3f}s)"
        )
        self._bus.publish(
            Events.REPLAY_OPENED,
            {
                "filename": capture.filename,
                "start_time": capture.start_time,
                "length": capture.length,
                "packet_count": len(capture),
            },
        )
        return SensorError()

    def close(self) -> SensorError:
        """Close capture file. Always succeeds."""
        self._request_pause()
        self._stop_thread()

        with self._lock:
            capture = self._capture
            if capture is None:
                return SensorError()
            self._capture = None
            self._position = 0.0
            self._index = 0
            self._at_end = False
            self._driver.clear()

        logger.info(f"Closed capture {capture.filename}")
        self._bus.publish(Events.REPLAY_CLOSED, {"filename": capture.filename})
        return SensorError()

    def cleanup(self):
        """Clean up replay resources"""
        self.close().ignore()

    # ========================================================================
    # QUERIES (getters cannot fail; they return defaults while closed)
    # ========================================================================

    def get_filename(self) -> str:
        capture = self._capture
        return capture.filename if capture else ""

    def get_start_time(self) -> int:
        """Capture start timestamp [unix microseconds]"""
        capture = self._capture
        return capture.start_time if capture else 0

    def get_position(self) -> float:
        """Capture file position [seconds]"""
        return self._position

    def get_time(self) -> int:
        """Capture file time [unix microseconds]"""
        capture = self._capture
        if capture is None:
            return 0
        return capture.start_time + int(round(self._position * 1e6))

    def get_length(self) -> float:
        """Capture file length [seconds]"""
        capture = self._capture
        return capture.length if capture else 0.0

    def is_end(self) -> bool:
        """
        True if at end of capture file.

        Only meaningful with the resume_blocking methods; when looping the
        end is transient.
        """
        return self._at_end

    def get_enable_loop(self) -> bool:
        with self._config_lock:
            return self._enable_loop

    def get_speed(self) -> float:
        with self._config_lock:
            return self._speed

    def is_running(self) -> bool:
        """True if the replay thread is running"""
        with self._config_lock:
            return self._running

    def get_state(self) -> ReplayState:
        if self._capture is None:
            return ReplayState.CLOSED
        return ReplayState.OPEN_RUNNING if self.is_running() else ReplayState.OPEN_PAUSED

    def get_info(self) -> dict:
        """Get replay info"""
        capture = self._capture
        return {
            "state": self.get_state().value,
            "filename": self.get_filename(),
            "start_time": self.get_start_time(),
            "length": self.get_length(),
            "position": self.get_position(),
            "time": self.get_time(),
            "packet_count": len(capture) if capture else 0,
            "next_packet": self._index,
            "is_end": self.is_end(),
            "loop": self.get_enable_loop(),
            "speed": self.get_speed(),
        }

    # ========================================================================
    # NAVIGATION
    # ========================================================================

    def seek(self, position: float) -> SensorError:
        """
        Seek to capture file position [seconds].

        Position must be in range [0.0, capture length).
        """
        with self._lock:
            if self._capture is None:
                return SensorError(ErrorCode.ERROR_NOT_OPEN, "seek: no capture open")
            return self._seek_locked(position)

    def seek_relative(self, delta: float) -> SensorError:
        """
        Seek relative to the current position [seconds].

        The current position is read and the seek applied under one lock.
        """
        with self._lock:
            if self._capture is None:
                return SensorError(ErrorCode.ERROR_NOT_OPEN, "seek_relative: no capture open")
            if not _is_number(delta):
                return SensorError(ErrorCode.ERROR_INVALID_ARGUMENTS, f"invalid seek offset: {delta!r}")
            return self._seek_locked(self._position + delta)

    def _seek_locked(self, position: float) -> SensorError:
        capture = self._capture
        if not _is_number(position) or not 0.0 <= position < capture.length:
            return SensorError(
                ErrorCode.ERROR_INVALID_ARGUMENTS,
                f"seek position {position!r} outside [0, {capture.length})",
            )

        self._position = float(position)
        self._index = capture.index_at(self._position)
        self._at_end = False
        self._timeline += 1
        self._wake.set()

        logger.debug(f"Seek to {self._position:.6f}s (packet {self._index})")
        self._bus.publish(Events.REPLAY_SEEK, {"position": self._position})
        return SensorError()

    # ========================================================================
    # CONFIGURATION
    # ========================================================================

    def set_enable_loop(self, value: bool) -> SensorError:
        """If enabled, replay will automatically rewind at end."""
        if self._capture is None:
            return SensorError(ErrorCode.ERROR_NOT_OPEN, "set_enable_loop: no capture open")

        with self._config_lock:
            self._enable_loop = bool(value)

        self._bus.publish(Events.REPLAY_LOOP_CHANGED, {"loop": bool(value)})
        logger.info(f"Replay loop {'enabled' if value else 'disabled'}")
        return SensorError()

    def set_speed(self, speed: float) -> SensorError:
        """Replay speed multiplier for asynchronous replay."""
        if self._capture is None:
            return SensorError(ErrorCode.ERROR_NOT_OPEN, "set_speed: no capture open")
        if not _is_number(speed) or speed <= 0:
            return SensorError(ErrorCode.ERROR_INVALID_ARGUMENTS, f"speed must be positive: {speed!r}")

        with self._config_lock:
            self._speed = float(speed)
        self._wake.set()

        self._bus.publish(Events.REPLAY_SPEED_CHANGED, {"speed": float(speed)})
        logger.info(f"Replay speed set to {speed}x")
        return SensorError()

    # ========================================================================
    # BLOCKING ADVANCEMENT
    # ========================================================================

    def resume_blocking_once(self) -> SensorError:
        """
        Replay next packet in current thread without sleeping.

        Pauses replay thread if it is running.
        """
        if self._capture is None:
            return SensorError(ErrorCode.ERROR_NOT_OPEN, "resume_blocking_once: no capture open")

        pauses = self._pauses()
        self._stop_thread()
        with self._lock:
            if self._capture is None:
                return SensorError(ErrorCode.ERROR_NOT_OPEN, "resume_blocking_once: capture closed")
            if self._paused_since(pauses):
                logger.debug("Blocking replay interrupted by pause")
                return SensorError()
            self._step_locked()
        return SensorError()

    def resume_blocking(self, duration: float) -> SensorError:
        """
        Replay multiple packets synchronously.

        No sleep between packets. Resume duration must be non-negative.
        Pauses replay thread if it is running. Returns early, without error,
        if pause() is called from another thread.
        """
        if self._capture is None:
            return SensorError(ErrorCode.ERROR_NOT_OPEN, "resume_blocking: no capture open")
        if not _is_number(duration) or duration < 0:
            return SensorError(
                ErrorCode.ERROR_INVALID_ARGUMENTS, f"duration must be non-negative: {duration!r}"
            )

        pauses = self._pauses()
        self._stop_thread()
        with self._lock:
            if self._capture is None:
                return SensorError(ErrorCode.ERROR_NOT_OPEN, "resume_blocking: capture closed")
            self._advance_locked(float(duration), pauses)
        return SensorError()

    def _pauses(self) -> int:
        with self._config_lock:
            return self._pause_count

    def _paused_since(self, pauses: int) -> bool:
        return self._pauses() != pauses

    def _request_pause(self) -> None:
        with self._config_lock:
            self._pause_count += 1

    def _advance_locked(self, duration: float, pauses: int) -> None:
        capture = self._capture
        length = capture.length
        remaining = duration

        while True:
            if self._at_end and not self._reach_end_locked():
                return

            target = self._position + remaining
            to_end = target >= length

            while self._index < len(capture) and (to_end or capture.offsets[self._index] < target):
                if self._paused_since(pauses):
                    logger.debug("Blocking replay interrupted by pause")
                    return
                self._deliver_next_locked()
                if self._capture is not capture:
                    return

            if not to_end:
                self._position = target
                return

            remaining = target - length
            if not self._reach_end_locked() or remaining <= 0 or length <= 0:
                return

    def _step_locked(self) -> bool:
        """Deliver one record, wrapping first if looping at the end."""
        capture = self._capture
        if self._index >= len(capture) and not self._reach_end_locked():
            return False

        self._deliver_next_locked()
        if self._capture is capture and self._index >= len(capture):
            self._reach_end_locked()
        return True

    def _reach_end_locked(self) -> bool:
        """
        Handle position reaching the capture length.

        Returns:
            True if replay wrapped to the start (looping), False if at end
        """
        capture = self._capture
        with self._config_lock:
            loop = self._enable_loop

        if loop:
            self._position = 0.0
            self._index = 0
            self._at_end = False
            self._timeline += 1
            logger.debug("Replay looped to start")
            return True

        self._position = capture.length
        self._index = len(capture)
        if not self._at_end:
            self._at_end = True
            logger.info("Replay reached end of capture")
            self._bus.publish(Events.REPLAY_END, {"filename": capture.filename})
        return False

    def _deliver_next_locked(self) -> None:
        capture = self._capture
        record = capture.records[self._index]
        self._position = max(self._position, capture.offsets[self._index])
        self._index += 1

        error = self._driver.receive(record.handle, record.timestamp, record.data)
        if error:
            # Malformed packets are reported and skipped; replay continues
            self._callbacks.report_error(record.handle, error)

    # ========================================================================
    # BACKGROUND PLAYBACK
    # ========================================================================

    def resume(self) -> SensorError:
        """
        Resume asynchronous replay thread.

        Packets are replayed in real time; the thread sleeps between packets.
        """
        capture = self._capture
        if capture is None:
            return SensorError(ErrorCode.ERROR_NOT_OPEN, "resume: no capture open")

        with self._config_lock:
            if self._running:
                logger.warning("Replay already running")
                return SensorError()

            stop = threading.Event()
            self._thread_stop = stop
            self._running = True
            self._wake.clear()
            self._thread = threading.Thread(
                target=self._playback_loop,
                args=(stop, capture),
                name="CaptureReplay-Playback",
                daemon=True,
            )
            self._thread.start()

        self._bus.publish(Events.REPLAY_STARTED, {"filename": capture.filename, "speed": self.get_speed()})
        logger.info("Replay started")
        return SensorError()

    def pause(self) -> SensorError:
        """
        Pause asynchronous replay thread. Always succeeds.

        The thread stops after the packet being delivered, if any. A blocking
        advancement running on another thread returns at the next packet.
        """
        self._request_pause()
        if self._stop_thread():
            self._bus.publish(Events.REPLAY_PAUSED, {"position": self._position})
            logger.info("Replay paused")
        return SensorError()

    def _stop_thread(self) -> bool:
        """Stop the playback thread; returns True if it was running."""
        with self._config_lock:
            thread = self._thread
            stop = self._thread_stop
            was_running = self._running
            self._running = False
            self._thread = None
            self._thread_stop = None

        if stop is not None:
            stop.set()
            self._wake.set()

        # Only join if NOT called from within the playback thread itself
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=self._join_timeout)
            if thread.is_alive():
                logger.warning("Replay thread did not stop within timeout")

        return was_running

    def _rebase_locked(self, anchor: tuple | None) -> tuple:
        """
        Pacing anchor (wall_time, position, speed, timeline).

        Packets are due at wall_time + (offset - position) / speed. The anchor
        moves only when the position jumps or the speed changes, so time spent
        in callbacks does not accumulate between packets.
        """
        now = time.monotonic()
        with self._config_lock:
            speed = self._speed

        if anchor is None or anchor[3] != self._timeline:
            return (now, self._position, speed, self._timeline)

        wall_time, position, old_speed, timeline = anchor
        if speed != old_speed:
            # Replay time covered so far at the old speed is kept
            return (now, position + (now - wall_time) * old_speed, speed, timeline)
        return anchor

    def _next_delay_locked(self, anchor: tuple) -> float:
        capture = self._capture
        if self._index >= len(capture):
            return 0.0
        wall_time, position, speed, _ = anchor
        due = wall_time + (capture.offsets[self._index] - position) / speed
        return due - time.monotonic()

    def _playback_loop(self, stop: threading.Event, capture: Capture):
        """Background thread for real-time replay"""
        logger.debug("Replay thread started")
        anchor = None

        try:
            while not stop.is_set():
                with self._lock:
                    if stop.is_set() or self._capture is not capture:
                        break
                    if self._at_end and not self._reach_end_locked():
                        break
                    anchor = self._rebase_locked(anchor)
                    delay = self._next_delay_locked(anchor)

                # Sleep until the next packet is due; seek/speed/pause wake us early
                if delay > 0 and self._wake.wait(timeout=delay):
                    self._wake.clear()
                    continue

                with self._lock:
                    if stop.is_set() or self._capture is not capture:
                        break
                    # A seek or speed change may have landed after the sleep
                    anchor = self._rebase_locked(anchor)
                    if self._next_delay_locked(anchor) > 0:
                        continue
                    if not self._step_locked():
                        break

        except Exception as e:
            logger.error(f"Error in replay loop: {e}", exc_info=True)
        finally:
            with self._config_lock:
                if self._thread_stop is stop:
                    self._running = False
                    self._thread = None
                    self._thread_stop = None
            logger.debug("Replay thread ended")
