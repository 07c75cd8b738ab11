"""
Callback Registry - single-registration delivery points for stream data

Three independent slots:
- errors:  cb(handle, error_code, error_msg, error_data, user_data)
- frames:  cb(handle, points, user_data)           points: SENSOR_IMAGE_POINT_DTYPE array
- packets: cb(handle, timestamp, buffer, user_data)

Invocation is synchronous, on whichever thread is driving data. The slot lock
is only held while reading or replacing the registration, never while the
callback runs, so `unlisten()` lets in-flight invocations complete with the
registration they captured.
"""

import logging
import threading
from collections.abc import Callable
from typing import Any

from models.enums import ErrorCode

from .sensor_error import SensorError

logger = logging.getLogger(__name__)


class CallbackSlot:
    """Holds at most one (callback, user_data) registration."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._registration: tuple[Callable, Any] | None = None

    def listen(self, callback: Callable, user_data: Any = None) -> SensorError:
        """
        Register a callback.

        Returns:
            ERROR_INVALID_ARGUMENTS if callback is not callable,
            ERROR_TOO_MANY_CALLBACKS if the slot is occupied (registration unchanged)
        """
        if not callable(callback):
            return SensorError(ErrorCode.ERROR_INVALID_ARGUMENTS, f"{self.name} callback is not callable")

        with self._lock:
            if self._registration is not None:
                return SensorError(
                    ErrorCode.ERROR_TOO_MANY_CALLBACKS, f"{self.name} callback already registered"
                )
            self._registration = (callback, user_data)

        logger.debug(f"Registered {self.name} callback")
        return SensorError()

    def unlisten(self) -> SensorError:
        """Clear the slot. Always succeeds."""
        with self._lock:
            had_registration = self._registration is not None
            self._registration = None

        if had_registration:
            logger.debug(f"Unregistered {self.name} callback")
        return SensorError()

    def is_listening(self) -> bool:
        with self._lock:
            return self._registration is not None

    def invoke(self, *args) -> bool:
        """
        Call the registered callback with `args` followed by its user_data.

        Exceptions raised by the callback are logged, not propagated.

        Returns:
            True if a callback was registered and called
        """
        with self._lock:
            registration = self._registration
        if registration is None:
            return False

        callback, user_data = registration
        try:
            callback(*args, user_data)
        except Exception as e:
            logger.error(f"Error in {self.name} callback: {e}", exc_info=True)
        return True


class CallbackRegistry:
    """The error, frame and raw-packet slots of one SDK session."""

    def __init__(self):
        self.errors = CallbackSlot("error")
        self.frames = CallbackSlot("image frame")
        self.packets = CallbackSlot("network packet")

    def report_error(self, handle: int, error: SensorError, error_data: bytes | None = None) -> bool:
        """Deliver a SensorError on the error stream (checks the error)."""
        code = error.code()
        if code == ErrorCode.SUCCESS:
            return False
        if not self.errors.invoke(handle, code, error.message(), error_data):
            logger.warning(f"Unhandled sensor error (handle={handle:#x}): {error}")
            return False
        return True

    def clear(self) -> None:
        for slot in (self.errors, self.frames, self.packets):
            slot.unlisten().ignore()
