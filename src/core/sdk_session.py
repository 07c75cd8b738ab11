"""
SDK Session - explicit handle for one initialized SDK instance

Owns the options, the callback registry, the sensor driver and the capture
replay controller. Several sessions can coexist in one process.

Usage:
    session = SdkSession(decoder=my_decoder)
    session.initialize(error_callback=on_error).raise_for_error()
    session.listen_image_frames(on_frame).raise_for_error()

    replay = session.capture_replay
    replay.open("drive.pcap").raise_for_error()
    replay.resume_blocking(10.0).raise_for_error()

    session.deinitialize().ignore()
"""

import logging
import threading
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from config import config
from models import Control, ErrorCode, FrameMode, FrameOptions, SdkOptions, SensorHandle, SensorInformation
from services import Events, event_bus

from .callback_registry import CallbackRegistry
from .capture_replay import CaptureReplay
from .capture_source import DEFAULT_SOURCES
from .sensor_driver import PacketDecoder, SensorDriver
from .sensor_error import SensorError

logger = logging.getLogger(__name__)

__version__ = "0.1.0"


def get_version_string() -> str:
    """Returns library version."""
    return __version__


def get_version_major() -> int:
    return int(__version__.split(".")[0])


def get_version_minor() -> int:
    return int(__version__.split(".")[1])


def _validation_message(error: ValidationError) -> str:
    return "; ".join(f"{'.'.join(map(str, e['loc'])) or 'value'}: {e['msg']}" for e in error.errors())


class SdkSession:
    """
    One SDK instance.

    Every control operation returns a SensorError; getters cannot fail and
    return defaults while the session is not initialized.
    """

    def __init__(self, decoder: PacketDecoder | None = None, bus=event_bus, sources=DEFAULT_SOURCES):
        self._lock = threading.RLock()
        self._bus = bus
        self._initialized = False
        self._options = SdkOptions()

        self.callbacks = CallbackRegistry()
        self.driver = SensorDriver(self.callbacks, decoder, bus=bus)
        self.capture_replay = CaptureReplay(self.driver, self.callbacks, bus=bus, sources=sources)

    def __enter__(self) -> "SdkSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.is_initialized():
            self.deinitialize().ignore()

    # ========================================================================
    # SETUP
    # ========================================================================

    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(
        self,
        options: SdkOptions | None = None,
        error_callback: Callable | None = None,
        user_data: Any = None,
    ) -> SensorError:
        """
        Initialize settings.

        Must be called before any other session function listed below.

        Args:
            options: SdkOptions, defaults built from config
            error_callback: Optional error stream callback
            user_data: Passed back to error_callback
        """
        with self._lock:
            if self._initialized:
                return SensorError(ErrorCode.ERROR_ALREADY_INITIALIZED, "session already initialized")

            if options is None:
                try:
                    options = SdkOptions.from_config(config)
                except (ValidationError, KeyError, ValueError) as e:
                    return SensorError(ErrorCode.ERROR_INVALID_ARGUMENTS, f"invalid configured options: {e}")
            elif not isinstance(options, SdkOptions):
                return SensorError(ErrorCode.ERROR_INVALID_ARGUMENTS, "options must be SdkOptions")

            if error_callback is not None:
                error = self.callbacks.errors.listen(error_callback, user_data)
                if error.is_error():
                    return error

            self._options = options
            self.driver.set_frame_options(options.frame)
            self._initialized = True

        logger.info(f"SDK session initialized (port={options.port}, frame_mode={options.frame.mode.name})")
        self._bus.publish(Events.SDK_INITIALIZED, {"port": options.port})
        return SensorError()

    def deinitialize(self) -> SensorError:
        """Resets everything: closes replay, drops callbacks and sensors."""
        with self._lock:
            if not self._initialized:
                return self._not_initialized("deinitialize")
            self._initialized = False

        self.capture_replay.cleanup()
        self.callbacks.clear()
        self.driver.clear()

        logger.info("SDK session deinitialized")
        self._bus.publish(Events.SDK_DEINITIALIZED, {})
        return SensorError()

    @staticmethod
    def _not_initialized(operation: str) -> SensorError:
        return SensorError(ErrorCode.ERROR_NOT_INITIALIZED, f"{operation}: session not initialized")

    def _update_options(self, operation: str, **changes) -> SensorError:
        with self._lock:
            if not self._initialized:
                return self._not_initialized(operation)
            try:
                options = SdkOptions.model_validate({**self._options.model_dump(), **changes})
            except ValidationError as e:
                return SensorError(ErrorCode.ERROR_INVALID_ARGUMENTS, f"{operation}: {_validation_message(e)}")
            self._options = options
        return SensorError()

    # ========================================================================
    # OPTIONS
    # ========================================================================

    def set_control_flags(self, mask: int, flags: int) -> SensorError:
        """Sets the control flags selected by `mask` to the bits in `flags`."""
        if not isinstance(mask, int) or not isinstance(flags, int) or mask < 0 or flags < 0:
            return SensorError(ErrorCode.ERROR_INVALID_ARGUMENTS, "mask and flags must be non-negative ints")
        mask, flags = int(mask), int(flags)
        with self._lock:
            current = self._options.control_flags
        return self._update_options(
            "set_control_flags", control_flags=(current & ~mask) | (flags & mask)
        )

    def get_control_flags(self) -> Control:
        return Control(self._options.control_flags)

    def has_control_flag(self, flag: int) -> bool:
        return flag != 0 and (self._options.control_flags & flag) == flag

    def set_port(self, port: int) -> SensorError:
        """Sets network listen port (default 8808)."""
        return self._update_options("set_port", port=port)

    def get_port(self) -> int:
        return self._options.port

    def set_frame_options(self, options: FrameOptions | dict) -> SensorError:
        if not self._initialized:
            return self._not_initialized("set_frame_options")
        try:
            frame = options if isinstance(options, FrameOptions) else FrameOptions.model_validate(options)
        except ValidationError as e:
            return SensorError(ErrorCode.ERROR_INVALID_ARGUMENTS, f"set_frame_options: {_validation_message(e)}")

        error = self._update_options("set_frame_options", frame=frame.model_dump())
        if error.is_error():
            return error
        self.driver.set_frame_options(frame)
        return SensorError()

    def get_frame_mode(self) -> FrameMode:
        return self._options.frame.mode

    def get_frame_length(self) -> float:
        return self._options.frame.length

    def get_options(self) -> SdkOptions:
        return self._options

    # ========================================================================
    # CALLBACKS
    # ========================================================================

    def listen_errors(self, callback: Callable, user_data: Any = None) -> SensorError:
        if not self._initialized:
            return self._not_initialized("listen_errors")
        return self.callbacks.errors.listen(callback, user_data)

    def unlisten_errors(self) -> SensorError:
        if not self._initialized:
            return self._not_initialized("unlisten_errors")
        return self.callbacks.errors.unlisten()

    def listen_image_frames(self, callback: Callable, user_data: Any = None) -> SensorError:
        """
        Sets image frames callback.

        Frame length controls the callback rate. Returns error if a callback
        is already registered.
        """
        if not self._initialized:
            return self._not_initialized("listen_image_frames")
        return self.callbacks.frames.listen(callback, user_data)

    def unlisten_image_frames(self) -> SensorError:
        if not self._initialized:
            return self._not_initialized("unlisten_image_frames")
        return self.callbacks.frames.unlisten()

    def listen_network_packets(self, callback: Callable, user_data: Any = None) -> SensorError:
        """Sets network packets callback. Only 1 callback can be registered."""
        if not self._initialized:
            return self._not_initialized("listen_network_packets")
        return self.callbacks.packets.listen(callback, user_data)

    def unlisten_network_packets(self) -> SensorError:
        if not self._initialized:
            return self._not_initialized("unlisten_network_packets")
        return self.callbacks.packets.unlisten()

    # ========================================================================
    # SENSORS
    # ========================================================================

    def get_n_sensors(self) -> int:
        """Number of sensors attached. Sensors are not removed until clear()."""
        return self.driver.get_n_sensors() if self._initialized else 0

    def get_sensor_handle_by_serial_number(self, serial_number: int) -> tuple[SensorError, SensorHandle | None]:
        if not self._initialized:
            return self._not_initialized("get_sensor_handle_by_serial_number"), None
        return self.driver.get_sensor_handle_by_serial_number(serial_number)

    def get_sensor_information_by_index(self, index: int) -> tuple[SensorError, SensorInformation | None]:
        if not self._initialized:
            return self._not_initialized("get_sensor_information_by_index"), None
        return self.driver.get_sensor_information_by_index(index)

    def get_sensor_information(self, handle: SensorHandle) -> tuple[SensorError, SensorInformation | None]:
        if not self._initialized:
            return self._not_initialized("get_sensor_information"), None
        return self.driver.get_sensor_information(handle)

    # ========================================================================
    # NETWORKING
    # ========================================================================

    def clear(self) -> SensorError:
        """Clears sensors. Use when loading/unloading capture files."""
        if not self._initialized:
            return self._not_initialized("clear")
        self.driver.clear()
        self._bus.publish(Events.SDK_CLEARED, {})
        return SensorError()

    def mock_network_receive(self, handle: SensorHandle, timestamp: int, buffer: bytes) -> SensorError:
        """
        Manually passes a packet to the driver.

        Blocks while processing, and calls listener callbacks synchronously
        before returning.
        """
        if not self._initialized:
            return self._not_initialized("mock_network_receive")
        return self.driver.receive(handle, timestamp, buffer)
