"""
Sensor Driver - packet intake, sensor table and frame accumulation

Stands in for the device driver behind the SDK. Wire formats are not parsed
here: raw buffers are handed to a pluggable decoder which returns points as a
SENSOR_IMAGE_POINT_DTYPE array, or raises SensorError. Errors go back to the
caller of `receive()`; faults are only delivered on the error stream.
"""

import logging
import threading
from collections.abc import Callable
from numbers import Integral

import numpy as np

from models import (
    SENSOR_IMAGE_POINT_DTYPE,
    ErrorCode,
    FrameMode,
    FrameOptions,
    SensorHandle,
    SensorInformation,
)
from services import Events, event_bus

from .callback_registry import CallbackRegistry
from .sensor_error import SensorError

logger = logging.getLogger(__name__)

# decoder(handle, timestamp, buffer) -> points array; may raise SensorError
PacketDecoder = Callable[[SensorHandle, int, bytes], np.ndarray]


class _FrameBuffer:
    """Points accumulated for one sensor in TIMED mode"""

    def __init__(self, start: int):
        self.start = start
        self.chunks: list[np.ndarray] = []

    def take(self) -> np.ndarray:
        points = np.concatenate(self.chunks) if self.chunks else np.zeros(0, SENSOR_IMAGE_POINT_DTYPE)
        self.chunks = []
        return points


class SensorDriver:
    """
    Receives packets, tracks sensors and emits frames.

    All callbacks run synchronously on the thread calling `receive()`.
    """

    def __init__(
        self,
        callbacks: CallbackRegistry,
        decoder: PacketDecoder | None = None,
        frame_options: FrameOptions | None = None,
        bus=event_bus,
    ):
        self._callbacks = callbacks
        self._decoder = decoder
        self._bus = bus
        self._lock = threading.RLock()
        self._sensors: dict[SensorHandle, SensorInformation] = {}
        self._frames: dict[SensorHandle, _FrameBuffer] = {}
        self._frame_options = frame_options or FrameOptions()

    # ========================================================================
    # CONFIGURATION
    # ========================================================================

    @property
    def frame_options(self) -> FrameOptions:
        with self._lock:
            return self._frame_options

    def set_frame_options(self, options: FrameOptions) -> None:
        """Apply new frame options; partially accumulated frames are dropped."""
        with self._lock:
            self._frame_options = options
            self._frames.clear()

    def set_decoder(self, decoder: PacketDecoder | None) -> None:
        with self._lock:
            self._decoder = decoder

    # ========================================================================
    # PACKET INTAKE
    # ========================================================================

    def receive(self, handle: SensorHandle, timestamp: int, buffer: bytes) -> SensorError:
        """
        Process one packet: raw-packet callback, decode, frame callback.

        Blocks while processing and calls listener callbacks before returning.
        """
        if not isinstance(buffer, (bytes, bytearray, memoryview)):
            return SensorError(ErrorCode.ERROR_INVALID_ARGUMENTS, "buffer must be bytes-like")
        if not all(isinstance(v, Integral) and not isinstance(v, bool) for v in (handle, timestamp)):
            return SensorError(ErrorCode.ERROR_INVALID_ARGUMENTS, "handle and timestamp must be integers")
        if handle < 0 or timestamp < 0:
            return SensorError(ErrorCode.ERROR_INVALID_ARGUMENTS, "handle and timestamp must be non-negative")
        buffer = bytes(buffer)

        self._track_sensor(handle, timestamp)
        self._callbacks.packets.invoke(handle, timestamp, buffer)

        with self._lock:
            decoder = self._decoder
        if decoder is None:
            return SensorError()

        try:
            points = decoder(handle, timestamp, buffer)
        except SensorError as e:
            if e.is_fault():
                self._callbacks.report_error(handle, e)
                return SensorError()
            return e
        except Exception as e:
            logger.error(f"Decoder failed for handle {handle:#x}: {e}", exc_info=True)
            return SensorError(ErrorCode.ERROR_GENERIC, f"decoder failed: {e}")

        points = np.asarray(points)
        if points.dtype != SENSOR_IMAGE_POINT_DTYPE:
            return SensorError(
                ErrorCode.ERROR_GENERIC, f"decoder returned points with dtype {points.dtype}"
            )

        frame = self._accumulate(handle, timestamp, points)
        if frame is not None:
            self._callbacks.frames.invoke(handle, frame)
        return SensorError()

    def _track_sensor(self, handle: SensorHandle, timestamp: int) -> None:
        with self._lock:
            info = self._sensors.get(handle)
            is_new = info is None
            if is_new:
                info = SensorInformation.from_handle(handle, timestamp)
                self._sensors[handle] = info
            info.last_timestamp = timestamp
            info.packet_count += 1

        if is_new:
            logger.info(f"Sensor added: handle={handle:#x} serial={info.serial_number}")
            self._bus.publish(Events.SENSOR_ADDED, {"handle": handle, "serial_number": info.serial_number})

    def _accumulate(self, handle: SensorHandle, timestamp: int, points: np.ndarray) -> np.ndarray | None:
        with self._lock:
            options = self._frame_options
            if options.mode == FrameMode.STREAMING:
                return points if len(points) else None

            buf = self._frames.get(handle)
            if buf is None:
                buf = self._frames[handle] = _FrameBuffer(timestamp)
            buf.chunks.append(points)
            if timestamp - buf.start < options.length_us:
                return None

            del self._frames[handle]
            return buf.take()

    # ========================================================================
    # SENSORS
    # ========================================================================

    def get_n_sensors(self) -> int:
        with self._lock:
            return len(self._sensors)

    def get_sensor_handle_by_serial_number(self, serial_number: int) -> tuple[SensorError, SensorHandle | None]:
        with self._lock:
            for handle, info in self._sensors.items():
                if info.serial_number == serial_number:
                    return SensorError(), handle
        return SensorError(ErrorCode.ERROR_SENSOR_NOT_FOUND, f"serial number {serial_number}"), None

    def get_sensor_information_by_index(self, index: int) -> tuple[SensorError, SensorInformation | None]:
        """Valid indices are in range [0, n_sensors)."""
        with self._lock:
            sensors = list(self._sensors.values())
        if not 0 <= index < len(sensors):
            return SensorError(ErrorCode.ERROR_INVALID_ARGUMENTS, f"sensor index {index} out of range"), None
        return SensorError(), sensors[index]

    def get_sensor_information(self, handle: SensorHandle) -> tuple[SensorError, SensorInformation | None]:
        with self._lock:
            info = self._sensors.get(handle)
        if info is None:
            return SensorError(ErrorCode.ERROR_SENSOR_NOT_FOUND, f"handle {handle:#x}"), None
        return SensorError(), info

    def clear(self) -> None:
        """Forget all sensors and partially accumulated frames."""
        with self._lock:
            count = len(self._sensors)
            self._sensors.clear()
            self._frames.clear()
        if count:
            logger.info(f"Cleared {count} sensors")
