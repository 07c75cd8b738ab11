"""
Sensor data models

Attributes shared by the driver, capture replay and callbacks:
- SensorHandle: opaque integer identifier (IP address for live sensors)
- SensorInformation: per-sensor bookkeeping kept by the driver
- SENSOR_IMAGE_POINT_DTYPE: numpy layout of points delivered in frames
"""

from dataclasses import asdict, dataclass

import numpy as np

from .enums import SensorModel

SensorHandle = int

# Indicates that the handle was generated by capture replay
SENSOR_HANDLE_FLAG_MOCK: SensorHandle = 1 << 32


def is_mock_handle(handle: SensorHandle) -> bool:
    return bool(handle & SENSOR_HANDLE_FLAG_MOCK)


def strip_handle_flags(handle: SensorHandle) -> int:
    """Handle with the replay flag removed (the underlying sensor address)"""
    return handle & ~SENSOR_HANDLE_FLAG_MOCK


SENSOR_IMAGE_POINT_DTYPE = np.dtype(
    [
        ("timestamp", "<i8"),  # unix time [microseconds]
        ("image_x", "<f4"),
        ("distance", "<f4"),  # [meters]
        ("image_z", "<f4"),
        ("intensity", "<f4"),  # [0, 1]
        ("return_type", "u1"),
        ("valid", "?"),
        ("saturated", "?"),
    ]
)


def empty_points(count: int = 0) -> np.ndarray:
    """Allocate a zeroed point array"""
    return np.zeros(count, dtype=SENSOR_IMAGE_POINT_DTYPE)


@dataclass
class SensorInformation:
    """
    Information about a discovered sensor.

    Attributes:
        handle: Unique sensor identifier
        serial_number: Sensor serial number (handle without flags by default)
        model_name: Human readable model name
        model: SensorModel enum value
        firmware_version: Firmware version string
        is_mocked: True if the sensor comes from capture replay
        first_timestamp: Timestamp of the first packet seen [microseconds]
        last_timestamp: Timestamp of the most recent packet [microseconds]
        packet_count: Packets received from this sensor
    """

    handle: SensorHandle
    serial_number: int
    model_name: str = ""
    model: SensorModel = SensorModel.UNKNOWN
    firmware_version: str = ""
    is_mocked: bool = False
    first_timestamp: int = 0
    last_timestamp: int = 0
    packet_count: int = 0

    @classmethod
    def from_handle(cls, handle: SensorHandle, timestamp: int = 0) -> "SensorInformation":
        return cls(
            handle=handle,
            serial_number=strip_handle_flags(handle),
            is_mocked=is_mock_handle(handle),
            first_timestamp=timestamp,
            last_timestamp=timestamp,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["model"] = self.model.name
        return data
