"""
Data models for the LIDAR capture SDK
"""

from .capture_record import CaptureRecord
from .enums import (
    Control,
    ErrorCode,
    FrameMode,
    ReplayState,
    SensorModel,
    get_error_code_name,
    is_error_code,
    is_fault_code,
    is_success_code,
)
from .sdk_options import DEFAULT_FRAME_LENGTH, DEFAULT_PORT, FrameOptions, SdkOptions
from .sensor import (
    SENSOR_HANDLE_FLAG_MOCK,
    SENSOR_IMAGE_POINT_DTYPE,
    SensorHandle,
    SensorInformation,
    empty_points,
    is_mock_handle,
    strip_handle_flags,
)

__all__ = [
    "CaptureRecord",
    # Enums and error code helpers
    "Control",
    "ErrorCode",
    "FrameMode",
    "ReplayState",
    "SensorModel",
    "get_error_code_name",
    "is_error_code",
    "is_fault_code",
    "is_success_code",
    # Options
    "DEFAULT_FRAME_LENGTH",
    "DEFAULT_PORT",
    "FrameOptions",
    "SdkOptions",
    # Sensors and points
    "SENSOR_HANDLE_FLAG_MOCK",
    "SENSOR_IMAGE_POINT_DTYPE",
    "SensorHandle",
    "SensorInformation",
    "empty_points",
    "is_mock_handle",
    "strip_handle_flags",
]
