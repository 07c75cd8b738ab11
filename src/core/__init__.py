"""Core module - checked errors, callbacks, sensor driver and capture replay"""

from .callback_registry import CallbackRegistry, CallbackSlot
from .capture_replay import CaptureReplay
from .capture_source import (
    DEFAULT_SOURCES,
    Capture,
    CaptureSource,
    JsonlCaptureSource,
    PcapCaptureSource,
    TruncatedCaptureError,
    UnsupportedCaptureError,
    build_capture,
    list_captures,
    load_capture,
)
from .sdk_session import (
    SdkSession,
    __version__,
    get_version_major,
    get_version_minor,
    get_version_string,
)
from .sensor_driver import PacketDecoder, SensorDriver
from .sensor_error import SensorError, SensorErrorWrapper, runtime_assert

__all__ = [
    "DEFAULT_SOURCES",
    "CallbackRegistry",
    "CallbackSlot",
    "Capture",
    "CaptureReplay",
    "CaptureSource",
    "JsonlCaptureSource",
    "PacketDecoder",
    "PcapCaptureSource",
    "SdkSession",
    "SensorDriver",
    "SensorError",
    "SensorErrorWrapper",
    "TruncatedCaptureError",
    "UnsupportedCaptureError",
    "__version__",
    "build_capture",
    "get_version_major",
    "get_version_minor",
    "get_version_string",
    "list_captures",
    "load_capture",
    "runtime_assert",
]
