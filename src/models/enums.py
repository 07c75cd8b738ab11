"""
Enumerations for sensor error codes, frame modes and SDK control flags
"""

from enum import Enum, IntEnum, IntFlag


class ErrorCode(IntEnum):
    """
    SDK error codes.

    Partitioned into three disjoint categories:
    - SUCCESS: the unique zero value
    - ERROR_*: recoverable/operational failures returned by control operations
    - FAULT_*: sensor health conditions, only delivered through the error callback
    """

    SUCCESS = 0

    ERROR_GENERIC = -1
    ERROR_OUT_OF_MEMORY = -2
    ERROR_SENSOR_NOT_FOUND = -4
    ERROR_SDK_VERSION_MISMATCH = -5
    ERROR_COMMUNICATION = -6
    ERROR_TOO_MANY_CALLBACKS = -7
    ERROR_INVALID_ARGUMENTS = -8
    ERROR_ALREADY_INITIALIZED = -9
    ERROR_NOT_INITIALIZED = -10
    ERROR_INVALID_FILE_TYPE = -11
    ERROR_FILE_IO = -12
    ERROR_CORRUPT_FILE = -13
    ERROR_NOT_OPEN = -14
    ERROR_EOF = -15

    FAULT_INTERNAL = -1000
    FAULT_EXTREME_TEMPERATURE = -1001
    FAULT_EXTREME_HUMIDITY = -1002
    FAULT_EXTREME_ACCELERATION = -1003
    FAULT_ABNORMAL_FOV = -1004
    FAULT_ABNORMAL_FRAME_RATE = -1005
    FAULT_MOTOR_MALFUNCTION = -1006
    FAULT_LASER_MALFUNCTION = -1007
    FAULT_DETECTOR_MALFUNCTION = -1008


def _coerce(code) -> ErrorCode | None:
    try:
        return ErrorCode(int(code))
    except (ValueError, TypeError):
        return None


def get_error_code_name(code) -> str:
    """Return the string name of an error code, or "" if the code is unknown."""
    member = _coerce(code)
    if member is None:
        return ""
    return f"CEPTON_{member.name}"


def is_success_code(code) -> bool:
    return _coerce(code) is ErrorCode.SUCCESS


def is_error_code(code) -> bool:
    """True if the code is of the form ERROR_*"""
    member = _coerce(code)
    return member is not None and member.name.startswith("ERROR_")


def is_fault_code(code) -> bool:
    """True if the code is of the form FAULT_*"""
    member = _coerce(code)
    return member is not None and member.name.startswith("FAULT_")


class FrameMode(IntEnum):
    """How decoded points are grouped before the frame callback fires"""

    STREAMING = 0  # One callback per packet
    TIMED = 1  # One callback per `frame length` seconds of packet time


class Control(IntFlag):
    """SDK control flags (opaque to replay logic)"""

    NONE = 0
    DISABLE_NETWORK = 1 << 1
    DISABLE_IMAGE_CLIP = 1 << 2
    DISABLE_DISTANCE_CLIP = 1 << 3
    ENABLE_MULTIPLE_RETURNS = 1 << 4
    ENABLE_STRAY_FILTER = 1 << 5
    HOST_TIMESTAMPS = 1 << 6


class SensorModel(IntEnum):
    """Known sensor models"""

    UNKNOWN = 0
    HR80T = 1
    HR80M = 2
    HR80W = 3
    SORA_200 = 4
    VISTA_860 = 5
    HR80T_R2 = 6
    VISTA_860_GEN2 = 7
    FUSION_790 = 8
    VISTA_M = 9
    VISTA_X = 10
    SORA_P60 = 11
    VISTA_P60 = 12


class ReplayState(str, Enum):
    """Capture replay lifecycle state"""

    CLOSED = "closed"
    OPEN_PAUSED = "open_paused"
    OPEN_RUNNING = "open_running"
