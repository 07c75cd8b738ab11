"""
Shared test fixtures for pytest
"""

import pytest

from core import JsonlCaptureSource, PcapCaptureSource, SdkSession, SensorError
from models import CaptureRecord, ErrorCode, SdkOptions, empty_points
from services import event_bus, setup_logging

START_TIME = 1_700_000_000_000_000  # unix microseconds
HANDLE_A = 0x0A000001  # 10.0.0.1
HANDLE_B = 0x0A000002  # 10.0.0.2
STEP_US = 400_000
RECORD_COUNT = 26  # offsets 0.0 .. 10.0 seconds


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging(tmp_path_factory):
    """Setup logging for all tests"""
    setup_logging({"log_dir": str(tmp_path_factory.mktemp("logs"))})


@pytest.fixture(autouse=True)
def running_event_bus():
    """Make sure the global event bus is dispatching, and clean up subscribers"""
    event_bus.start()
    yield event_bus
    event_bus.clear_all()


def point_decoder(handle, timestamp, buffer):
    """One point per payload byte; an empty payload is malformed"""
    if not buffer:
        raise SensorError(ErrorCode.ERROR_INVALID_ARGUMENTS, "empty packet")
    points = empty_points(len(buffer))
    points["timestamp"] = timestamp
    points["distance"] = list(buffer)
    points["valid"] = True
    return points


@pytest.fixture
def decoder():
    return point_decoder


@pytest.fixture
def capture_records():
    """A 10 second capture alternating between two sensors, one packet every 0.4s"""
    return [
        CaptureRecord(
            handle=HANDLE_A if i % 2 == 0 else HANDLE_B,
            timestamp=START_TIME + i * STEP_US,
            data=bytes([i, i + 1]),
        )
        for i in range(RECORD_COUNT)
    ]


@pytest.fixture
def jsonl_capture(tmp_path, capture_records):
    """JSONL capture file with an explicit start time header"""
    return JsonlCaptureSource.write(tmp_path / "drive.jsonl", capture_records, start_time=START_TIME)


@pytest.fixture
def pcap_capture(tmp_path, capture_records):
    """pcap capture file holding the same records"""
    return PcapCaptureSource.write(tmp_path / "drive.pcap", capture_records)


@pytest.fixture
def session(decoder):
    """Initialized SdkSession, deinitialized on teardown"""
    sdk = SdkSession(decoder=decoder)
    sdk.initialize(SdkOptions()).raise_for_error()
    yield sdk
    if sdk.is_initialized():
        sdk.deinitialize().ignore()


@pytest.fixture
def replay(session, jsonl_capture):
    """CaptureReplay with the JSONL capture open and looping disabled"""
    replay = session.capture_replay
    replay.open(jsonl_capture).raise_for_error()
    replay.set_enable_loop(False).raise_for_error()
    replay.set_speed(1.0).raise_for_error()
    yield replay
    replay.close().ignore()
