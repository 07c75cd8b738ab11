"""
Tests for CaptureReplay state machine, blocking and background advancement
"""

import threading
import time

import pytest

from core import JsonlCaptureSource
from models import SENSOR_HANDLE_FLAG_MOCK, CaptureRecord, ErrorCode, ReplayState
from services import Events, event_bus


def wait_until(predicate, timeout=3.0):
    """Poll until predicate() is true or timeout expires"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def packets(session):
    """Collects (handle, timestamp) for every replayed packet"""
    received = []
    session.listen_network_packets(
        lambda handle, timestamp, buffer, user_data: user_data.append((handle, timestamp)), received
    ).raise_for_error()
    return received


class TestOpenClose:
    """Lifecycle and open failures"""

    def test_closed_by_default(self, session):
        replay = session.capture_replay
        assert replay.get_state() == ReplayState.CLOSED
        assert not replay.is_open()
        assert replay.get_filename() == ""
        assert replay.get_length() == 0.0
        assert replay.get_time() == 0

    def test_open(self, session, jsonl_capture, capture_records):
        replay = session.capture_replay
        assert not replay.open(jsonl_capture)

        assert replay.get_state() == ReplayState.OPEN_PAUSED
        assert replay.get_filename() == str(jsonl_capture)
        assert replay.get_start_time() == capture_records[0].timestamp
        assert replay.get_length() == pytest.approx(10.0)
        assert replay.get_position() == 0.0
        assert not replay.is_end()

    def test_open_pcap(self, session, pcap_capture):
        replay = session.capture_replay
        assert not replay.open(pcap_capture)
        assert replay.get_length() == pytest.approx(10.0, abs=1e-6)
        replay.close().raise_for_error()

    def test_open_twice_rejected(self, replay, pcap_capture, jsonl_capture):
        error = replay.open(pcap_capture)

        assert error.code() == ErrorCode.ERROR_INVALID_ARGUMENTS
        assert replay.get_filename() == str(jsonl_capture)

    def test_missing_file(self, session, tmp_path):
        replay = session.capture_replay
        error = replay.open(tmp_path / "missing.pcap")

        assert error.code() == ErrorCode.ERROR_FILE_IO
        assert replay.get_state() == ReplayState.CLOSED

    def test_unsupported_file(self, session, tmp_path):
        path = tmp_path / "capture.csv"
        path.write_text("a,b,c")

        error = session.capture_replay.open(path)
        assert error.code() == ErrorCode.ERROR_INVALID_FILE_TYPE
        assert not session.capture_replay.is_open()

    def test_corrupt_file(self, session, tmp_path):
        path = tmp_path / "corrupt.jsonl"
        path.write_text("{oops\n")

        error = session.capture_replay.open(path)
        assert error.code() == ErrorCode.ERROR_CORRUPT_FILE
        assert not session.capture_replay.is_open()

    def test_truncated_pcap(self, session, pcap_capture):
        pcap_capture.write_bytes(pcap_capture.read_bytes() + b"\x00" * 5)

        error = session.capture_replay.open(pcap_capture)
        assert error.code() == ErrorCode.ERROR_EOF
        assert not session.capture_replay.is_open()

    def test_close_is_idempotent(self, replay):
        assert not replay.close()
        assert not replay.close()
        assert replay.get_state() == ReplayState.CLOSED
        assert replay.get_position() == 0.0

    def test_open_clears_sensors(self, session, replay, packets):
        replay.resume_blocking(1.0).raise_for_error()
        assert session.get_n_sensors() == 2

        replay.close().raise_for_error()
        assert session.get_n_sensors() == 0

    @pytest.mark.parametrize(
        "operation",
        [
            lambda r: r.seek(0.0),
            lambda r: r.seek_relative(1.0),
            lambda r: r.set_speed(2.0),
            lambda r: r.set_enable_loop(True),
            lambda r: r.resume_blocking(1.0),
            lambda r: r.resume_blocking_once(),
            lambda r: r.resume(),
        ],
    )
    def test_operations_require_open(self, session, operation):
        error = operation(session.capture_replay)
        assert error.code() == ErrorCode.ERROR_NOT_OPEN

    def test_pause_always_succeeds(self, session):
        assert not session.capture_replay.pause()


class TestSeek:
    """Seeking sets the position exactly"""

    @pytest.mark.parametrize("position", [0.0, 1.23456, 5.0, 9.999999])
    def test_seek_exact(self, replay, position):
        assert not replay.seek(position)
        assert replay.get_position() == position

    @pytest.mark.parametrize("position", [10.0, -1.0, 11.5, float("nan"), float("inf")])
    def test_seek_out_of_range(self, replay, position):
        replay.seek(2.5).raise_for_error()

        error = replay.seek(position)

        assert error.code() == ErrorCode.ERROR_INVALID_ARGUMENTS
        assert replay.get_position() == 2.5

    def test_seek_relative(self, replay):
        replay.seek(2.0).raise_for_error()
        assert not replay.seek_relative(1.5)
        assert replay.get_position() == 3.5

        assert not replay.seek_relative(-3.5)
        assert replay.get_position() == 0.0

    def test_seek_relative_out_of_range(self, replay):
        replay.seek(3.5).raise_for_error()
        assert replay.seek_relative(100.0).code() == ErrorCode.ERROR_INVALID_ARGUMENTS
        assert replay.seek_relative(-4.0).code() == ErrorCode.ERROR_INVALID_ARGUMENTS
        assert replay.get_position() == 3.5

    def test_get_time_follows_position(self, replay):
        replay.seek(1.2345678).raise_for_error()
        assert replay.get_time() == replay.get_start_time() + round(1.2345678 * 1_000_000)

    def test_seek_clears_end(self, replay):
        replay.resume_blocking(replay.get_length()).raise_for_error()
        assert replay.is_end()

        replay.seek(1.0).raise_for_error()
        assert not replay.is_end()

    def test_seek_skips_records(self, replay, packets, capture_records):
        replay.seek(3.0).raise_for_error()
        replay.resume_blocking(2.0).raise_for_error()

        timestamps = [timestamp for _, timestamp in packets]
        start = replay.get_start_time()
        assert timestamps == sorted(timestamps)
        assert timestamps[0] == start + 3_200_000
        assert timestamps[-1] == start + 4_800_000
        assert replay.get_position() == 5.0


class TestBlockingAdvancement:
    """resume_blocking / resume_blocking_once"""

    def test_resume_blocking_partial(self, replay, packets):
        assert not replay.resume_blocking(1.0)

        assert len(packets) == 3  # offsets 0.0, 0.4, 0.8
        assert replay.get_position() == 1.0
        assert not replay.is_end()

    def test_resume_blocking_to_end(self, replay, packets, capture_records):
        assert not replay.resume_blocking(replay.get_length())

        assert replay.get_position() == replay.get_length()
        assert replay.is_end()
        assert len(packets) == len(capture_records)

    def test_resume_blocking_at_end_is_noop(self, replay, packets):
        replay.resume_blocking(100.0).raise_for_error()
        delivered = len(packets)

        assert not replay.resume_blocking(1.0)
        assert not replay.resume_blocking_once()
        assert len(packets) == delivered
        assert replay.is_end()

    def test_resume_blocking_with_loop_wraps(self, replay, packets, capture_records):
        replay.set_enable_loop(True).raise_for_error()

        assert not replay.resume_blocking(replay.get_length())

        assert not replay.is_end()
        assert replay.get_position() == 0.0
        assert len(packets) == len(capture_records)

    def test_loop_continues_after_wrap(self, replay, packets, capture_records):
        replay.set_enable_loop(True).raise_for_error()

        replay.resume_blocking(12.0).raise_for_error()

        assert len(packets) == len(capture_records) + 5  # 0.0 .. 1.6 again
        assert replay.get_position() == pytest.approx(2.0)
        assert not replay.is_end()

    def test_zero_duration(self, replay, packets):
        replay.seek(1.0).raise_for_error()
        assert not replay.resume_blocking(0.0)
        assert packets == []
        assert replay.get_position() == 1.0

    @pytest.mark.parametrize("duration", [-0.1, float("nan"), "1.0"])
    def test_invalid_duration(self, replay, duration):
        assert replay.resume_blocking(duration).code() == ErrorCode.ERROR_INVALID_ARGUMENTS
        assert replay.get_position() == 0.0

    def test_resume_blocking_once_after_seek(self, replay, packets):
        """One packet at or after the seek target, and get_time follows it"""
        start = replay.get_start_time()
        replay.seek(5.0).raise_for_error()

        assert not replay.resume_blocking_once()

        assert len(packets) == 1
        handle, timestamp = packets[0]
        assert timestamp >= start + 5_000_000
        assert handle & SENSOR_HANDLE_FLAG_MOCK
        assert replay.get_position() == pytest.approx(5.2)
        assert replay.get_time() == start + 5_200_000

    def test_resume_blocking_once_reaches_end(self, replay, packets, capture_records):
        replay.seek(9.9).raise_for_error()
        replay.resume_blocking_once().raise_for_error()

        assert replay.is_end()
        assert replay.get_position() == replay.get_length()

    def test_frames_delivered(self, session, replay):
        frames = []
        session.listen_image_frames(lambda handle, points, user_data: frames.append(len(points))).raise_for_error()

        replay.resume_blocking(1.0).raise_for_error()

        assert frames == [2, 2, 2]

    def test_malformed_packet_reported_and_skipped(self, session, tmp_path, capture_records):
        records = list(capture_records[:3])
        records.insert(1, CaptureRecord(capture_records[0].handle, capture_records[0].timestamp + 100_000, b""))
        path = JsonlCaptureSource.write(tmp_path / "malformed.jsonl", records)
        errors, packets = [], []
        session.listen_errors(lambda handle, code, msg, data, user_data: errors.append(code)).raise_for_error()
        session.listen_network_packets(lambda handle, ts, buf, user_data: packets.append(ts)).raise_for_error()

        replay = session.capture_replay
        replay.open(path).raise_for_error()
        assert not replay.resume_blocking(replay.get_length())

        assert errors == [ErrorCode.ERROR_INVALID_ARGUMENTS]
        assert len(packets) == 4
        assert replay.is_end()


class TestConfiguration:
    def test_speed(self, replay):
        assert not replay.set_speed(2.5)
        assert replay.get_speed() == 2.5

    @pytest.mark.parametrize("speed", [0, -1.0, float("inf"), None])
    def test_invalid_speed(self, replay, speed):
        replay.set_speed(3.0).raise_for_error()
        assert replay.set_speed(speed).code() == ErrorCode.ERROR_INVALID_ARGUMENTS
        assert replay.get_speed() == 3.0

    def test_loop(self, replay):
        assert not replay.set_enable_loop(True)
        assert replay.get_enable_loop()

    def test_info(self, replay, capture_records):
        replay.seek(2.0).raise_for_error()
        info = replay.get_info()

        assert info["state"] == "open_paused"
        assert info["position"] == 2.0
        assert info["packet_count"] == len(capture_records)
        assert info["next_packet"] == 5
        assert info["loop"] is False


class TestBackgroundReplay:
    """resume() / pause()"""

    def test_runs_to_end(self, replay, packets, capture_records):
        replay.set_speed(100.0).raise_for_error()

        assert not replay.resume()
        assert replay.get_state() in (ReplayState.OPEN_RUNNING, ReplayState.OPEN_PAUSED)
        assert wait_until(lambda: not replay.is_running())

        assert len(packets) == len(capture_records)
        assert replay.is_end()
        assert replay.get_state() == ReplayState.OPEN_PAUSED

    def test_resume_twice(self, replay):
        replay.resume().raise_for_error()
        assert not replay.resume()
        replay.pause().raise_for_error()
        assert not replay.is_running()

    def test_pause_mid_callback_then_blocking(self, replay, session):
        """pause() from another thread stops after the in-flight packet"""
        entered = threading.Event()
        release = threading.Event()
        timestamps = []

        def slow_packet(handle, timestamp, buffer, user_data):
            timestamps.append(timestamp)
            entered.set()
            release.wait(timeout=3.0)

        session.listen_network_packets(slow_packet).raise_for_error()
        replay.resume().raise_for_error()
        assert entered.wait(timeout=3.0)

        pauser = threading.Thread(target=lambda: replay.pause().raise_for_error())
        pauser.start()
        time.sleep(0.05)
        release.set()
        pauser.join(timeout=3.0)

        assert not replay.is_running()
        assert len(timestamps) == 1
        paused_at = replay.get_position()

        replay.resume_blocking(1.0).raise_for_error()

        assert replay.get_position() == paused_at + 1.0
        assert len(timestamps) == 3  # 0.4 and 0.8

    def test_pause_interrupts_blocking_call(self, replay, session):
        entered = threading.Event()
        release = threading.Event()
        count = []
        result = []

        def on_packet(handle, timestamp, buffer, user_data):
            count.append(timestamp)
            if len(count) == 3:
                entered.set()
                release.wait(timeout=3.0)

        session.listen_network_packets(on_packet).raise_for_error()
        worker = threading.Thread(target=lambda: result.append(replay.resume_blocking(replay.get_length())))
        worker.start()
        assert entered.wait(timeout=3.0)

        replay.pause().raise_for_error()
        release.set()
        worker.join(timeout=3.0)

        assert len(result) == 1
        assert not result[0]
        assert len(count) == 3
        assert not replay.is_end()
        assert replay.get_position() < replay.get_length()

    def test_pause_while_blocking_call_waits_for_lock(self, replay, session):
        """A pause issued before a queued blocking call starts advancing still stops it"""
        entered = threading.Event()
        release = threading.Event()
        timestamps = []

        def on_packet(handle, timestamp, buffer, user_data):
            timestamps.append(timestamp)
            if len(timestamps) == 1:
                entered.set()
                release.wait(timeout=3.0)

        session.listen_network_packets(on_packet).raise_for_error()
        first = threading.Thread(target=lambda: replay.resume_blocking_once().raise_for_error())
        first.start()
        assert entered.wait(timeout=3.0)

        result = []
        second = threading.Thread(target=lambda: result.append(replay.resume_blocking(replay.get_length())))
        second.start()
        time.sleep(0.1)

        replay.pause().raise_for_error()
        release.set()
        first.join(timeout=3.0)
        second.join(timeout=3.0)

        assert len(result) == 1
        assert not result[0]
        assert len(timestamps) == 1
        assert not replay.is_end()

    def test_speed_change_keeps_elapsed_gap(self, replay, session):
        """Raising the speed mid-gap only rescales the part of the gap still to go"""
        arrivals = []
        session.listen_network_packets(
            lambda handle, timestamp, buffer, user_data: arrivals.append(time.monotonic())
        ).raise_for_error()

        replay.resume().raise_for_error()
        assert wait_until(lambda: len(arrivals) >= 1)
        time.sleep(0.3)
        replay.set_speed(2.0).raise_for_error()
        assert wait_until(lambda: len(arrivals) >= 2)
        replay.pause().raise_for_error()

        # 0.3s at 1x, then the remaining 0.1s of capture time at 2x
        gap = arrivals[1] - arrivals[0]
        assert 0.3 <= gap < 0.45

    def test_callback_time_does_not_accumulate(self, replay, session, capture_records):
        arrivals = []

        def slow_packet(handle, timestamp, buffer, user_data):
            arrivals.append(time.monotonic())
            time.sleep(0.02)

        session.listen_network_packets(slow_packet).raise_for_error()
        replay.set_speed(10.0).raise_for_error()
        replay.resume().raise_for_error()

        assert wait_until(lambda: not replay.is_running(), timeout=5.0)
        assert len(arrivals) == len(capture_records)
        # 10s of capture at 10x; per-packet callback time must not add up
        assert arrivals[-1] - arrivals[0] < 1.3

    def test_blocking_call_stops_background_thread(self, replay, packets):
        replay.resume().raise_for_error()
        assert wait_until(lambda: len(packets) >= 1)

        replay.resume_blocking_once().raise_for_error()

        assert not replay.is_running()
        assert len(packets) == 2

    def test_close_stops_thread(self, replay):
        replay.resume().raise_for_error()
        replay.close().raise_for_error()

        assert not replay.is_running()
        assert replay.get_state() == ReplayState.CLOSED

    def test_loop_keeps_running(self, replay, packets, capture_records):
        replay.set_enable_loop(True).raise_for_error()
        replay.set_speed(200.0).raise_for_error()
        replay.resume().raise_for_error()

        assert wait_until(lambda: len(packets) > len(capture_records))
        assert replay.is_running()
        replay.pause().raise_for_error()
        assert not replay.is_end()


class TestReplayEvents:
    def test_lifecycle_events(self, session, jsonl_capture):
        received = []

        def on_event(event):
            received.append(event["name"])

        for event in (Events.REPLAY_OPENED, Events.REPLAY_END, Events.REPLAY_CLOSED):
            event_bus.subscribe(event, on_event)

        replay = session.capture_replay
        replay.open(jsonl_capture).raise_for_error()
        replay.set_enable_loop(False).raise_for_error()
        replay.resume_blocking(20.0).raise_for_error()
        replay.resume_blocking(1.0).raise_for_error()
        replay.close().raise_for_error()
        assert event_bus.flush()

        assert received == ["replay.opened", "replay.end", "replay.closed"]
