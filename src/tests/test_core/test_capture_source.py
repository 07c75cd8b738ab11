"""
Tests for capture readers (JSONL and pcap)
"""

import json

import pytest

from core import (
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
from models import SENSOR_HANDLE_FLAG_MOCK, CaptureRecord, strip_handle_flags


class TestCaptureSourceInterface:
    def test_cannot_instantiate_abstract_class(self):
        with pytest.raises(TypeError):
            CaptureSource()


class TestBuildCapture:
    def test_sorts_and_flags_handles(self):
        records = [CaptureRecord(1, 2_000_000, b"b"), CaptureRecord(2, 1_000_000, b"a")]

        capture = build_capture("mem", records)

        assert [r.data for r in capture.records] == [b"a", b"b"]
        assert all(r.handle & SENSOR_HANDLE_FLAG_MOCK for r in capture.records)
        assert capture.start_time == 1_000_000
        assert capture.offsets == [0.0, 1.0]
        assert capture.length == 1.0

    def test_explicit_start_time(self):
        capture = build_capture("mem", [CaptureRecord(1, 1_500_000, b"")], start_time=1_000_000)
        assert capture.offsets == [0.5]
        assert capture.length == 0.5

    def test_start_time_after_first_record_rejected(self):
        with pytest.raises(ValueError):
            build_capture("mem", [CaptureRecord(1, 1_000_000, b"")], start_time=2_000_000)

    def test_empty_capture_rejected(self):
        with pytest.raises(ValueError):
            build_capture("mem", [])

    def test_index_at(self):
        capture = Capture("mem", 0, [CaptureRecord(1, t, b"") for t in (0, 1_000_000, 2_000_000)])
        assert capture.index_at(0.0) == 0
        assert capture.index_at(0.5) == 1
        assert capture.index_at(1.0) == 1
        assert capture.index_at(2.5) == 3


class TestJsonlCaptureSource:
    def test_load(self, jsonl_capture, capture_records):
        capture = load_capture(jsonl_capture)

        assert capture.filename == str(jsonl_capture)
        assert capture.start_time == capture_records[0].timestamp
        assert len(capture) == len(capture_records)
        assert capture.length == pytest.approx(10.0)
        assert strip_handle_flags(capture.records[1].handle) == capture_records[1].handle
        assert capture.records[3].data == capture_records[3].data

    def test_header_is_optional(self, tmp_path, capture_records):
        path = JsonlCaptureSource.write(tmp_path / "no_header.jsonl", capture_records[2:])
        capture = load_capture(path)
        assert capture.start_time == capture_records[2].timestamp

    def test_blank_lines_skipped(self, tmp_path):
        path = tmp_path / "blank.jsonl"
        path.write_text('\n{"handle": 1, "timestamp": 5, "data": "00"}\n\n')
        assert len(load_capture(path)) == 1

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.jsonl"
        path.write_text('{"handle": 1, "timestamp": 5, "data": "00"}\n{not json\n')
        with pytest.raises(ValueError, match="line 2"):
            load_capture(path)

    def test_header_after_records_rejected(self, tmp_path):
        path = tmp_path / "late_header.jsonl"
        lines = [{"handle": 1, "timestamp": 5, "data": ""}, {"start_time": 1}]
        path.write_text("\n".join(json.dumps(line) for line in lines))
        with pytest.raises(ValueError):
            load_capture(path)

    def test_no_records(self, tmp_path):
        path = tmp_path / "empty.jsonl"
        path.write_text(json.dumps({"start_time": 1}) + "\n")
        with pytest.raises(ValueError):
            load_capture(path)


class TestPcapCaptureSource:
    def test_load(self, pcap_capture, capture_records):
        capture = load_capture(pcap_capture)

        assert len(capture) == len(capture_records)
        assert capture.start_time == capture_records[0].timestamp
        assert capture.length == pytest.approx(10.0, abs=1e-6)
        assert strip_handle_flags(capture.records[0].handle) == capture_records[0].handle
        assert strip_handle_flags(capture.records[1].handle) == capture_records[1].handle
        assert [r.data for r in capture.records] == [r.data for r in capture_records]

    def test_not_a_pcap(self, tmp_path):
        path = tmp_path / "garbage.pcap"
        path.write_bytes(b"definitely not a pcap file")
        with pytest.raises(ValueError):
            load_capture(path)

    def test_partial_record_header(self, pcap_capture):
        pcap_capture.write_bytes(pcap_capture.read_bytes() + b"\x00" * 5)

        with pytest.raises(TruncatedCaptureError):
            load_capture(pcap_capture)


class TestLoadCapture:
    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "capture.txt"
        path.write_text("hello")
        with pytest.raises(UnsupportedCaptureError):
            load_capture(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_capture(tmp_path / "missing.jsonl")

    def test_unsupported_is_value_error(self):
        assert issubclass(UnsupportedCaptureError, ValueError)

    def test_list_captures(self, tmp_path, jsonl_capture, pcap_capture):
        (tmp_path / "notes.txt").write_text("skip me")
        assert list_captures(tmp_path) == ["drive.jsonl", "drive.pcap"]

    def test_list_captures_missing_directory(self, tmp_path):
        assert list_captures(tmp_path / "nope") == []

    def test_custom_sources(self, tmp_path, jsonl_capture):
        with pytest.raises(UnsupportedCaptureError):
            load_capture(jsonl_capture, sources=(PcapCaptureSource(),))
