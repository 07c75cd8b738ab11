"""
CaptureSource Interface - readers for recorded sensor traffic

The replay controller only needs a start time, a length and per-record
offsets; the payloads are opaque and handed to the driver untouched.

Formats:
- JSONL (.jsonl): optional header line {"start_time": <us>}, then one
  {"handle": int, "timestamp": <us>, "data": "<hex>"} object per line
- libpcap (.pcap): Ethernet/IPv4/UDP frames, handle = source IPv4 address
"""

import bisect
import json
import logging
import socket
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

import dpkt

from models import SENSOR_HANDLE_FLAG_MOCK, CaptureRecord

logger = logging.getLogger(__name__)


class UnsupportedCaptureError(ValueError):
    """File is not a capture format any source understands"""


class TruncatedCaptureError(ValueError):
    """Capture file ends in the middle of a record"""


@dataclass
class Capture:
    """
    An in-memory capture, records sorted by timestamp.

    Attributes:
        filename: Path the capture was loaded from
        start_time: Capture start [unix microseconds]
        records: Records in capture-time order
        offsets: Seconds since start_time for each record
    """

    filename: str
    start_time: int
    records: list[CaptureRecord]
    offsets: list[float] = field(init=False)

    def __post_init__(self):
        self.offsets = [record.offset(self.start_time) for record in self.records]

    @property
    def length(self) -> float:
        """Capture length [seconds]"""
        return self.offsets[-1] if self.offsets else 0.0

    def index_at(self, position: float) -> int:
        """Index of the first record at or after `position` seconds"""
        return bisect.bisect_left(self.offsets, position)

    def __len__(self) -> int:
        return len(self.records)


def build_capture(filename: str, records: list[CaptureRecord], start_time: int | None = None) -> Capture:
    """
    Sort records, mark their handles as replayed and validate the time base.

    Raises:
        ValueError: If there are no records or start_time is after the first record
    """
    if not records:
        raise ValueError(f"No valid records found in {filename}")

    ordered = sorted(records, key=lambda r: r.timestamp)
    if start_time is None:
        start_time = ordered[0].timestamp
    elif start_time > ordered[0].timestamp:
        raise ValueError(
            f"Capture start time {start_time} is after first record {ordered[0].timestamp}"
        )

    ordered = [
        CaptureRecord(r.handle | SENSOR_HANDLE_FLAG_MOCK, r.timestamp, r.data) for r in ordered
    ]
    return Capture(filename=filename, start_time=start_time, records=ordered)


class CaptureSource(ABC):
    """
    Abstract base class for capture readers
    """

    suffixes: tuple[str, ...] = ()

    def accepts(self, path: Path) -> bool:
        return path.suffix.lower() in self.suffixes

    @abstractmethod
    def load(self, path: Path) -> Capture:
        """
        Load a capture file

        Raises:
            FileNotFoundError: If the file does not exist
            OSError: If the file cannot be read
            TruncatedCaptureError: If the file ends mid-record
            ValueError: If the contents are invalid
        """


class JsonlCaptureSource(CaptureSource):
    """JSONL capture reader"""

    suffixes = (".jsonl",)

    def load(self, path: Path) -> Capture:
        records = []
        start_time = None

        with open(path) as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue

                try:
                    data = json.loads(line)
                except json.JSONDecodeError as e:
                    raise ValueError(f"Invalid JSON at line {line_num}: {e}") from e
                if not isinstance(data, dict):
                    raise ValueError(f"Expected an object at line {line_num}")

                if "start_time" in data and "handle" not in data:
                    if records or start_time is not None:
                        raise ValueError(f"Unexpected header at line {line_num}")
                    start_time = int(data["start_time"])
                    continue

                records.append(CaptureRecord.from_dict(data))

        return build_capture(str(path), records, start_time)

    @staticmethod
    def write(path: Path, records: list[CaptureRecord], start_time: int | None = None) -> Path:
        """Write records as a JSONL capture"""
        path = Path(path)
        with open(path, "w") as f:
            if start_time is not None:
                f.write(json.dumps({"start_time": start_time}) + "\n")
            for record in records:
                f.write(json.dumps(record.to_dict()) + "\n")
        return path


class PcapCaptureSource(CaptureSource):
    """libpcap capture reader (UDP payloads only)"""

    suffixes = (".pcap",)

    def load(self, path: Path) -> Capture:
        records = []
        skipped = 0

        with open(path, "rb") as f:
            try:
                reader = dpkt.pcap.Reader(f)
            except (ValueError, dpkt.dpkt.Error) as e:
                raise ValueError(f"Invalid pcap header: {e}") from e

            if reader.datalink() != dpkt.pcap.DLT_EN10MB:
                raise ValueError(f"Unsupported pcap link type: {reader.datalink()}")

            try:
                for ts, buf in reader:
                    record = self._parse_frame(ts, buf)
                    if record is None:
                        skipped += 1
                        continue
                    records.append(record)
            except (dpkt.dpkt.Error, struct.error) as e:
                raise TruncatedCaptureError(f"Truncated pcap file: {e}") from e

        if skipped:
            logger.debug(f"Skipped {skipped} non-UDP frames in {path}")
        return build_capture(str(path), records)

    @staticmethod
    def _parse_frame(ts: float, buf: bytes) -> CaptureRecord | None:
        try:
            eth = dpkt.ethernet.Ethernet(buf)
        except (dpkt.dpkt.UnpackError, dpkt.dpkt.NeedData):
            return None

        ip = eth.data
        if not isinstance(ip, dpkt.ip.IP) or not isinstance(ip.data, dpkt.udp.UDP):
            return None

        handle = struct.unpack("!I", ip.src)[0]
        return CaptureRecord(handle=handle, timestamp=int(round(ts * 1e6)), data=bytes(ip.data.data))

    @staticmethod
    def write(path: Path, records: list[CaptureRecord], port: int = 8808) -> Path:
        """Write records as Ethernet/IPv4/UDP frames in a pcap file"""
        path = Path(path)
        with open(path, "wb") as f:
            writer = dpkt.pcap.Writer(f)
            for record in records:
                udp = dpkt.udp.UDP(sport=port, dport=port, data=record.data)
                udp.ulen = len(udp)
                ip = dpkt.ip.IP(
                    src=struct.pack("!I", record.handle & 0xFFFFFFFF),
                    dst=socket.inet_aton("255.255.255.255"),
                    p=dpkt.ip.IP_PROTO_UDP,
                    data=udp,
                )
                ip.len = len(ip)
                eth = dpkt.ethernet.Ethernet(type=dpkt.ethernet.ETH_TYPE_IP, data=ip)
                writer.writepkt(bytes(eth), ts=record.timestamp / 1e6)
        return path


DEFAULT_SOURCES: tuple[CaptureSource, ...] = (JsonlCaptureSource(), PcapCaptureSource())


def load_capture(path: str | Path, sources: tuple[CaptureSource, ...] = DEFAULT_SOURCES) -> Capture:
    """
    Load a capture with the first source that accepts its suffix

    Raises:
        UnsupportedCaptureError: If no source accepts the file
        FileNotFoundError / OSError / ValueError: see CaptureSource.load
    """
    path = Path(path)
    for source in sources:
        if source.accepts(path):
            if not path.is_file():
                raise FileNotFoundError(f"Capture not found: {path}")
            return source.load(path)
    raise UnsupportedCaptureError(f"Unsupported capture file type: {path.suffix or path.name}")


def list_captures(directory: str | Path, sources: tuple[CaptureSource, ...] = DEFAULT_SOURCES) -> list[str]:
    """List capture files in a directory"""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(
        p.name for p in directory.iterdir() if p.is_file() and any(s.accepts(p) for s in sources)
    )
