"""
Capture Record data model
"""

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureRecord:
    """
    A single recorded network packet

    Attributes:
        handle: Sensor handle the packet came from
        timestamp: Capture time [unix microseconds]
        data: Raw packet payload
    """

    handle: int
    timestamp: int
    data: bytes

    def offset(self, start_time: int) -> float:
        """Seconds elapsed since the capture start time"""
        return (self.timestamp - start_time) / 1e6

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CaptureRecord":
        """
        Create CaptureRecord from JSON data

        Args:
            data: Dictionary from a JSONL capture line

        Returns:
            CaptureRecord instance

        Raises:
            ValueError: If data is invalid
        """
        try:
            return cls(
                handle=int(data["handle"]),
                timestamp=int(data["timestamp"]),
                data=bytes.fromhex(str(data.get("data", ""))),
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Failed to parse CaptureRecord: {e}, data: {data}")
            raise ValueError(f"Invalid capture record: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return {"handle": self.handle, "timestamp": self.timestamp, "data": self.data.hex()}
