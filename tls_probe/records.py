"""TLS record framing."""

import struct
from dataclasses import dataclass
from enum import Enum

from .constants import CONTENT_TYPES, RECORD_HEADER_LEN, TLS_VERSIONS

_HEADER = struct.Struct("!BHH")


class Direction(str, Enum):
    """Which way a record travelled, seen from the probing client."""

    OUTGOING = "outgoing"
    INCOMING = "incoming"

    @property
    def arrow(self) -> str:
        return ">>>" if self is Direction.OUTGOING else "<<<"


def parse_record_header(header: bytes) -> tuple[int, int, int]:
    """Decode a 5-byte record header into (content_type, version, length).

    The length is the number of payload bytes that follow the header.
    """
    if len(header) != RECORD_HEADER_LEN:
        raise ValueError(
            f"TLS record header must be {RECORD_HEADER_LEN} bytes, got {len(header)}"
        )
    return _HEADER.unpack(header)


@dataclass(frozen=True)
class Record:
    """A single framed TLS record, header included."""

    direction: Direction
    content_type: int
    version: int
    length: int
    data: bytes

    def __post_init__(self):
        if len(self.data) != self.length + RECORD_HEADER_LEN:
            raise ValueError(
                f"record data is {len(self.data)} bytes, "
                f"expected {self.length + RECORD_HEADER_LEN}"
            )
        if parse_record_header(self.data[:RECORD_HEADER_LEN]) != (
            self.content_type,
            self.version,
            self.length,
        ):
            raise ValueError("record header does not match record fields")

    @classmethod
    def from_bytes(cls, direction: Direction, data: bytes) -> "Record":
        """Build a record from its complete wire bytes."""
        content_type, version, length = parse_record_header(data[:RECORD_HEADER_LEN])
        return cls(direction, content_type, version, length, bytes(data))

    @property
    def payload(self) -> bytes:
        return self.data[RECORD_HEADER_LEN:]

    @property
    def content_type_name(self) -> str:
        return CONTENT_TYPES.get(self.content_type, f"Unknown ({self.content_type})")

    @property
    def version_name(self) -> str:
        return TLS_VERSIONS.get(self.version, f"Unknown (0x{self.version:04x})")
