"""Handshake report and JSON output."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization

from .handshake import CertificateInfo
from .parsers import describe_record
from .records import Direction, Record

if TYPE_CHECKING:
    from .probe import Target


@dataclass
class HandshakeReport:
    """Everything learned from one successful handshake."""

    target: "Target"
    protocol: str
    cipher: str
    cipher_version: str
    key_strength: int
    certificate_info: CertificateInfo
    packets: list[Record] = field(default_factory=list)
    relay_errors: list[str] = field(default_factory=list)
    server_hello: dict | None = None
    duration: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def packets_in(self, direction: Direction) -> list[Record]:
        return [p for p in self.packets if p.direction is direction]

    def to_dict(self) -> dict:
        info = self.certificate_info
        return {
            "datetime": self.timestamp.isoformat(),
            "host": self.target.host,
            "port": self.target.port,
            "protocol": self.protocol,
            "cipher": self.cipher,
            "cipher_version": self.cipher_version,
            "key_strength": self.key_strength,
            "duration": round(self.duration, 6),
            "verification_status": info.status.describe(),
            "chain_errors": [
                {"depth": e.depth, "code": e.code, "message": e.message}
                for e in info.chain_errors
            ],
            "certificate": certificate_to_dict(info.leaf) if info.leaf else None,
            "chain": [certificate_to_dict(c) for c in info.chain],
            "server_hello": self.server_hello,
            "packets": [record_to_dict(p) for p in self.packets],
            "relay_errors": list(self.relay_errors),
        }


def certificate_to_dict(cert: x509.Certificate) -> dict:
    """Summarize a certificate for JSON output."""
    public_key = cert.public_key()
    return {
        "subject": cert.subject.rfc4514_string(),
        "issuer": cert.issuer.rfc4514_string(),
        "serial_number": f"{cert.serial_number:x}",
        "not_before": cert.not_valid_before_utc.isoformat(),
        "not_after": cert.not_valid_after_utc.isoformat(),
        "key_size": getattr(public_key, "key_size", None),
        "signature_algorithm": _signature_algorithm(cert),
        "sha256": cert.fingerprint(hashes.SHA256()).hex(),
        "pem": cert.public_bytes(serialization.Encoding.PEM).decode("ascii"),
    }


def _signature_algorithm(cert: x509.Certificate) -> str:
    # Ed25519 and Ed448 carry no separate hash
    try:
        algorithm = cert.signature_hash_algorithm
    except UnsupportedAlgorithm:
        algorithm = None
    if algorithm is None:
        return cert.signature_algorithm_oid.dotted_string
    return algorithm.name


def record_to_dict(record: Record) -> dict:
    return {
        "direction": record.direction.value,
        "content_type": record.content_type,
        "content_type_name": record.content_type_name,
        "version": record.version,
        "version_name": record.version_name,
        "length": record.length,
        "summary": describe_record(record),
        "data": record.data.hex(),
    }


class ReportWriter:
    """Append reports to a file, one JSON document per line."""

    def __init__(self, output_file: Path | None = None):
        self._output_file: TextIO | None = None
        if output_file:
            self._output_file = open(output_file, "a")

    def __enter__(self) -> "ReportWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._output_file:
            self._output_file.close()
            self._output_file = None

    def write(self, report: HandshakeReport) -> None:
        if not self._output_file:
            return
        self._output_file.write(json.dumps(report.to_dict()) + "\n")
        self._output_file.flush()
