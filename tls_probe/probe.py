"""Probe orchestration: connect, optionally capture, handshake, report."""

import contextlib
import time
from dataclasses import dataclass
from pathlib import Path

from .constants import DEFAULT_CONNECT_TIMEOUT, DEFAULT_HANDSHAKE_TIMEOUT, DEFAULT_PORT
from .handshake import HandshakeEngine, ProtocolConstraint
from .network import connect, format_address
from .output import debug
from .parsers import summarize_server_hello
from .relay import RecordRelay
from .report import HandshakeReport


@dataclass(frozen=True)
class Target:
    host: str
    port: int = DEFAULT_PORT

    def __str__(self) -> str:
        return format_address(self.host, self.port)


@dataclass(frozen=True)
class HandshakeConfig:
    """Options for a single probe run."""

    protocol: ProtocolConstraint = ProtocolConstraint.AUTO
    # OpenSSL cipher string; None keeps the library default
    cipher_policy: str | None = None
    capture: bool = False
    ca_file: Path | None = None
    # Overrides the target host for SNI and name verification
    server_name: str | None = None
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT


def run_probe(target: Target, config: HandshakeConfig = HandshakeConfig()) -> HandshakeReport:
    """Handshake with target and report what was negotiated.

    With ``config.capture`` set, a RecordRelay sits between the TLS engine
    and the socket and the report carries every record exchanged. The relay
    workers are cancelled as soon as the handshake settles, and every
    resource is released in reverse order on all exit paths.

    Raises ConnectError if the target cannot be reached and HandshakeError
    if the handshake fails; no report is produced in either case.
    """
    started = time.monotonic()
    with contextlib.ExitStack() as stack:
        debug(f"connecting to {target}")
        sock = connect(target.host, target.port, config.connect_timeout)
        stack.callback(sock.close)

        relay = None
        transport = sock
        if config.capture:
            relay = RecordRelay(sock)
            stack.callback(relay.close)
            relay.start()
            transport = relay.local
            debug("capture relay started")

        engine = HandshakeEngine(transport, target, config)
        try:
            result = engine.perform()
        finally:
            if relay is not None and not relay.stop():
                debug("capture relay still running after cancellation")

        report = HandshakeReport(
            target=target,
            protocol=result.protocol,
            cipher=result.cipher,
            cipher_version=result.cipher_version,
            key_strength=result.key_strength,
            certificate_info=result.certificate_info,
            duration=time.monotonic() - started,
        )
        if relay is not None:
            report.packets = relay.log.snapshot()
            report.relay_errors = [str(e) for e in relay.errors]
            report.server_hello = summarize_server_hello(report.packets)
            debug(f"captured {len(report.packets)} records")
        return report
