"""TLS client handshake with an always-accepting certificate hook."""

import enum
import select
import socket
import time
from dataclasses import dataclass, field

import service_identity
from cryptography import x509
from OpenSSL import SSL
from service_identity.cryptography import (
    verify_certificate_hostname,
    verify_certificate_ip_address,
)

from .constants import X509_VERIFY_ERRORS
from .errors import HandshakeError
from .network import is_ip_address
from .output import debug


class ProtocolConstraint(str, enum.Enum):
    """Protocol versions the client is allowed to negotiate."""

    AUTO = "auto"
    TLS1_0 = "tls1.0"
    TLS1_1 = "tls1.1"
    TLS1_2 = "tls1.2"
    TLS1_3 = "tls1.3"

    @property
    def openssl_version(self) -> int | None:
        return _OPENSSL_VERSIONS.get(self)

    @property
    def is_legacy(self) -> bool:
        return self in (ProtocolConstraint.TLS1_0, ProtocolConstraint.TLS1_1)


_OPENSSL_VERSIONS = {
    ProtocolConstraint.TLS1_0: SSL.TLS1_VERSION,
    ProtocolConstraint.TLS1_1: SSL.TLS1_1_VERSION,
    ProtocolConstraint.TLS1_2: SSL.TLS1_2_VERSION,
    ProtocolConstraint.TLS1_3: SSL.TLS1_3_VERSION,
}


class VerificationStatus(enum.Flag):
    """Policy errors reported for the peer certificate."""

    NONE = 0
    CHAIN_ERRORS = enum.auto()
    NAME_MISMATCH = enum.auto()
    CERTIFICATE_NOT_AVAILABLE = enum.auto()

    def describe(self) -> str:
        if not self:
            return "OK"
        return ", ".join(member.name for member in VerificationStatus if member and member in self)


class HandshakeState(enum.Enum):
    IDLE = "idle"
    HANDSHAKING = "handshaking"
    VERIFYING_CERTIFICATE = "verifying-certificate"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class ChainError:
    """A nonzero OpenSSL verify result for one certificate in the chain."""

    depth: int
    code: int
    message: str


@dataclass
class CertificateInfo:
    leaf: x509.Certificate | None = None
    chain: list[x509.Certificate] = field(default_factory=list)
    status: VerificationStatus = VerificationStatus.NONE
    chain_errors: list[ChainError] = field(default_factory=list)


@dataclass
class HandshakeResult:
    protocol: str
    cipher: str
    cipher_version: str
    key_strength: int
    certificate_info: CertificateInfo


class CertificateCapture:
    """Collects what the verify hook sees during one handshake."""

    def __init__(self, server_name: str):
        self.server_name = server_name
        self.by_depth: dict[int, x509.Certificate] = {}
        self.chain_errors: list[ChainError] = []
        self.name_mismatch = False

    def on_verify(self, conn, cert, errnum: int, depth: int, ok: int) -> bool:
        """pyOpenSSL verify callback. Records, then always accepts."""
        certificate = cert.to_cryptography()
        self.by_depth[depth] = certificate
        if errnum:
            message = X509_VERIFY_ERRORS.get(errnum, f"verify error {errnum}")
            self.chain_errors.append(ChainError(depth, errnum, message))
        if depth == 0 and not self.name_mismatch:
            self.name_mismatch = not _matches_name(certificate, self.server_name)
        return True

    def result(self) -> CertificateInfo:
        if not self.by_depth:
            return CertificateInfo(status=VerificationStatus.CERTIFICATE_NOT_AVAILABLE)

        status = VerificationStatus.NONE
        if self.chain_errors:
            status |= VerificationStatus.CHAIN_ERRORS
        if self.name_mismatch:
            status |= VerificationStatus.NAME_MISMATCH
        chain = [self.by_depth[d] for d in sorted(self.by_depth)]
        return CertificateInfo(
            leaf=self.by_depth.get(0),
            chain=chain,
            status=status,
            chain_errors=list(self.chain_errors),
        )


def _matches_name(certificate: x509.Certificate, server_name: str) -> bool:
    try:
        if is_ip_address(server_name):
            verify_certificate_ip_address(certificate, server_name)
        else:
            verify_certificate_hostname(certificate, server_name)
    except (service_identity.VerificationError, service_identity.CertificateError):
        return False
    return True


def innermost_cause(exc: BaseException) -> BaseException:
    """Follow the exception chain down to the most specific error."""
    seen = {id(exc)}
    while True:
        inner = exc.__cause__ or exc.__context__
        if inner is None or id(inner) in seen:
            return exc
        seen.add(id(inner))
        exc = inner


def describe_error(exc: BaseException) -> str:
    """Render an exception, unpacking OpenSSL error queues."""
    if isinstance(exc, SSL.SysCallError) and len(exc.args) == 2:
        code, message = exc.args
        if code == -1:
            return f"connection closed by peer ({message})"
        return f"{message} (errno {code})"
    if isinstance(exc, SSL.ZeroReturnError):
        return "connection closed by peer"
    if isinstance(exc, SSL.Error) and exc.args and isinstance(exc.args[0], list):
        # Each entry is (library, function, reason)
        reasons = [entry[-1] for entry in exc.args[0] if entry and entry[-1]]
        if reasons:
            return "; ".join(reasons)
    return str(exc) or exc.__class__.__name__


class HandshakeEngine:
    """Run one TLS client handshake over an already connected transport.

    The transport is either the real socket or the capture relay's local
    endpoint. The engine never closes it.
    """

    def __init__(self, transport: socket.socket, target, config):
        self.transport = transport
        self.target = target
        self.config = config
        self.server_name = config.server_name or target.host
        self.state = HandshakeState.IDLE

    def perform(self) -> HandshakeResult:
        capture = CertificateCapture(self.server_name)
        try:
            conn = self._open_connection(capture)
            self._set_state(HandshakeState.HANDSHAKING)
            self._drive(conn)
        except Exception as e:
            self._set_state(HandshakeState.FAILED)
            raise HandshakeError(self.target, describe_error(innermost_cause(e))) from e

        self._set_state(HandshakeState.COMPLETE)
        return HandshakeResult(
            protocol=conn.get_protocol_version_name(),
            cipher=conn.get_cipher_name() or "",
            cipher_version=conn.get_cipher_version() or "",
            key_strength=conn.get_cipher_bits() or 0,
            certificate_info=capture.result(),
        )

    def _set_state(self, state: HandshakeState) -> None:
        if state is not self.state:
            debug(f"handshake {self.state.value} -> {state.value}")
            self.state = state

    def _open_connection(self, capture: CertificateCapture) -> SSL.Connection:
        context = SSL.Context(SSL.TLS_CLIENT_METHOD)
        protocol = self.config.protocol
        if protocol.openssl_version is not None:
            context.set_min_proto_version(protocol.openssl_version)
            context.set_max_proto_version(protocol.openssl_version)

        if self.config.cipher_policy:
            context.set_cipher_list(self.config.cipher_policy.encode("ascii"))
        elif protocol.is_legacy:
            # Legacy protocols are refused at the default security level
            context.set_cipher_list(b"DEFAULT:@SECLEVEL=0")

        context.set_default_verify_paths()
        if self.config.ca_file:
            context.load_verify_locations(str(self.config.ca_file))

        def verify(conn, cert, errnum, depth, ok):
            self._set_state(HandshakeState.VERIFYING_CERTIFICATE)
            return capture.on_verify(conn, cert, errnum, depth, ok)

        context.set_verify(SSL.VERIFY_PEER, verify)

        conn = SSL.Connection(context, self.transport)
        if not is_ip_address(self.server_name):
            conn.set_tlsext_host_name(self.server_name.encode("idna"))
        conn.set_connect_state()
        return conn

    def _drive(self, conn: SSL.Connection) -> None:
        """Call do_handshake on a non-blocking transport until it finishes."""
        self.transport.setblocking(False)
        deadline = time.monotonic() + self.config.handshake_timeout
        while True:
            try:
                conn.do_handshake()
                return
            except SSL.WantReadError:
                rlist, wlist = [self.transport], []
            except SSL.WantWriteError:
                rlist, wlist = [], [self.transport]

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"no handshake progress within {self.config.handshake_timeout}s")
            readable, writable, _ = select.select(rlist, wlist, [], remaining)
            if not readable and not writable:
                raise TimeoutError(f"no handshake progress within {self.config.handshake_timeout}s")
