import contextlib
import datetime
import ipaddress
import socket
import ssl
import threading
from dataclasses import dataclass
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID


@dataclass
class Pki:
    cert: x509.Certificate
    cert_path: Path
    key_path: Path


def tls_record(content_type: int, payload: bytes = b"", version: int = 0x0303) -> bytes:
    ln = len(payload)
    return bytes([content_type, version >> 8, version & 0xFF, (ln >> 8) & 0xFF, ln & 0xFF]) + payload


def relay_threads_alive() -> list[str]:
    return [t.name for t in threading.enumerate() if t.name.startswith("tls-probe-relay") and t.is_alive()]


@pytest.fixture(scope="session")
def pki(tmp_path_factory) -> Pki:
    """Self-signed certificate for localhost and 127.0.0.1."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(
            x509.SubjectAlternativeName(
                [x509.DNSName("localhost"), x509.IPAddress(ipaddress.ip_address("127.0.0.1"))]
            ),
            critical=False,
        )
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )

    directory = tmp_path_factory.mktemp("pki")
    cert_path = directory / "cert.pem"
    key_path = directory / "key.pem"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return Pki(cert, cert_path, key_path)


class TLSServer:
    """Threaded TLS server on localhost that completes handshakes and waits for the client to hang up."""

    def __init__(self, pki: Pki, maximum_version: ssl.TLSVersion | None = None):
        self._context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        self._context.load_cert_chain(pki.cert_path, pki.key_path)
        if maximum_version is not None:
            self._context.maximum_version = maximum_version
        self._listener = socket.create_server(("127.0.0.1", 0))
        self._listener.settimeout(0.1)
        self.host, self.port = self._listener.getsockname()[:2]
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self.handshakes = 0

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        self._thread.join(5)
        self._listener.close()

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                conn, _ = self._listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            with conn:
                conn.settimeout(5)
                try:
                    tls = self._context.wrap_socket(conn, server_side=True)
                except (ssl.SSLError, OSError):
                    continue
                self.handshakes += 1
                with tls, contextlib.suppress(OSError):
                    tls.recv(1)


@pytest.fixture(scope="session")
def tls_server(pki):
    server = TLSServer(pki)
    server.start()
    yield server
    server.stop()


@pytest.fixture(scope="session")
def tls12_server(pki):
    server = TLSServer(pki, maximum_version=ssl.TLSVersion.TLSv1_2)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def silent_server():
    """Accepts TCP connections (via the backlog) but never speaks TLS."""
    listener = socket.create_server(("127.0.0.1", 0))
    yield listener.getsockname()[:2]
    listener.close()


@pytest.fixture
def closed_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
