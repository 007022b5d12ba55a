import socket

import pytest
from OpenSSL import SSL, crypto

from tls_probe.errors import HandshakeError
from tls_probe.handshake import (
    CertificateCapture,
    HandshakeEngine,
    HandshakeState,
    ProtocolConstraint,
    VerificationStatus,
    describe_error,
    innermost_cause,
)
from tls_probe.probe import HandshakeConfig, Target


def _handshake(server, **config):
    target = Target(server.host, server.port)
    with socket.create_connection((server.host, server.port), timeout=5) as sock:
        engine = HandshakeEngine(sock, target, HandshakeConfig(**config))
        return engine, engine.perform()


def test_handshake_reports_negotiated_parameters(tls_server):
    engine, result = _handshake(tls_server)

    assert engine.state is HandshakeState.COMPLETE
    assert result.protocol == "TLSv1.3"
    assert result.cipher
    assert result.key_strength >= 128


def test_self_signed_certificate_is_reported_not_rejected(tls_server, pki):
    _, result = _handshake(tls_server)
    info = result.certificate_info

    assert info.status == VerificationStatus.CHAIN_ERRORS
    assert info.leaf == pki.cert
    assert info.chain == [pki.cert]
    assert info.chain_errors[0].depth == 0
    assert info.chain_errors[0].code == 18


def test_trusted_certificate_verifies(tls_server, pki):
    _, result = _handshake(tls_server, ca_file=pki.cert_path, server_name="localhost")

    assert result.certificate_info.status == VerificationStatus.NONE
    assert result.certificate_info.chain_errors == []


def test_ip_address_target_is_matched_against_ip_san(tls_server, pki):
    _, result = _handshake(tls_server, ca_file=pki.cert_path)
    assert result.certificate_info.status == VerificationStatus.NONE


def test_name_mismatch(tls_server, pki):
    _, result = _handshake(tls_server, ca_file=pki.cert_path, server_name="wrong.example")
    assert result.certificate_info.status == VerificationStatus.NAME_MISMATCH


def test_pinned_protocol_version(tls_server):
    _, result = _handshake(tls_server, protocol=ProtocolConstraint.TLS1_2)
    assert result.protocol == "TLSv1.2"
    assert result.cipher_version == "TLSv1.2"


def test_unsupported_protocol_version_fails(tls12_server):
    target = Target(tls12_server.host, tls12_server.port)
    with socket.create_connection((target.host, target.port), timeout=5) as sock:
        engine = HandshakeEngine(sock, target, HandshakeConfig(protocol=ProtocolConstraint.TLS1_3))
        with pytest.raises(HandshakeError) as excinfo:
            engine.perform()

    assert engine.state is HandshakeState.FAILED
    assert excinfo.value.target == target
    assert excinfo.value.cause
    assert isinstance(excinfo.value.__cause__, SSL.Error)


def test_handshake_timeout(silent_server):
    host, port = silent_server
    target = Target(host, port)
    with socket.create_connection((host, port), timeout=5) as sock:
        engine = HandshakeEngine(sock, target, HandshakeConfig(handshake_timeout=0.3))
        with pytest.raises(HandshakeError, match="no handshake progress"):
            engine.perform()


def test_certificate_capture_classification(pki):
    cert = crypto.X509.from_cryptography(pki.cert)

    capture = CertificateCapture("localhost")
    assert capture.on_verify(None, cert, 0, 0, 1) is True
    assert capture.result().status == VerificationStatus.NONE

    capture = CertificateCapture("localhost")
    assert capture.on_verify(None, cert, 18, 0, 0) is True
    info = capture.result()
    assert info.status == VerificationStatus.CHAIN_ERRORS
    assert info.chain_errors[0].message == "self-signed certificate"

    capture = CertificateCapture("other.example")
    capture.on_verify(None, cert, 10, 0, 0)
    status = capture.result().status
    assert VerificationStatus.CHAIN_ERRORS in status
    assert VerificationStatus.NAME_MISMATCH in status
    assert status.describe() == "CHAIN_ERRORS, NAME_MISMATCH"


def test_no_certificate_seen():
    info = CertificateCapture("localhost").result()
    assert info.status == VerificationStatus.CERTIFICATE_NOT_AVAILABLE
    assert info.leaf is None
    assert info.chain == []


def test_innermost_cause_follows_chain():
    try:
        try:
            try:
                raise ConnectionResetError("reset by peer")
            except ConnectionResetError as e:
                raise OSError("transport failed") from e
        except OSError:
            raise RuntimeError("handshake failed")
    except RuntimeError as outer:
        inner = innermost_cause(outer)

    assert isinstance(inner, ConnectionResetError)
    assert str(inner) == "reset by peer"


def test_innermost_cause_of_plain_exception():
    exc = ValueError("x")
    assert innermost_cause(exc) is exc


def test_describe_openssl_errors():
    error = SSL.Error([("SSL routines", "", "tlsv1 alert protocol version")])
    assert describe_error(error) == "tlsv1 alert protocol version"
    assert describe_error(SSL.SysCallError(-1, "Unexpected EOF")) == "connection closed by peer (Unexpected EOF)"
    assert describe_error(SSL.ZeroReturnError()) == "connection closed by peer"
    assert describe_error(TimeoutError("slow")) == "slow"
