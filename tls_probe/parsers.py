"""Dissection of captured TLS records."""

from scapy.layers.tls.handshake import TLSServerHello
from scapy.layers.tls.record import TLS

from .constants import (
    CONTENT_HANDSHAKE,
    RECORD_HEADER_LEN,
    TLS_HANDSHAKE_SERVER_HELLO,
    TLS_VERSIONS,
)
from .records import Direction, Record

# Extract cipher suite mapping from Scapy's TLSServerHello field definition
_cipher_field = next(f for f in TLSServerHello.fields_desc if f.name == "cipher")
CIPHER_SUITES = dict(_cipher_field.i2s)

HANDSHAKE_TYPES = {
    0: "HelloRequest",
    1: "ClientHello",
    2: "ServerHello",
    4: "NewSessionTicket",
    8: "EncryptedExtensions",
    11: "Certificate",
    12: "ServerKeyExchange",
    13: "CertificateRequest",
    14: "ServerHelloDone",
    15: "CertificateVerify",
    16: "ClientKeyExchange",
    20: "Finished",
}

# Handshake message header: type(1) + length(3)
_HANDSHAKE_HEADER_LEN = 4


def get_tls_version_str(version: int) -> str:
    """Convert TLS version number to human-readable string."""
    return TLS_VERSIONS.get(version, f"Unknown (0x{version:04x})")


def is_grease_value(value: int) -> bool:
    """Check if a value is a GREASE value (RFC 8701).

    GREASE values follow the pattern 0x?A?A where both bytes are the same.
    """
    high_byte = (value >> 8) & 0xFF
    low_byte = value & 0xFF
    return high_byte == low_byte and (high_byte & 0x0F) == 0x0A


def get_cipher_suite_name(cipher: int) -> str:
    """Convert cipher suite code to its IANA name using Scapy's database."""
    if is_grease_value(cipher):
        return "GREASE"
    return CIPHER_SUITES.get(cipher, f"0x{cipher:04X}")


def describe_record(record: Record) -> str:
    """One-line summary of a captured record, e.g. "Handshake: ClientHello"."""
    if record.content_type != CONTENT_HANDSHAKE:
        return record.content_type_name

    names = _message_names_with_scapy(record.data) or _message_names_manual(record.payload)
    if not names:
        return f"{record.content_type_name} (encrypted)"
    return f"{record.content_type_name}: {', '.join(names)}"


def _message_names_with_scapy(data: bytes) -> list[str]:
    try:
        tls_packet = TLS(data)
    except Exception:
        return []

    msgs = tls_packet.msg if isinstance(tls_packet.msg, list) else [tls_packet.msg]
    names = []
    for msg in msgs:
        name = msg.__class__.__name__
        # Raw and _TLSEncryptedContent mean scapy could not dissect it
        if not name.startswith("TLS"):
            return []
        names.append(name.removeprefix("TLS13").removeprefix("TLS"))
    return names


def _message_names_manual(payload: bytes) -> list[str]:
    """Walk handshake message headers without Scapy."""
    names = []
    offset = 0
    while offset + _HANDSHAKE_HEADER_LEN <= len(payload):
        msg_type = payload[offset]
        msg_len = int.from_bytes(payload[offset + 1 : offset + 4], "big")
        name = HANDSHAKE_TYPES.get(msg_type)
        if name is None:
            # Not a plaintext handshake message
            return []
        names.append(name)
        offset += _HANDSHAKE_HEADER_LEN + msg_len
    return names


def summarize_server_hello(records: list[Record]) -> dict | None:
    """Dissect the first captured ServerHello.

    Returns the version actually negotiated (TLS 1.3 hides it in the
    supported_versions extension), the IANA cipher suite name and the
    server's extensions, or None when no ServerHello was captured.
    """
    for record in records:
        if record.direction is not Direction.INCOMING:
            continue
        if record.content_type != CONTENT_HANDSHAKE:
            continue
        payload = record.payload
        if not payload or payload[0] != TLS_HANDSHAKE_SERVER_HELLO:
            continue

        msg_len = int.from_bytes(payload[1:_HANDSHAKE_HEADER_LEN], "big")
        message = payload[: _HANDSHAKE_HEADER_LEN + msg_len]
        if len(message) < _HANDSHAKE_HEADER_LEN + msg_len:
            return None

        # Re-frame the ServerHello alone so trailing messages that continue
        # in later records do not break dissection
        data = record.data[:3] + len(message).to_bytes(2, "big") + message
        try:
            msg = _find_handshake_message(TLS(data), TLSServerHello)
        except Exception:
            return None
        if msg is None:
            return None
        return _server_hello_fields(msg)
    return None


def _server_hello_fields(msg: TLSServerHello) -> dict:
    version = _extract_negotiated_version(msg) or msg.version
    cipher_suite = get_cipher_suite_name(msg.cipher) if msg.cipher is not None else ""
    extensions = []
    if getattr(msg, "ext", None):
        extensions = [ext.__class__.__name__.replace("TLS_Ext_", "") for ext in msg.ext]
    return {
        "tls_version": get_tls_version_str(version),
        "cipher_suite": cipher_suite,
        "extensions": extensions,
    }


def _extract_negotiated_version(msg: TLSServerHello) -> int | None:
    """Extract negotiated TLS version from supported_versions extension."""
    if not getattr(msg, "ext", None):
        return None

    for ext in msg.ext:
        if "SupportedVersion" not in ext.__class__.__name__:
            continue
        for attr in ("version", "versions", "selected_version"):
            val = getattr(ext, attr, None)
            if isinstance(val, int):
                return val
            if isinstance(val, (list, tuple)) and val:
                return val[0]
    return None


def _find_handshake_message(tls_packet, msg_type):
    """Find a specific handshake message type in a TLS packet."""
    layer = tls_packet
    while layer:
        if isinstance(layer, msg_type):
            return layer
        if getattr(layer, "msg", None):
            msgs = layer.msg if isinstance(layer.msg, list) else [layer.msg]
            for m in msgs:
                if isinstance(m, msg_type):
                    return m
        if hasattr(layer, "payload") and layer.payload and layer.payload != layer:
            layer = layer.payload
        else:
            layer = None
    return None
