"""Constants for TLS Probe."""

# TLS record header: content type (1) + version (2) + length (2)
RECORD_HEADER_LEN = 5

DEFAULT_PORT = 443

# Seconds
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_HANDSHAKE_TIMEOUT = 15.0

# Upper bound on how long a relay loop waits before re-checking cancellation
RELAY_POLL_INTERVAL = 0.1

# How long to wait for relay workers to stop after cancellation
RELAY_JOIN_TIMEOUT = 2.0

# TLS record content types
CONTENT_CHANGE_CIPHER_SPEC = 20
CONTENT_ALERT = 21
CONTENT_HANDSHAKE = 22
CONTENT_APPLICATION_DATA = 23
CONTENT_HEARTBEAT = 24

CONTENT_TYPES = {
    CONTENT_CHANGE_CIPHER_SPEC: "ChangeCipherSpec",
    CONTENT_ALERT: "Alert",
    CONTENT_HANDSHAKE: "Handshake",
    CONTENT_APPLICATION_DATA: "ApplicationData",
    CONTENT_HEARTBEAT: "Heartbeat",
}

# TLS handshake types
TLS_HANDSHAKE_SERVER_HELLO = 0x02

# TLS version mapping
TLS_VERSIONS = {
    0x0300: "SSL 3.0",
    0x0301: "TLS 1.0",
    0x0302: "TLS 1.1",
    0x0303: "TLS 1.2",
    0x0304: "TLS 1.3",
}

# Common X509_V_ERR_* codes reported to the verify callback
X509_VERIFY_ERRORS = {
    2: "unable to get issuer certificate",
    7: "certificate signature failure",
    9: "certificate is not yet valid",
    10: "certificate has expired",
    18: "self-signed certificate",
    19: "self-signed certificate in certificate chain",
    20: "unable to get local issuer certificate",
    21: "unable to verify the first certificate",
    23: "certificate revoked",
    24: "invalid CA certificate",
    26: "unsupported certificate purpose",
    27: "certificate not trusted",
    28: "certificate rejected",
    62: "hostname mismatch",
}
