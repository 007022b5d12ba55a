"""Exceptions raised by TLS Probe."""


class ProbeError(Exception):
    """Base class for probe failures."""


class ConnectError(ProbeError, ConnectionError):
    """DNS resolution or TCP connect to the target failed."""

    def __init__(self, address: str, cause: str):
        super().__init__(f"Cannot connect to {address}: {cause}")
        self.address = address
        self.cause = cause


class HandshakeError(ProbeError):
    """The TLS handshake with the target failed.

    ``cause`` is the innermost, most specific error message.
    """

    def __init__(self, target, cause: str):
        super().__init__(f"TLS handshake with {target} failed: {cause}")
        self.target = target
        self.cause = cause


class RelayError(ProbeError):
    """A capture relay loop hit an unexpected I/O failure."""

    def __init__(self, direction, message: str):
        super().__init__(f"{direction.value} relay: {message}")
        self.direction = direction
