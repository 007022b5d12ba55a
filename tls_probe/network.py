"""TCP connection and address utilities."""

import ipaddress
import socket

from .errors import ConnectError


def is_ip_address(host: str) -> bool:
    """Check whether host is an IPv4 or IPv6 literal."""
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def format_address(host: str, port: int) -> str:
    """Format host:port string, using brackets for IPv6."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def connect(host: str, port: int, timeout: float) -> socket.socket:
    """Open a TCP connection to host:port.

    Raises ConnectError when the name does not resolve or no address accepts
    the connection within timeout.
    """
    try:
        return socket.create_connection((host, port), timeout=timeout)
    except OSError as e:
        # gaierror and timeouts included
        raise ConnectError(format_address(host, port), e.strerror or str(e)) from e
