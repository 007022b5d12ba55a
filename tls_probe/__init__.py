"""Diagnostic TLS handshake probe with optional record capture."""

__version__ = "0.1.0"
