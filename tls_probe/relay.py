"""Record-capturing relay between the TLS engine and the real socket.

The relay hands the TLS engine one end of a local socket pair in place of the
network socket. Two worker threads forward traffic between the pair and the
upstream socket one TLS record at a time, appending a copy of every record to
a shared CaptureLog. Bytes are never altered.
"""

import contextlib
import select
import socket
import threading

from .constants import RECORD_HEADER_LEN, RELAY_JOIN_TIMEOUT, RELAY_POLL_INTERVAL
from .errors import RelayError
from .output import debug
from .records import Direction, Record, parse_record_header

# Most bytes a loop may still forward once cancellation is observed
_DRAIN_LIMIT = 65536


class CaptureLog:
    """Append-only, thread-safe log of captured records."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: list[Record] = []

    def append(self, record: Record) -> None:
        with self._lock:
            self._records.append(record)

    def snapshot(self) -> list[Record]:
        """Return a copy of the records in insertion order."""
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class _Cancelled(Exception):
    """Cancellation observed while waiting for data."""


class _EndOfStream(Exception):
    """Peer closed the stream after ``received`` bytes of the current read."""

    def __init__(self, received: int):
        super().__init__(received)
        self.received = received


class _Stream:
    """Non-blocking reads and writes for one loop, bounded by cancellation.

    When cancellation is first observed the stream notes how many bytes are
    already readable. It keeps forwarding until those are consumed, finishes
    the record in progress only if its bytes are immediately available, and
    then stops at the next record boundary.
    """

    def __init__(self, src: socket.socket, dst: socket.socket, cancel: threading.Event, poll_interval: float):
        self.src = src
        self.dst = dst
        self._cancel = cancel
        self._poll_interval = poll_interval
        self._drain: int | None = None

    def _cancelled(self) -> bool:
        if not self._cancel.is_set():
            return False
        if self._drain is None:
            self._drain = self._readable_now()
        return True

    def _readable_now(self) -> int:
        readable, _, _ = select.select([self.src], [], [], 0)
        if not readable:
            return 0
        try:
            return len(self.src.recv(_DRAIN_LIMIT, socket.MSG_PEEK))
        except BlockingIOError:
            return 0

    def read_exact(self, n: int, at_boundary: bool = False) -> bytes:
        buf = bytearray()
        while len(buf) < n:
            cancelled = self._cancelled()
            if cancelled and at_boundary and not buf and self._drain <= 0:
                raise _Cancelled
            readable, _, _ = select.select(
                [self.src], [], [], 0 if cancelled else self._poll_interval
            )
            if not readable:
                if cancelled:
                    raise _Cancelled
                continue
            try:
                chunk = self.src.recv(n - len(buf))
            except BlockingIOError:
                continue
            if not chunk:
                raise _EndOfStream(len(buf))
            if self._drain is not None:
                self._drain -= len(chunk)
            buf += chunk
        return bytes(buf)

    def write_all(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            cancelled = self._cancelled()
            _, writable, _ = select.select([], [self.dst], [], self._poll_interval)
            if not writable:
                if cancelled:
                    raise _Cancelled
                continue
            try:
                sent = self.dst.send(view)
            except BlockingIOError:
                continue
            view = view[sent:]


class RecordRelay:
    """Forward TLS records between a local endpoint and an upstream socket.

    ``local`` is the socket the TLS engine should use. The relay does not own
    the upstream socket; the caller closes it after closing the relay.
    """

    def __init__(
        self,
        upstream: socket.socket,
        log: CaptureLog | None = None,
        poll_interval: float = RELAY_POLL_INTERVAL,
    ):
        self.log = log if log is not None else CaptureLog()
        self.errors: list[RelayError] = []
        self._errors_lock = threading.Lock()
        self._upstream = upstream
        self._poll_interval = poll_interval
        self._cancel = threading.Event()
        self._threads: list[threading.Thread] = []
        self.local, self._inner = socket.socketpair()

    def __enter__(self) -> "RecordRelay":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        """Start the outgoing and incoming forwarding loops."""
        # Every wait goes through select() so cancellation is always observed
        self._upstream.setblocking(False)
        self._inner.setblocking(False)
        self._threads = [
            threading.Thread(
                target=self._forward,
                args=(self._inner, self._upstream, Direction.OUTGOING),
                name="tls-probe-relay-outgoing",
                daemon=True,
            ),
            threading.Thread(
                target=self._forward,
                args=(self._upstream, self._inner, Direction.INCOMING),
                name="tls-probe-relay-incoming",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()

    def stop(self, timeout: float = RELAY_JOIN_TIMEOUT) -> bool:
        """Request cancellation and wait for both loops.

        Loops forward only what was already readable when they noticed the
        request, then stop. Returns True when no loop is left running.
        """
        self._cancel.set()
        for thread in self._threads:
            thread.join(timeout)
        return not self.running

    def close(self) -> None:
        """Stop the loops and close both ends of the local socket pair."""
        if not self.stop():
            debug("relay workers did not stop in time")
        self.local.close()
        self._inner.close()

    def _forward(self, src: socket.socket, dst: socket.socket, direction: Direction) -> None:
        stream = _Stream(src, dst, self._cancel, self._poll_interval)
        try:
            while True:
                try:
                    header = stream.read_exact(RECORD_HEADER_LEN, at_boundary=True)
                except _EndOfStream as e:
                    if e.received:
                        raise
                    debug(f"{direction.value} stream closed")
                    break
                _, _, length = parse_record_header(header)
                data = header + stream.read_exact(length)
                stream.write_all(data)
                self.log.append(Record.from_bytes(direction, data))
        except _Cancelled:
            return
        except _EndOfStream as e:
            self._report(RelayError(direction, f"stream closed inside a record ({e.received} bytes read)"))
        except (OSError, ValueError) as e:
            self._report(RelayError(direction, str(e)))

        # Let the other side observe EOF instead of waiting for a timeout
        with contextlib.suppress(OSError):
            dst.shutdown(socket.SHUT_WR)

    def _report(self, error: RelayError) -> None:
        debug(str(error))
        with self._errors_lock:
            self.errors.append(error)
