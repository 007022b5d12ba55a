"""Prometheus metrics for TLS Probe."""

from pathlib import Path

from prometheus_client import CollectorRegistry, Counter, Gauge, write_to_textfile

# Exported in node_exporter textfile collector format, see write_metrics()
REGISTRY = CollectorRegistry()

# Counter for completed TLS handshakes
tls_probe_handshakes_total = Counter(
    "tls_probe_handshakes_total",
    "Total number of TLS handshakes completed",
    ["tls_version", "cipher"],
    registry=REGISTRY,
)

# Counter for failed probes, by the stage that failed
tls_probe_failures_total = Counter(
    "tls_probe_failures_total",
    "Total number of failed probes",
    ["stage"],
    registry=REGISTRY,
)

# Counter for records seen by the capture relay
tls_probe_records_captured_total = Counter(
    "tls_probe_records_captured_total",
    "Total number of TLS records captured",
    ["direction"],
    registry=REGISTRY,
)

tls_probe_relay_errors_total = Counter(
    "tls_probe_relay_errors_total",
    "Total number of capture relay I/O errors",
    registry=REGISTRY,
)

tls_probe_handshake_duration_seconds = Gauge(
    "tls_probe_handshake_duration_seconds",
    "Duration of the last successful probe",
    registry=REGISTRY,
)


def record_handshake(report) -> None:
    """Record metrics for a completed handshake."""
    tls_probe_handshakes_total.labels(
        tls_version=report.protocol,
        cipher=report.cipher,
    ).inc()
    tls_probe_handshake_duration_seconds.set(report.duration)

    for record in report.packets:
        tls_probe_records_captured_total.labels(direction=record.direction.value).inc()

    if report.relay_errors:
        tls_probe_relay_errors_total.inc(len(report.relay_errors))


def record_failure(stage: str) -> None:
    tls_probe_failures_total.labels(stage=stage).inc()


def write_metrics(path: Path) -> None:
    """Write all metrics to path in textfile collector format."""
    write_to_textfile(str(path), REGISTRY)
