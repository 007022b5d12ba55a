"""Main entry point for TLS Probe."""

from pathlib import Path

import click

from .constants import DEFAULT_CONNECT_TIMEOUT, DEFAULT_HANDSHAKE_TIMEOUT, DEFAULT_PORT
from .errors import ConnectError, HandshakeError
from .handshake import ProtocolConstraint
from .metrics import record_failure, record_handshake, write_metrics
from .output import print_report, set_quiet_mode, set_verbose
from .probe import HandshakeConfig, Target, run_probe
from .report import ReportWriter


@click.command()
@click.argument("host")
@click.option(
    "--port",
    "-P",
    type=click.IntRange(1, 65535),
    default=DEFAULT_PORT,
    show_default=True,
    help="Port to connect to.",
)
@click.option(
    "--protocol",
    type=click.Choice([p.value for p in ProtocolConstraint]),
    default=ProtocolConstraint.AUTO.value,
    show_default=True,
    help="Pin the TLS version to negotiate.",
)
@click.option(
    "--ciphers",
    "cipher_policy",
    help="OpenSSL cipher string restricting TLS 1.2 and older cipher suites.",
)
@click.option(
    "--capture",
    "-c",
    is_flag=True,
    help="Capture and list every TLS record exchanged during the handshake.",
)
@click.option(
    "--ca-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Additional PEM file of trusted CA certificates.",
)
@click.option(
    "--server-name",
    help="Name to send as SNI and verify the certificate against. Default: HOST.",
)
@click.option(
    "--timeout",
    type=float,
    default=DEFAULT_HANDSHAKE_TIMEOUT,
    show_default=True,
    help="Handshake timeout in seconds.",
)
@click.option(
    "--connect-timeout",
    type=float,
    default=DEFAULT_CONNECT_TIMEOUT,
    show_default=True,
    help="TCP connect timeout in seconds.",
)
@click.option(
    "--json",
    "-j",
    "json_file",
    type=click.Path(path_type=Path),
    help="Append the report to FILE as one JSON document per line.",
)
@click.option(
    "--metrics-file",
    type=click.Path(path_type=Path),
    help="Write Prometheus metrics to FILE (textfile collector format).",
)
@click.option(
    "--show-chain",
    is_flag=True,
    help="List every certificate in the verified chain.",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    help="Suppress the console report. Only write JSON and metrics.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Print progress messages to stderr.",
)
def main(
    host: str,
    port: int,
    protocol: str,
    cipher_policy: str | None,
    capture: bool,
    ca_file: Path | None,
    server_name: str | None,
    timeout: float,
    connect_timeout: float,
    json_file: Path | None,
    metrics_file: Path | None,
    show_chain: bool,
    quiet: bool,
    verbose: bool,
) -> None:
    """Perform a diagnostic TLS handshake with HOST.

    Reports the negotiated protocol, cipher suite and key strength, the peer
    certificate chain and how it verified. The handshake always proceeds, so
    invalid certificates are reported rather than rejected.

    Every option can also be set through a TLS_PROBE_<OPTION> environment
    variable.
    """
    set_quiet_mode(quiet)
    set_verbose(verbose)

    target = Target(host, port)
    config = HandshakeConfig(
        protocol=ProtocolConstraint(protocol),
        cipher_policy=cipher_policy,
        capture=capture,
        ca_file=ca_file,
        server_name=server_name,
        connect_timeout=connect_timeout,
        handshake_timeout=timeout,
    )

    try:
        try:
            report = run_probe(target, config)
        except ConnectError as e:
            record_failure("connect")
            raise click.ClickException(str(e))
        except HandshakeError as e:
            record_failure("handshake")
            raise click.ClickException(str(e))

        record_handshake(report)
        print_report(report, show_chain=show_chain)
        with ReportWriter(json_file) as writer:
            writer.write(report)
    finally:
        if metrics_file:
            write_metrics(metrics_file)


def run() -> None:
    main(auto_envvar_prefix="TLS_PROBE")


if __name__ == "__main__":
    run()
