"""Console output."""

from typing import TYPE_CHECKING

import click

from .parsers import describe_record

if TYPE_CHECKING:
    from .records import Record
    from .report import HandshakeReport

# Global state (set by main)
_quiet_mode: bool = False
_verbose: bool = False


def set_quiet_mode(quiet: bool) -> None:
    """Set quiet mode (suppress the console report)."""
    global _quiet_mode
    _quiet_mode = quiet


def set_verbose(verbose: bool) -> None:
    """Enable progress messages on stderr."""
    global _verbose
    _verbose = verbose


def debug(message: str) -> None:
    if _verbose:
        click.echo(f"[*] {message}", err=True)


def warn(message: str) -> None:
    click.echo(f"[!] {message}", err=True)


def print_report(report: "HandshakeReport", show_chain: bool = False) -> None:
    """Print formatted report output."""
    if _quiet_mode:
        return

    info = report.certificate_info
    click.echo()
    click.echo(f"TLS handshake with {report.target}")
    click.echo(f"  Protocol:       {report.protocol}")
    click.echo(f"  Cipher Suite:   {report.cipher} ({report.cipher_version})")
    click.echo(f"  Key Strength:   {report.key_strength} bits")
    click.echo(f"  Duration:       {report.duration * 1000:.1f} ms")

    if info.leaf is not None:
        click.echo(f"  Subject:        {info.leaf.subject.rfc4514_string()}")
        click.echo(f"  Issuer:         {info.leaf.issuer.rfc4514_string()}")
        click.echo(f"  Valid Until:    {info.leaf.not_valid_after_utc.isoformat()}")
    click.echo(f"  Verification:   {info.status.describe()}")
    for error in info.chain_errors:
        click.echo(f"    depth {error.depth}: {error.message} ({error.code})")

    if show_chain:
        click.echo(f"  Chain:          {len(info.chain)} certificate(s)")
        for depth, cert in enumerate(info.chain):
            click.echo(f"    [{depth}] {cert.subject.rfc4514_string()}")

    if report.server_hello:
        hello = report.server_hello
        click.echo(f"  Server Hello:   {hello['tls_version']}, {hello['cipher_suite']}")
        if hello["extensions"]:
            click.echo(f"  Extensions:     {', '.join(hello['extensions'])}")

    if report.packets:
        click.echo(f"  Records:        {len(report.packets)} captured")
        for record in report.packets:
            _print_record(record)

    for message in report.relay_errors:
        warn(message)


def _print_record(record: "Record") -> None:
    click.echo(
        f"    {record.direction.arrow} {record.version_name:<8} "
        f"{record.length:>6} bytes  {describe_record(record)}"
    )
