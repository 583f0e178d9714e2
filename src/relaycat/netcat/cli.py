"""
Command line interface for relaycat.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import asyncio
import sys
import threading

import click
from rich.console import Console

from relaycat.config import ClientConfig, ServerConfig, ServerTLSOptions, TLSOptions
from relaycat.exceptions import AcceptFailure, NetcatError, RelayCancelled
from relaycat.logging_config import configure_logging
from relaycat.netcat.core import hexdump, run_client, run_server
from relaycat.netcat.relay import Direction, Tap
from relaycat.netcat.server import RelayOutcome

# stdout carries relayed data; diagnostics go to stderr
console = Console(stderr=True)

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


def parse_port(value: str) -> int | None:
    """Return the port number, or None when it is not a number in 1-65535."""
    if not value.isdigit():
        return None
    port = int(value)
    if not 1 <= port <= 65535:
        return None
    return port


def validate_remote_address(address: str) -> str | None:
    """Return an error message for a bad ``HOST:PORT``, or None when it is valid."""
    host, sep, port = address.rpartition(":")
    if not sep:
        return f"invalid address {address!r}: expected HOST:PORT"
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not host:
        return f"invalid address {address!r}: host is empty"
    if parse_port(port) is None:
        return f"invalid port {port!r}: must be a number between 1 and 65535"
    return None


def make_hex_tap() -> Tap:
    """Build a tap that hex dumps every relayed chunk to stderr."""
    lock = threading.Lock()

    def tap(direction: Direction, chunk: bytes) -> None:
        prefix = ">>> " if direction is Direction.OUTBOUND else "<<< "
        with lock:
            for line in hexdump(chunk, prefix):
                console.print(line, markup=False, highlight=False)

    return tap


def report_outcome(outcome: RelayOutcome) -> None:
    host, port = outcome.peer or ("?", 0)
    if outcome.ok:
        console.print(f"[dim]Connection from {host}:{port} closed[/dim]")
    else:
        console.print(f"[yellow]Connection from {host}:{port} failed: {outcome.error}[/yellow]")


def usage_error(ctx: click.Context, message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    click.echo(ctx.get_help(), err=True)
    ctx.exit(1)


@click.command(context_settings=CONTEXT_SETTINGS)
@click.argument("address", nargs=-1, metavar="HOST:PORT | PORT")
@click.option("-l", "--listen", is_flag=True, help="Listen on PORT instead of connecting")
@click.option("-tls", "--tls", "use_tls", is_flag=True, help="Use TLS encryption")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.option("-x", "--hex", "hex_dump", is_flag=True, help="Show hex dump of data on stderr")
@click.option("-w", "--timeout", type=float, default=10.0, help="Connection timeout")
@click.option("--bind", "-s", default="0.0.0.0", help="Address to bind to in listen mode")
@click.option("--cert", help="Certificate file (client certificate, or server certificate with -l)")
@click.option("--key", help="Key file for --cert")
@click.option("--ca-file", help="CA certificate bundle")
@click.option("--server-name", help="Name to verify in the server certificate")
@click.option("--insecure", is_flag=True, help="Don't verify server certificate")
@click.option("--log-file", help="Also write debug logs to this file")
@click.pass_context
def main(
    ctx: click.Context,
    address: tuple[str, ...],
    listen: bool,
    use_tls: bool,
    verbose: bool,
    hex_dump: bool,
    timeout: float,
    bind: str,
    cert: str | None,
    key: str | None,
    ca_file: str | None,
    server_name: str | None,
    insecure: bool,
    log_file: str | None,
):
    """Relay stdin/stdout to a TCP or TLS connection.

    \b
    Examples:
        # Connect to a server
        relaycat example.com:80

        # Connect with TLS
        relaycat -tls example.com:443

        # Listen on a port
        relaycat -l 8080

        # Listen with TLS
        relaycat -l -tls --cert cert.pem --key key.pem 8443
    """
    if listen:
        if len(address) != 1:
            usage_error(ctx, "listen mode requires exactly one PORT")
        port = parse_port(address[0])
        if port is None:
            usage_error(ctx, f"invalid port {address[0]!r}: must be a number between 1 and 65535")
    else:
        if len(address) != 1:
            usage_error(ctx, "client mode requires exactly one HOST:PORT")
        error = validate_remote_address(address[0])
        if error:
            usage_error(ctx, error)

    configure_logging(verbose=verbose, log_file=log_file)
    tap = make_hex_tap() if hex_dump else None
    stdin = sys.stdin.buffer
    stdout = sys.stdout.buffer

    if listen:
        config = ServerConfig(
            port=port,
            bind_host=bind,
            require_secure_transport=use_tls,
            tls=ServerTLSOptions(cert_file=cert, key_file=key) if use_tls and cert else None,
        )

        def on_listening(bound: tuple[str, int]) -> None:
            console.print(f"[dim]Listening on {bound[0]}:{bound[1]}. Ctrl+C to exit.[/dim]")

        session = run_server(config, stdin, stdout, tap, report_outcome, on_listening)
    else:
        config = ClientConfig(
            remote_address=address[0],
            require_secure_transport=use_tls,
            tls=TLSOptions(
                server_name=server_name,
                ca_file=ca_file,
                cert_file=cert,
                key_file=key,
                verify=not insecure,
            ),
            connect_timeout=timeout,
        )
        session = run_client(config, stdin, stdout, tap)

    try:
        asyncio.run(session)
    except KeyboardInterrupt:
        ctx.exit(130)
    except AcceptFailure as e:
        if e.closed:
            ctx.exit(0)
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)
    except RelayCancelled:
        ctx.exit(130)
    except NetcatError as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)


if __name__ == "__main__":
    main()
