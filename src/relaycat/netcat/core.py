"""
Client and server sessions built from the transport, relay and acceptor.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import asyncio
import logging
from functools import partial
from typing import BinaryIO, Callable, Iterator

from relaycat.config import ClientConfig, ServerConfig
from relaycat.netcat.relay import DuplexRelay, Tap
from relaycat.netcat.server import ConnectionAcceptor, RelayOutcome
from relaycat.netcat.transport import create_client_connection, create_listener

logger = logging.getLogger(__name__)


async def run_client(
    config: ClientConfig,
    input: BinaryIO,
    output: BinaryIO,
    tap: Tap | None = None,
) -> None:
    """
    Dial ``config.remote_address`` and relay until both directions finish.

    The connection is closed afterwards whatever the outcome.
    """
    loop = asyncio.get_running_loop()
    connection = await loop.run_in_executor(
        None,
        partial(
            create_client_connection,
            config.remote_address,
            config.require_secure_transport,
            tls=config.tls,
            connect_timeout=config.connect_timeout,
        ),
    )

    relay = DuplexRelay(connection, input, output, tap=tap)
    try:
        await relay.start()
    finally:
        if not connection.closed:
            relay.close()


async def run_server(
    config: ServerConfig,
    input: BinaryIO,
    output: BinaryIO,
    tap: Tap | None = None,
    on_outcome: Callable[[RelayOutcome], None] | None = None,
    on_listening: Callable[[tuple[str, int]], None] | None = None,
) -> None:
    """
    Listen on ``config.bind_address`` and relay every accepted connection.

    Runs until the accept loop fails; the listener is closed on the way out.

    Raises:
        SecureTransportUnavailable: TLS was requested without a certificate
        BindFailure: the address could not be bound
        AcceptFailure: the accept loop stopped
    """
    listener = create_listener(
        config.bind_address,
        require_secure_transport=config.require_secure_transport,
        tls=config.tls,
        backlog=config.backlog,
    )
    if on_listening is not None:
        on_listening(listener.address)

    acceptor = ConnectionAcceptor(listener, input, output, tap=tap, on_outcome=on_outcome)
    try:
        await acceptor.start()
    finally:
        if not listener.closed:
            acceptor.close()


def hexdump(data: bytes, prefix: str = "") -> Iterator[str]:
    """Yield offset/hex/ASCII lines, 16 bytes per line."""
    for i in range(0, len(data), 16):
        chunk = data[i:i + 16]
        hex_part = " ".join(f"{b:02x}" for b in chunk)
        ascii_part = "".join(chr(b) if 32 <= b < 127 else "." for b in chunk)
        yield f"{prefix}{i:08x}  {hex_part:<48}  {ascii_part}"
