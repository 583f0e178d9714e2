"""
Netcat relay: transports, duplex relay and the server accept loop.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

from relaycat.netcat.core import run_client, run_server
from relaycat.netcat.relay import Direction, DuplexRelay, RelayState
from relaycat.netcat.server import ConnectionAcceptor, RelayOutcome, relay_handler
from relaycat.netcat.transport import (
    Connection,
    Listener,
    TcpConnection,
    TlsConnection,
    create_client_connection,
    create_listener,
)

__all__ = [
    "Connection",
    "ConnectionAcceptor",
    "Direction",
    "DuplexRelay",
    "Listener",
    "RelayOutcome",
    "RelayState",
    "TcpConnection",
    "TlsConnection",
    "create_client_connection",
    "create_listener",
    "relay_handler",
    "run_client",
    "run_server",
]
