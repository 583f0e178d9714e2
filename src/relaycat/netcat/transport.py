"""
Transport connections and the factory that produces them.

A connection is any object with ``read``/``write``/``close``. Two variants
exist: plain TCP sockets and TLS-wrapped sockets. The relay never needs to
know which one it holds.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
import socket
import ssl
from contextlib import suppress
from typing import Protocol, runtime_checkable

from relaycat.config import ServerTLSOptions, TLSOptions
from relaycat.exceptions import (
    BindFailure,
    ConnectionClosed,
    DialFailure,
    SecureTransportUnavailable,
)

logger = logging.getLogger(__name__)

DEFAULT_READ_SIZE = 32 * 1024


@runtime_checkable
class Connection(Protocol):
    """Bidirectional, ordered, reliable byte stream."""

    @property
    def closed(self) -> bool: ...

    def read(self, size: int = DEFAULT_READ_SIZE) -> bytes: ...

    def write(self, data: bytes) -> int: ...

    def close(self) -> None: ...


def split_address(address: str) -> tuple[str, int]:
    """
    Split ``host:port`` into its parts.

    IPv6 literals must be bracketed (``[::1]:8080``).

    Raises:
        ValueError: if the address has no port or the port is not numeric
    """
    host, sep, port = address.rpartition(":")
    if not sep or not port:
        raise ValueError(f"missing port in address {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"too many colons in address {address!r}")
    if not port.isdigit():
        raise ValueError(f"invalid port in address {address!r}")
    return host, int(port)


class TcpConnection:
    """Plain TCP stream socket."""

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self._closed = False
        try:
            self.peer = sock.getpeername()[:2]
        except OSError:
            self.peer = None

    @property
    def closed(self) -> bool:
        return self._closed

    def read(self, size: int = DEFAULT_READ_SIZE) -> bytes:
        """Read up to ``size`` bytes; ``b""`` means the peer finished sending."""
        if self._closed:
            raise ConnectionClosed("connection is closed")
        try:
            data = self._sock.recv(size)
        except OSError as e:
            if self._closed:
                raise ConnectionClosed("connection is closed") from e
            raise
        # shutdown() from another thread wakes recv with an empty read
        if not data and self._closed:
            raise ConnectionClosed("connection is closed")
        return data

    def write(self, data: bytes) -> int:
        if self._closed:
            raise ConnectionClosed("connection is closed")
        try:
            self._sock.sendall(data)
        except OSError as e:
            if self._closed:
                raise ConnectionClosed("connection is closed") from e
            raise
        return len(data)

    def close(self) -> None:
        if self._closed:
            raise ConnectionClosed("connection already closed")
        self._closed = True
        with suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)
        self._sock.close()
        logger.debug("Connection to %s closed", self.peer)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} peer={self.peer} closed={self._closed}>"


class TlsConnection:
    """
    TLS session over a TCP stream socket.

    Dialed sessions are handshaken before construction. Sessions accepted by
    a ``Listener`` are not: ``handshake()`` must run before the first read or
    write, on the connection's own worker so one slow peer never holds up
    the accept loop.
    """

    def __init__(
        self,
        sock: ssl.SSLSocket,
        *,
        handshaken: bool = True,
        handshake_timeout: float | None = None,
    ):
        self._sock = sock
        self._stream = TcpConnection(sock)
        self._handshaken = handshaken
        self._handshake_timeout = handshake_timeout

    @property
    def peer(self) -> tuple[str, int] | None:
        return self._stream.peer

    @property
    def closed(self) -> bool:
        return self._stream.closed

    @property
    def handshaken(self) -> bool:
        return self._handshaken

    @property
    def version(self) -> str | None:
        return self._sock.version()

    @property
    def cipher(self) -> str | None:
        cipher = self._sock.cipher()
        return cipher[0] if cipher else None

    def handshake(self) -> None:
        """
        Complete a deferred server-side handshake; a no-op once done.

        Raises:
            ConnectionClosed: the connection was closed
            OSError: the handshake failed or timed out
        """
        if self._handshaken:
            return
        if self.closed:
            raise ConnectionClosed("connection is closed")

        self._sock.settimeout(self._handshake_timeout)
        try:
            self._sock.do_handshake()
        except OSError as e:
            if self.closed:
                raise ConnectionClosed("connection is closed") from e
            raise
        self._sock.settimeout(None)
        self._handshaken = True
        logger.debug("TLS established with %s: %s, %s", self.peer, self.version, self.cipher)

    def read(self, size: int = DEFAULT_READ_SIZE) -> bytes:
        return self._stream.read(size)

    def write(self, data: bytes) -> int:
        return self._stream.write(data)

    def close(self) -> None:
        self._stream.close()

    def __repr__(self) -> str:
        return f"<TlsConnection peer={self.peer} closed={self.closed}>"


def build_client_context(options: TLSOptions) -> ssl.SSLContext:
    """Create the SSL context used to dial a TLS server."""
    context = ssl.create_default_context()

    if not options.verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        logger.warning("TLS certificate verification disabled")

    if options.ca_file:
        context.load_verify_locations(options.ca_file)

    if options.cert_file:
        context.load_cert_chain(options.cert_file, keyfile=options.key_file)

    return context


def build_server_context(options: ServerTLSOptions) -> ssl.SSLContext:
    """Create the SSL context used to terminate TLS on accepted connections."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(options.cert_file, keyfile=options.key_file)
    return context


def create_client_connection(
    remote_address: str,
    require_secure_transport: bool,
    *,
    tls: TLSOptions | None = None,
    connect_timeout: float | None = 10.0,
) -> TcpConnection | TlsConnection:
    """
    Dial ``remote_address`` once.

    Args:
        remote_address: ``host:port`` to connect to
        require_secure_transport: Negotiate TLS after connecting
        tls: TLS settings; the peer is verified against the dialed host
            unless ``tls.server_name`` is set
        connect_timeout: Timeout for connect and handshake only

    Returns:
        A blocking ``TcpConnection`` or ``TlsConnection``

    Raises:
        DialFailure: the address is malformed, the connection could not be
            made or the TLS handshake was rejected
    """
    try:
        host, port = split_address(remote_address)
    except ValueError as e:
        raise DialFailure(remote_address, e) from e

    logger.info("Connecting to %s", remote_address)
    try:
        sock = socket.create_connection((host, port), timeout=connect_timeout)
    except OSError as e:
        raise DialFailure(remote_address, e) from e
    logger.info("Connected to %s", remote_address)

    if not require_secure_transport:
        sock.settimeout(None)
        return TcpConnection(sock)

    options = tls or TLSOptions()
    hostname = options.server_name or host
    logger.debug("Initiating TLS handshake with %s", hostname)
    try:
        context = build_client_context(options)
        ssl_sock = context.wrap_socket(sock, server_hostname=hostname)
    except (OSError, ValueError) as e:
        sock.close()
        raise DialFailure(remote_address, e) from e

    ssl_sock.settimeout(None)
    connection = TlsConnection(ssl_sock)
    logger.info("TLS established: %s, %s", connection.version, connection.cipher)
    return connection


class Listener:
    """
    Listening TCP socket producing one connection per accepted peer.

    ``accept`` polls so that ``close`` from another thread unblocks it
    promptly on every platform.
    """

    def __init__(
        self,
        sock: socket.socket,
        ssl_context: ssl.SSLContext | None = None,
        poll_interval: float = 0.2,
        handshake_timeout: float = 10.0,
    ):
        self._sock = sock
        self._ssl_context = ssl_context
        self._handshake_timeout = handshake_timeout
        self._closed = False
        self._sock.settimeout(poll_interval)

    @property
    def address(self) -> tuple[str, int]:
        """Actual bound (host, port)."""
        return self._sock.getsockname()[:2]

    @property
    def secure(self) -> bool:
        return self._ssl_context is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def accept(self) -> tuple[TcpConnection | TlsConnection, tuple[str, int]]:
        """
        Block until a peer connects.

        On a secure listener the returned ``TlsConnection`` has not been
        handshaken yet; the caller runs ``handshake()`` off the accept path.

        Raises:
            ConnectionClosed: the listener was closed
            OSError: the listening socket failed
        """
        while True:
            if self._closed:
                raise ConnectionClosed("listener is closed")
            try:
                client, addr = self._sock.accept()
            except TimeoutError:
                continue
            except OSError as e:
                if self._closed:
                    raise ConnectionClosed("listener is closed") from e
                raise

            addr = addr[:2]
            logger.info("Connection from %s:%s", addr[0], addr[1])

            client.settimeout(None)
            if self._ssl_context is None:
                return TcpConnection(client), addr

            try:
                ssl_client = self._ssl_context.wrap_socket(
                    client, server_side=True, do_handshake_on_connect=False
                )
            except OSError as e:
                logger.warning("TLS setup for %s:%s failed: %s", addr[0], addr[1], e)
                client.close()
                continue
            connection = TlsConnection(
                ssl_client, handshaken=False, handshake_timeout=self._handshake_timeout
            )
            return connection, addr

    def close(self) -> None:
        if self._closed:
            raise ConnectionClosed("listener already closed")
        self._closed = True
        with suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)
        self._sock.close()
        logger.info("Listener closed")


def create_listener(
    bind_address: str,
    *,
    require_secure_transport: bool = False,
    tls: ServerTLSOptions | None = None,
    backlog: int = 5,
    poll_interval: float = 0.2,
    handshake_timeout: float = 10.0,
) -> Listener:
    """
    Bind and listen on ``bind_address`` (``host:port``).

    Raises:
        SecureTransportUnavailable: secure transport required without
            certificate material
        BindFailure: the address could not be bound or the certificate
            could not be loaded
    """
    if require_secure_transport and tls is None:
        raise SecureTransportUnavailable(
            "secure server mode requires a certificate (--cert)"
        )

    try:
        host, port = split_address(bind_address)
    except ValueError as e:
        raise BindFailure(bind_address, e) from e

    ssl_context = None
    if tls is not None:
        try:
            ssl_context = build_server_context(tls)
        except OSError as e:
            raise BindFailure(bind_address, e) from e

    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(backlog)
    except OSError as e:
        sock.close()
        raise BindFailure(bind_address, e) from e

    listener = Listener(
        sock, ssl_context, poll_interval=poll_interval, handshake_timeout=handshake_timeout
    )
    bound_host, bound_port = listener.address
    logger.info(
        "Listening on %s:%s (%s)", bound_host, bound_port, "tls" if ssl_context else "tcp"
    )
    return listener
