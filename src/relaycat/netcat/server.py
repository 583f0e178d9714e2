"""
Server role: accept connections and relay each one independently.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from functools import partial
from typing import Awaitable, BinaryIO, Callable

from relaycat.exceptions import AcceptFailure, ConnectionClosed, NotInitialized
from relaycat.netcat.relay import DuplexRelay, Tap, run_in_thread
from relaycat.netcat.transport import Connection, Listener

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, BinaryIO, BinaryIO], Awaitable[None]]


def _close_accepted(accepted: tuple[Connection, tuple[str, int]]) -> None:
    """Release a connection accepted after the accept loop was cancelled."""
    connection, peer = accepted
    logger.debug("Dropping connection from %s accepted after shutdown", peer)
    with suppress(ConnectionClosed):
        connection.close()


@dataclass
class RelayOutcome:
    """Terminal outcome of one per-connection relay."""
    peer: tuple[str, int] | None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def relay_handler(
    connection: Connection,
    input: BinaryIO,
    output: BinaryIO,
    *,
    tap: Tap | None = None,
) -> None:
    """Default per-connection handler: relay the connection against the local streams."""
    await DuplexRelay(connection, input, output, tap=tap).start()


class ConnectionAcceptor:
    """
    Accept loop for the server role.

    Every accepted connection gets its own task running ``handler``; the loop
    never waits for a handler. Handler failures are reported to ``on_outcome``
    (or logged) and never stop acceptance. A TLS handshake runs inside the
    connection's task, so a stalled or failed handshake only affects that
    connection's outcome.

    All relays share ``input`` and ``output``. Output from concurrent
    connections is interleaved at chunk boundaries.

    Usage:
        listener = create_listener("0.0.0.0:8080")
        acceptor = ConnectionAcceptor(listener, sys.stdin.buffer, sys.stdout.buffer)
        try:
            await acceptor.start()
        except AcceptFailure as e:
            ...
    """

    def __init__(
        self,
        listener: Listener | None,
        input: BinaryIO,
        output: BinaryIO,
        *,
        handler: Handler | None = None,
        on_outcome: Callable[[RelayOutcome], None] | None = None,
        tap: Tap | None = None,
    ):
        self.listener = listener
        self.input = input
        self.output = output
        self.handler = handler or partial(relay_handler, tap=tap)
        self.on_outcome = on_outcome
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_connections(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        """
        Accept connections until the listener fails or is closed.

        Raises:
            NotInitialized: there is no listener
            AcceptFailure: accepting stopped; ``closed`` is set when the
                listener was closed through ``close()``
        """
        if self.listener is None:
            raise NotInitialized()

        while True:
            try:
                connection, peer = await run_in_thread(
                    self.listener.accept, name="acceptor", discard=_close_accepted
                )
            except ConnectionClosed as e:
                raise AcceptFailure(e, closed=True) from e
            except OSError as e:
                logger.error("Accept failed: %s", e)
                raise AcceptFailure(e) from e

            task = asyncio.create_task(
                self._serve(connection, peer), name=f"relay-{peer[0]}:{peer[1]}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _serve(self, connection: Connection, peer: tuple[str, int]) -> None:
        error = None
        try:
            handshake = getattr(connection, "handshake", None)
            if handshake is not None:
                await run_in_thread(handshake, name=f"handshake-{peer[0]}:{peer[1]}")
            await self.handler(connection, self.input, self.output)
        except Exception as e:
            error = e
            logger.warning("Relay with %s:%s failed: %s", peer[0], peer[1], e)
        else:
            logger.info("Relay with %s:%s finished", peer[0], peer[1])
        finally:
            if not connection.closed:
                with suppress(ConnectionClosed):
                    connection.close()

        self._report(RelayOutcome(peer, error))

    def _report(self, outcome: RelayOutcome) -> None:
        if self.on_outcome is None:
            return
        try:
            self.on_outcome(outcome)
        except Exception:
            logger.exception("Outcome callback failed for %s", outcome.peer)

    async def wait_idle(self) -> None:
        """Wait for every in-flight connection handler to finish."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def close(self) -> None:
        """
        Close the listener, ending a running ``start``.

        Raises:
            NotInitialized: there is no listener
            ConnectionClosed: the listener was already closed
        """
        if self.listener is None:
            raise NotInitialized()
        self.listener.close()
