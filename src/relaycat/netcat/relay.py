"""
Duplex relay between a local stream pair and a transport connection.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import asyncio
import logging
import threading
from contextlib import suppress
from enum import Enum
from typing import Any, BinaryIO, Callable

from relaycat.exceptions import (
    ConnectionClosed,
    NetcatError,
    NotConnected,
    ReadFailure,
    RelayCancelled,
    WriteFailure,
)
from relaycat.netcat.transport import Connection

logger = logging.getLogger(__name__)


class Direction(str, Enum):
    """Copy direction within a relay."""
    OUTBOUND = "outbound"  # local input -> connection
    INBOUND = "inbound"    # connection -> local output


class DirectionState(str, Enum):
    IDLE = "idle"
    COPYING = "copying"
    EOF = "eof"
    ERRORED = "errored"


class RelayState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


Tap = Callable[[Direction, bytes], None]


def run_in_thread(
    func: Callable[..., Any],
    *args: Any,
    name: str,
    discard: Callable[[Any], None] | None = None,
) -> asyncio.Future:
    """
    Run a blocking call on a daemon thread and return a future for its result.

    Daemon threads are used because a thread blocked on stdin can never be
    interrupted and must not hold up interpreter exit.

    ``discard`` receives a successful result that arrives after the future
    was cancelled, so resources it owns can be released.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def resolve(result: Any, error: BaseException | None) -> None:
        if future.done():
            if error is None and discard is not None:
                discard(result)
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def runner() -> None:
        try:
            result = func(*args)
        except BaseException as e:
            outcome = (None, e)
        else:
            outcome = (result, None)
        # The loop may already be closed if the process is shutting down
        with suppress(RuntimeError):
            loop.call_soon_threadsafe(resolve, *outcome)

    threading.Thread(target=runner, name=name, daemon=True).start()
    return future


def _discard_result(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


def _write_all(write: Callable[[Any], int | None], data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = write(view)
        if written is None:
            written = len(view)
        if written <= 0:
            raise OSError("short write")
        view = view[written:]


class DuplexRelay:
    """
    Copies bytes both ways between a local stream pair and a connection.

    The local streams are borrowed: the relay reads and writes them but never
    closes them. The connection is closed only through ``close()`` (or when
    the relay is cancelled).

    Usage:
        connection = create_client_connection("example.com:7", False)
        relay = DuplexRelay(connection, sys.stdin.buffer, sys.stdout.buffer)
        try:
            await relay.start()
        finally:
            relay.close()
    """

    def __init__(
        self,
        connection: Connection | None,
        input: BinaryIO,
        output: BinaryIO,
        *,
        chunk_size: int = 32 * 1024,
        tap: Tap | None = None,
    ):
        self.connection = connection
        self.input = input
        self.output = output
        self.chunk_size = chunk_size
        self._tap = tap

        self.state = RelayState.IDLE
        self.directions = {
            Direction.OUTBOUND: DirectionState.IDLE,
            Direction.INBOUND: DirectionState.IDLE,
        }
        self.bytes_sent = 0
        self.bytes_received = 0

    def _copy(self, direction: Direction) -> int:
        """Blocking copy loop for one direction; returns bytes copied."""
        if direction is Direction.OUTBOUND:
            read = getattr(self.input, "read1", None) or self.input.read
            write = self.connection.write
            flush = None
        else:
            read = self.connection.read
            write = self.output.write
            flush = getattr(self.output, "flush", None)

        self.directions[direction] = DirectionState.COPYING
        total = 0
        try:
            while True:
                chunk = read(self.chunk_size)
                if not chunk:
                    break
                if self._tap is not None:
                    self._tap(direction, chunk)
                _write_all(write, chunk)
                if flush is not None:
                    flush()
                total += len(chunk)
                if direction is Direction.OUTBOUND:
                    self.bytes_sent += len(chunk)
                else:
                    self.bytes_received += len(chunk)
        except BaseException:
            self.directions[direction] = DirectionState.ERRORED
            raise

        self.directions[direction] = DirectionState.EOF
        logger.debug("%s copy reached end of stream after %d bytes", direction.value, total)
        return total

    async def start(self) -> None:
        """
        Relay until both directions are finished.

        Returns only after the inbound direction (connection to output) has
        finished, even when the outbound direction failed first.

        Raises:
            NotConnected: no connection was supplied; no I/O is performed
            WriteFailure: copying input to the connection failed
            ReadFailure: copying the connection to output failed
            RelayCancelled: the relay was cancelled; the connection is closed
            NetcatError: the relay was already started
        """
        if self.connection is None:
            raise NotConnected()
        if self.state is not RelayState.IDLE:
            raise NetcatError(f"relay already {self.state.value}")

        self.state = RelayState.RUNNING
        inbound = run_in_thread(self._copy, Direction.INBOUND, name="relay-inbound")
        outbound = run_in_thread(self._copy, Direction.OUTBOUND, name="relay-outbound")

        try:
            try:
                await asyncio.shield(outbound)
            except Exception as e:
                logger.debug("Outbound copy failed: %s", e)
                await asyncio.wait([inbound])
                _discard_result(inbound)
                self.state = RelayState.FAILED
                raise WriteFailure(e) from e

            try:
                await asyncio.shield(inbound)
            except Exception as e:
                logger.debug("Inbound copy failed: %s", e)
                self.state = RelayState.FAILED
                raise ReadFailure(e) from e

        except asyncio.CancelledError:
            self.state = RelayState.CANCELLED
            outbound.add_done_callback(_discard_result)
            if not self.connection.closed:
                with suppress(ConnectionClosed):
                    self.connection.close()
            await asyncio.wait([inbound])
            _discard_result(inbound)
            raise RelayCancelled() from None

        self.state = RelayState.SUCCEEDED
        logger.info(
            "Relay finished: %d bytes sent, %d bytes received",
            self.bytes_sent, self.bytes_received,
        )

    def close(self) -> None:
        """Close the connection owned by this relay."""
        if self.connection is None:
            raise NotConnected()
        self.connection.close()
