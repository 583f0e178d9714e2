"""
Exceptions raised by the relaycat core.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""


class NetcatError(Exception):
    """Base exception for relaycat errors."""
    pass


class ConnectionClosed(NetcatError):
    """Operation attempted on a connection or listener that is closed."""
    pass


class NotConnected(NetcatError):
    """Relay started without an established connection."""

    def __init__(self, message: str = "connect to the target before starting the relay"):
        super().__init__(message)


class DialFailure(NetcatError):
    """Could not connect to the remote address or complete the TLS handshake."""

    def __init__(self, address: str, cause: BaseException):
        self.address = address
        self.cause = cause
        super().__init__(f"failed to connect to {address}: {cause}")


class BindFailure(NetcatError):
    """Could not bind or listen on the requested address."""

    def __init__(self, address: str, cause: BaseException):
        self.address = address
        self.cause = cause
        super().__init__(f"failed to listen on {address}: {cause}")


class SecureTransportUnavailable(NetcatError):
    """Secure transport was requested but cannot be provided."""
    pass


class RelayFailure(NetcatError):
    """Base class for terminal relay outcomes other than success."""

    def __init__(self, message: str, cause: BaseException | None = None):
        self.cause = cause
        super().__init__(message)


class WriteFailure(RelayFailure):
    """Copying local input to the connection failed."""

    def __init__(self, cause: BaseException):
        super().__init__(f"error writing to the connection: {cause}", cause)


class ReadFailure(RelayFailure):
    """Copying the connection to local output failed."""

    def __init__(self, cause: BaseException):
        super().__init__(f"error reading from the connection: {cause}", cause)


class RelayCancelled(RelayFailure):
    """The relay was cancelled before both directions finished."""

    def __init__(self):
        super().__init__("relay cancelled")


class NotInitialized(NetcatError):
    """Server operation invoked without a listener."""

    def __init__(self, message: str = "listener not initialized"):
        super().__init__(message)


class AcceptFailure(NetcatError):
    """The accept loop stopped because the listener failed or was closed."""

    def __init__(self, cause: BaseException, closed: bool = False):
        self.cause = cause
        self.closed = closed
        super().__init__(f"accept failed: {cause}")
