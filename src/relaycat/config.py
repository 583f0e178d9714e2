"""
Configuration values for relaycat.

Built once by the command line layer and passed read-only to the core.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class TLSOptions:
    """Client-side TLS settings."""

    server_name: str | None = None  # Override the dialed host for verification/SNI
    ca_file: str | None = None      # Path to CA bundle
    cert_file: str | None = None    # Client certificate
    key_file: str | None = None     # Client key
    verify: bool = True             # Verify server certificate


@dataclass(frozen=True)
class ServerTLSOptions:
    """Certificate material for a TLS-terminating listener."""

    cert_file: str
    key_file: str | None = None


@dataclass(frozen=True)
class ClientConfig:
    """Client role: dial ``remote_address`` (``host:port``)."""

    remote_address: str
    require_secure_transport: bool = False
    tls: TLSOptions = field(default_factory=TLSOptions)
    connect_timeout: float | None = 10.0


@dataclass(frozen=True)
class ServerConfig:
    """Server role: listen on ``bind_host:port``."""

    port: int
    bind_host: str = "0.0.0.0"
    require_secure_transport: bool = False
    tls: ServerTLSOptions | None = None
    backlog: int = 5

    @property
    def bind_address(self) -> str:
        if ":" in self.bind_host:
            return f"[{self.bind_host}]:{self.port}"
        return f"{self.bind_host}:{self.port}"
