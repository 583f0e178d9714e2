"""Shared fakes for relaycat tests.

FakeConnection and FakeListener are thread-safe because the relay and the
acceptor drive them from worker threads.
"""

from __future__ import annotations

import datetime
import ipaddress
import logging
import queue
import threading
from dataclasses import dataclass

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from relaycat.exceptions import ConnectionClosed


class FakeConnection:
    """In-memory connection with separate incoming and outgoing buffers.

    ``incoming`` is what the remote peer sends; ``outgoing`` collects what the
    relay writes. With ``hold_open=True`` reads block until ``feed``/``finish``
    or ``close`` is called, like a live peer that has not hung up.
    """

    def __init__(self, incoming: bytes = b"", *, hold_open: bool = False) -> None:
        self._incoming = bytearray(incoming)
        self.outgoing = bytearray()
        self._eof = not hold_open
        self._closed = False
        self._cond = threading.Condition()
        self.reads = 0
        self.writes = 0
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, data: bytes) -> None:
        with self._cond:
            self._incoming += data
            self._cond.notify_all()

    def finish(self) -> None:
        """Simulate the peer closing its side."""
        with self._cond:
            self._eof = True
            self._cond.notify_all()

    def read(self, size: int = 32 * 1024) -> bytes:
        with self._cond:
            self.reads += 1
            while True:
                if self._closed:
                    raise ConnectionClosed("connection is closed")
                if self._incoming:
                    chunk = bytes(self._incoming[:size])
                    del self._incoming[:size]
                    return chunk
                if self._eof:
                    return b""
                self._cond.wait()

    def write(self, data: bytes) -> int:
        with self._cond:
            self.writes += 1
            if self._closed:
                raise ConnectionClosed("connection is closed")
            self.outgoing += data
            self._cond.notify_all()
            return len(data)

    def close(self) -> None:
        with self._cond:
            self.close_calls += 1
            if self._closed:
                raise ConnectionClosed("connection already closed")
            self._closed = True
            self._cond.notify_all()


class FakeListener:
    """Listener handing out queued connections until closed."""

    def __init__(self) -> None:
        self._queue: queue.Queue = queue.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, connection: FakeConnection, peer: tuple[str, int] = ("127.0.0.1", 40000)) -> None:
        self._queue.put((connection, peer))

    def fail(self, error: BaseException) -> None:
        """Make the next accept raise ``error``."""
        self._queue.put(error)

    def accept(self):
        item = self._queue.get()
        if item is None:
            raise ConnectionClosed("listener is closed")
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        if self._closed:
            raise ConnectionClosed("listener already closed")
        self._closed = True
        self._queue.put(None)


@pytest.fixture
def fake_listener() -> FakeListener:
    return FakeListener()


@pytest.fixture(autouse=True)
def reset_package_logger():
    """The CLI attaches handlers to the runner's stderr; drop them after each test."""
    yield
    logger = logging.getLogger("relaycat")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# TLS material
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TLSMaterial:
    """PEM files for a throwaway CA and a server certificate it issued.

    The server certificate is valid for ``localhost``, ``relay.test`` and
    ``127.0.0.1``.
    """
    ca_file: str
    cert_file: str
    key_file: str


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _key_usage(*, ca: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=ca,
        crl_sign=ca,
        encipher_only=False,
        decipher_only=False,
    )


@pytest.fixture(scope="session")
def tls_material(tmp_path_factory) -> TLSMaterial:
    directory = tmp_path_factory.mktemp("tls")
    now = datetime.datetime.now(datetime.timezone.utc)
    not_before = now - datetime.timedelta(days=1)
    not_after = now + datetime.timedelta(days=30)

    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca_name = _name("relaycat test CA")
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(ca_name)
        .issuer_name(ca_name)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(_key_usage(ca=True), critical=True)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key()), critical=False
        )
        .sign(ca_key, hashes.SHA256())
    )

    server_key = ec.generate_private_key(ec.SECP256R1())
    server_cert = (
        x509.CertificateBuilder()
        .subject_name(_name("localhost"))
        .issuer_name(ca_name)
        .public_key(server_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(_key_usage(ca=False), critical=True)
        .add_extension(
            x509.SubjectAlternativeName([
                x509.DNSName("localhost"),
                x509.DNSName("relay.test"),
                x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
            ]),
            critical=False,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(server_key.public_key()), critical=False
        )
        .sign(ca_key, hashes.SHA256())
    )

    ca_file = directory / "ca.pem"
    cert_file = directory / "server.pem"
    key_file = directory / "server.key"
    ca_file.write_bytes(ca_cert.public_bytes(serialization.Encoding.PEM))
    cert_file.write_bytes(server_cert.public_bytes(serialization.Encoding.PEM))
    key_file.write_bytes(
        server_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return TLSMaterial(str(ca_file), str(cert_file), str(key_file))
