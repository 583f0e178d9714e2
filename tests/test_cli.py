"""Tests for relaycat.netcat.cli — argument validation and end-to-end client runs."""

from __future__ import annotations

import socket
import threading

import pytest
from click.testing import CliRunner

from relaycat.exceptions import RelayCancelled, WriteFailure
from relaycat.netcat import cli
from relaycat.netcat.cli import main, parse_port, validate_remote_address


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestParsing:

    @pytest.mark.parametrize("value, expected", [("1", 1), ("8080", 8080), ("65535", 65535)])
    def test_valid_ports(self, value, expected):
        assert parse_port(value) == expected

    @pytest.mark.parametrize("value", ["0", "65536", "-1", "http", ""])
    def test_invalid_ports(self, value):
        assert parse_port(value) is None

    @pytest.mark.parametrize("address", ["example.com:80", "127.0.0.1:1", "[::1]:443"])
    def test_valid_addresses(self, address):
        assert validate_remote_address(address) is None

    @pytest.mark.parametrize(
        "address, fragment",
        [
            ("example.com", "HOST:PORT"),
            (":80", "host is empty"),
            ("example.com:0", "invalid port"),
            ("example.com:abc", "invalid port"),
        ],
    )
    def test_invalid_addresses(self, address, fragment):
        assert fragment in validate_remote_address(address)


class TestUsage:

    def test_help_exits_zero(self, runner):
        result = runner.invoke(main, ["-h"])
        assert result.exit_code == 0
        assert "Usage:" in result.output
        assert "-tls" in result.output

    def test_no_arguments(self, runner):
        result = runner.invoke(main, [])
        assert result.exit_code == 1

    def test_too_many_arguments(self, runner):
        result = runner.invoke(main, ["a:1", "b:2"])
        assert result.exit_code == 1

    @pytest.mark.parametrize("address", ["example.com", ":80", "example.com:99999"])
    def test_bad_client_address(self, runner, address):
        result = runner.invoke(main, [address])
        assert result.exit_code == 1

    @pytest.mark.parametrize("port", ["abc", "0", "70000"])
    def test_bad_listen_port(self, runner, port):
        result = runner.invoke(main, ["-l", port])
        assert result.exit_code == 1

    def test_listen_tls_without_certificate(self, runner):
        result = runner.invoke(main, ["-l", "-tls", str(_unused_port())])
        assert result.exit_code == 1
        assert "certificate" in result.output


class TestClientRuns:

    def test_connection_refused(self, runner):
        result = runner.invoke(main, [f"127.0.0.1:{_unused_port()}", "-w", "2"])
        assert result.exit_code == 1
        assert "failed to connect" in result.output

    def test_relays_stdin_and_stdout(self, runner):
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        received = []

        def serve():
            conn, _ = server.accept()
            with conn:
                received.append(conn.recv(1024))
                conn.sendall(b"world")

        thread = threading.Thread(target=serve, daemon=True)
        thread.start()
        try:
            port = server.getsockname()[1]
            result = runner.invoke(main, [f"127.0.0.1:{port}"], input=b"hello")
        finally:
            thread.join(timeout=2)
            server.close()

        assert result.exit_code == 0
        assert b"world" in result.stdout_bytes
        assert received == [b"hello"]


class TestExitCodes:

    def test_cancelled_client_relay_exits_130(self, runner, monkeypatch):
        async def cancelled(config, input, output, tap=None):
            raise RelayCancelled()

        monkeypatch.setattr(cli, "run_client", cancelled)

        result = runner.invoke(main, ["127.0.0.1:9"])

        assert result.exit_code == 130
        assert "Error" not in result.output

    def test_relay_failure_exits_1(self, runner, monkeypatch):
        async def failed(config, input, output, tap=None):
            raise WriteFailure(OSError("broken pipe"))

        monkeypatch.setattr(cli, "run_client", failed)

        result = runner.invoke(main, ["127.0.0.1:9"])

        assert result.exit_code == 1
        assert "error writing to the connection" in result.output

    def test_uses_process_binary_streams(self, runner, monkeypatch):
        seen = {}

        async def record(config, input, output, tap=None):
            seen["input"] = input.read()
            output.write(b"reply")

        monkeypatch.setattr(cli, "run_client", record)

        result = runner.invoke(main, ["127.0.0.1:9"], input=b"request")

        assert result.exit_code == 0
        assert seen["input"] == b"request"
        assert b"reply" in result.stdout_bytes
