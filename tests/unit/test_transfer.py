"""Tests for the rsync transport, the confirmation listener and the coordinator."""

import socket
import struct
import subprocess

import pytest

from tsretire.core.errors import ConfirmationError, ExitCode, TransferError
from tsretire.core.interfaces import ConfirmationOutcome, ConfirmationResult
from tsretire.retirement import transfer as transfer_module
from tsretire.retirement.transfer import (
    RsyncTransport,
    TcpConfirmationChannel,
    TransferCoordinator,
)


def send(address, payload: bytes):
    """Connect to the listener, send ``payload`` and close."""
    with socket.create_connection(address, timeout=5) as conn:
        if payload:
            conn.sendall(payload)


def reset(address):
    """Connect to the listener and abort the connection with a TCP reset."""
    conn = socket.create_connection(address, timeout=5)
    conn.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
    conn.close()


@pytest.fixture
def channel():
    listener = TcpConfirmationChannel("127.0.0.1", 0, archive_host="127.0.0.1")
    listener.open()
    yield listener
    listener.close()


class TestRsyncTransport:
    """Tests for pushing files with rsync."""

    def test_target_url(self):
        transport = RsyncTransport("nas.srv.land-da", "ohdb_retired")
        assert transport.target == "rsync://nas.srv.land-da:/ohdb_retired/"

    def test_build_command(self, tmp_path):
        transport = RsyncTransport("nas", "retired", options=["--timeout=30"])
        files = [tmp_path / "a.csv.gz", tmp_path / "b.csv.gz"]

        assert transport.build_command(files) == [
            "rsync",
            "--timeout=30",
            str(files[0]),
            str(files[1]),
            "rsync://nas:/retired/",
        ]

    def test_push_success(self, tmp_path, monkeypatch):
        calls = []

        def fake_run(command, **kwargs):
            calls.append((command, kwargs))
            return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

        monkeypatch.setattr(transfer_module.subprocess, "run", fake_run)
        RsyncTransport("nas", "retired", timeout_seconds=5).push([tmp_path / "a.csv.gz"])

        command, kwargs = calls[0]
        assert command[-1] == "rsync://nas:/retired/"
        assert kwargs["timeout"] == 5

    def test_push_nothing_is_noop(self, monkeypatch):
        def fake_run(command, **kwargs):
            raise AssertionError("rsync must not be started")

        monkeypatch.setattr(transfer_module.subprocess, "run", fake_run)
        RsyncTransport("nas", "retired").push([])

    def test_non_zero_exit_raises_transfer_error(self, tmp_path, monkeypatch):
        def fake_run(command, **kwargs):
            return subprocess.CompletedProcess(
                command, 10, stdout="", stderr="connection refused\n"
            )

        monkeypatch.setattr(transfer_module.subprocess, "run", fake_run)
        with pytest.raises(TransferError) as exc_info:
            RsyncTransport("nas", "retired").push([tmp_path / "a.csv.gz"])

        error = exc_info.value
        assert error.exit_code == ExitCode.TRANSFER_FAILED
        assert error.target == "rsync://nas:/retired/"
        assert "exited with 10: connection refused" in error.message

    def test_timeout_raises_transfer_error(self, tmp_path, monkeypatch):
        def fake_run(command, **kwargs):
            raise subprocess.TimeoutExpired(command, kwargs["timeout"])

        monkeypatch.setattr(transfer_module.subprocess, "run", fake_run)
        with pytest.raises(TransferError, match="timed out"):
            RsyncTransport("nas", "retired", timeout_seconds=1).push([tmp_path / "a.csv.gz"])

    def test_missing_binary_raises_transfer_error(self, tmp_path):
        transport = RsyncTransport("nas", "retired", binary=str(tmp_path / "no-rsync"))
        with pytest.raises(TransferError, match="not found"):
            transport.push([tmp_path / "a.csv.gz"])


class TestTcpConfirmationChannel:
    """Tests for the acknowledgement listener on a loopback socket."""

    def test_commit_token(self, channel):
        send(channel.address, b"COMMIT\n")
        result = channel.wait(5)

        assert result.outcome is ConfirmationOutcome.COMMITTED
        assert result.is_committed

    def test_any_other_text_is_rejection(self, channel):
        send(channel.address, b"disk full\n")
        result = channel.wait(5)

        assert result == ConfirmationResult.rejected("disk full")

    def test_message_sent_before_waiting_is_not_lost(self, channel):
        # The archive may answer while the push is still being reported
        send(channel.address, b"COMMIT")
        assert channel.wait(5).is_committed

    def test_no_message_times_out(self, channel):
        result = channel.wait(0.2)
        assert result.outcome is ConfirmationOutcome.TIMED_OUT
        assert result.message is None

    def test_empty_connection_is_ignored(self, channel):
        send(channel.address, b"")
        send(channel.address, b"COMMIT")
        assert channel.wait(5).is_committed

    def test_reset_connection_is_ignored(self, channel):
        reset(channel.address)
        send(channel.address, b"COMMIT")
        assert channel.wait(5).is_committed

    def test_reset_connection_alone_times_out(self, channel):
        reset(channel.address)
        assert channel.wait(0.3).outcome is ConfirmationOutcome.TIMED_OUT

    def test_peer_other_than_archive_is_refused(self):
        listener = TcpConfirmationChannel("127.0.0.1", 0, archive_host="127.0.0.2")
        listener.open()
        try:
            send(listener.address, b"COMMIT")
            assert listener.wait(0.3).outcome is ConfirmationOutcome.TIMED_OUT
        finally:
            listener.close()

    def test_unrestricted_listener_accepts_any_peer(self):
        listener = TcpConfirmationChannel(
            "127.0.0.1", 0, archive_host="127.0.0.2", restrict_peer=False
        )
        with listener:
            send(listener.address, b"COMMIT")
            assert listener.wait(5).is_committed

    def test_custom_commit_token(self):
        listener = TcpConfirmationChannel(
            "127.0.0.1", 0, archive_host="127.0.0.1", commit_token="OK"
        )
        with listener:
            send(listener.address, b"COMMIT")
            assert listener.wait(5) == ConfirmationResult.rejected("COMMIT")

    def test_long_message_is_truncated(self):
        listener = TcpConfirmationChannel(
            "127.0.0.1", 0, archive_host="127.0.0.1", max_message_bytes=64
        )
        with listener:
            send(listener.address, b"x" * 500)
            result = listener.wait(5)
        assert result.message == "x" * 64

    def test_wait_without_open_raises(self):
        listener = TcpConfirmationChannel("127.0.0.1", 0, archive_host="127.0.0.1")
        with pytest.raises(ConfirmationError):
            listener.wait(0.1)

    def test_port_in_use_raises_confirmation_error(self, channel):
        _, port = channel.address
        other = TcpConfirmationChannel("127.0.0.1", port, archive_host="127.0.0.1")

        with pytest.raises(ConfirmationError) as exc_info:
            other.open()
        assert exc_info.value.exit_code == ExitCode.CONFIRMATION_UNAVAILABLE

    def test_unresolvable_archive_host(self, monkeypatch):
        def fail(*args, **kwargs):
            raise socket.gaierror("Name or service not known")

        monkeypatch.setattr(transfer_module.socket, "getaddrinfo", fail)
        listener = TcpConfirmationChannel("127.0.0.1", 0, archive_host="archive.invalid")
        with pytest.raises(ConfirmationError, match="resolve"):
            listener.open()

    def test_close_is_idempotent(self, channel):
        channel.close()
        channel.close()


class TestTransferCoordinator:
    """Tests for compress, push and acknowledgement handling."""

    def test_compress_push_and_confirm(self, tmp_path, fake_transport, fake_channel):
        path = tmp_path / "append.M1.2024-09.csv"
        path.write_text("content\n", encoding="utf-8")
        transport = fake_transport()
        channel = fake_channel(ConfirmationResult.rejected("disk full"))

        coordinator = TransferCoordinator(transport, channel, confirmation_timeout=7)
        artifacts = coordinator.compress([path])
        with coordinator:
            result = coordinator.push(artifacts)
            confirmation = coordinator.await_confirmation()

        assert result.delivered
        assert result.files == ("append.M1.2024-09.csv.gz",)
        assert result.target == transport.target
        assert confirmation.message == "disk full"
        assert channel.events == ["open", "wait", "close"]
        assert channel.timeouts == [7]

    def test_channel_closed_when_push_fails(self, tmp_path, fake_transport, fake_channel):
        transport = fake_transport(TransferError("rsync://archive.test:/retired/", "refused"))
        channel = fake_channel()

        with pytest.raises(TransferError):
            with TransferCoordinator(transport, channel) as coordinator:
                coordinator.push([tmp_path / "a.csv.gz"])
        assert channel.events == ["open", "close"]
