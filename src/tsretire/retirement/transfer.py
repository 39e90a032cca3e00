"""Transfer of append-files to the archive and confirmation rendezvous.

The archive host runs an rsync daemon with a share (module) receiving the
compressed append-files. After each rsync session it appends the files to its
measurement archives and reports back over TCP:

- the literal text ``COMMIT``: all append-files were processed without errors
- any other text: an error message

Protocol as seen from this side:

    1. compress append-files            (failure: abort, nothing sent)
    2. open the confirmation listener   (failure: abort, nothing sent)
    3. rsync files to the share         (failure: abort, nothing deleted)
    4. wait for the acknowledgement     (COMMITTED | REJECTED | TIMED_OUT)

The listener is opened before the push, so an acknowledgement sent right
after the rsync session is queued by the kernel and never missed.
"""

from __future__ import annotations

import socket
import subprocess
import time
from collections.abc import Sequence
from pathlib import Path
from types import TracebackType

from tsretire.core.config import ArchiveConfig, ConfirmationConfig
from tsretire.core.errors import ConfirmationError, TransferError
from tsretire.core.interfaces import (
    ArchiveTransport,
    ConfirmationChannel,
    ConfirmationResult,
    TransferResult,
)
from tsretire.core.logging import get_logger
from tsretire.storage.compression import compress_files
from tsretire.utils import metrics

logger = get_logger(__name__)

_IPV4_MAPPED_PREFIX = "::ffff:"


class RsyncTransport(ArchiveTransport):
    """Pushes files to an rsync daemon module.

    Example:
        >>> transport = RsyncTransport("nas.srv.land-da", "ohdb_retired")
        >>> transport.push([Path("append.W_WBase_Light.2024-09.csv.gz")])
    """

    def __init__(
        self,
        host: str,
        module: str,
        binary: str = "rsync",
        options: Sequence[str] = (),
        timeout_seconds: float = 1800.0,
    ):
        self.host = host
        self.module = module
        self.binary = binary
        self.options = list(options)
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config: ArchiveConfig) -> RsyncTransport:
        return cls(
            host=config.host,
            module=config.rsync_module,
            binary=config.rsync_binary,
            options=config.rsync_options,
            timeout_seconds=config.transfer_timeout_seconds,
        )

    @property
    def target(self) -> str:
        return f"rsync://{self.host}:/{self.module}/"

    def build_command(self, files: Sequence[Path]) -> list[str]:
        return [self.binary, *self.options, *(str(f) for f in files), self.target]

    def push(self, files: Sequence[Path]) -> None:
        """Copy ``files`` to the share.

        Raises:
            TransferError: On a missing binary, a timeout or a non-zero exit
        """
        if not files:
            return

        command = self.build_command(files)
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as e:
            raise TransferError(self.target, f"{self.binary} not found") from e
        except subprocess.TimeoutExpired as e:
            raise TransferError(
                self.target, f"rsync timed out after {self.timeout_seconds}s"
            ) from e
        except OSError as e:
            raise TransferError(self.target, f"rsync could not be started: {e}") from e

        if completed.returncode != 0:
            raise TransferError(
                self.target,
                f"rsync exited with {completed.returncode}: {completed.stderr.strip()}",
            )


def _normalize_address(address: str) -> str:
    if address.startswith(_IPV4_MAPPED_PREFIX):
        return address[len(_IPV4_MAPPED_PREFIX) :]
    return address


class TcpConfirmationChannel(ConfirmationChannel):
    """Listens on a TCP port for one acknowledgement from the archive host.

    Attributes:
        bind_host: Source-side address to bind to
        port: Port to listen on (0 picks a free port, useful for tests)
        archive_host: Host name expected as peer
        commit_token: Text of a positive acknowledgement
        restrict_peer: Ignore connections from other peers
    """

    def __init__(
        self,
        bind_host: str,
        port: int,
        archive_host: str,
        commit_token: str = "COMMIT",
        restrict_peer: bool = True,
        max_message_bytes: int = 65536,
    ):
        self.bind_host = bind_host
        self.port = port
        self.archive_host = archive_host
        self.commit_token = commit_token
        self.restrict_peer = restrict_peer
        self.max_message_bytes = max_message_bytes
        self._server: socket.socket | None = None
        self._allowed_peers: set[str] = set()

    @classmethod
    def from_config(cls, config: ConfirmationConfig, archive_host: str) -> TcpConfirmationChannel:
        return cls(
            bind_host=config.bind_host,
            port=config.port,
            archive_host=archive_host,
            commit_token=config.commit_token,
            restrict_peer=config.restrict_peer,
            max_message_bytes=config.max_message_bytes,
        )

    @property
    def address(self) -> tuple[str, int]:
        """Address actually bound (after ``open()``)."""
        if self._server is None:
            return self.bind_host, self.port
        host, port = self._server.getsockname()[:2]
        return host, port

    def open(self) -> None:
        if self._server is not None:
            return

        if self.restrict_peer:
            try:
                infos = socket.getaddrinfo(self.archive_host, None, proto=socket.IPPROTO_TCP)
            except OSError as e:
                raise ConfirmationError(
                    f"Can't resolve archive host {self.archive_host}: {e}"
                ) from e
            self._allowed_peers = {_normalize_address(info[4][0]) for info in infos}

        try:
            self._server = socket.create_server((self.bind_host, self.port))
        except OSError as e:
            raise ConfirmationError(
                f"Can't listen on {self.bind_host}:{self.port}: {e}"
            ) from e

        logger.debug("confirmation_listener_opened", address=f"{self.address[0]}:{self.address[1]}")

    def close(self) -> None:
        if self._server is not None:
            self._server.close()
            self._server = None

    def wait(self, timeout: float) -> ConfirmationResult:
        """Wait for the first non-empty message from the archive host.

        Returns:
            COMMITTED for the commit token, REJECTED with the text otherwise,
            TIMED_OUT when no message arrived within ``timeout`` seconds
        """
        if self._server is None:
            raise ConfirmationError("Confirmation listener is not open")

        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return ConfirmationResult.timed_out()

            self._server.settimeout(remaining)
            try:
                conn, peer = self._server.accept()
            except TimeoutError:
                return ConfirmationResult.timed_out()
            except OSError as e:
                # e.g. ECONNABORTED: the peer gave up before we accepted
                logger.warning("confirmation_accept_failed", error=str(e))
                continue

            with conn:
                peer_host = _normalize_address(peer[0])
                if self.restrict_peer and peer_host not in self._allowed_peers:
                    logger.warning("confirmation_peer_refused", peer=peer_host)
                    continue
                try:
                    message = self._read_message(conn, deadline)
                except OSError as e:
                    logger.warning(
                        "confirmation_connection_failed", peer=peer_host, error=str(e)
                    )
                    continue

            if not message:
                logger.warning("confirmation_empty_message", peer=peer_host)
                continue
            if message == self.commit_token:
                return ConfirmationResult.committed()
            return ConfirmationResult.rejected(message)

    def _read_message(self, conn: socket.socket, deadline: float) -> str:
        """Read until EOF, the size cap or the deadline.

        Raises:
            OSError: If the connection breaks (e.g. reset by the peer)
        """
        chunks: list[bytes] = []
        size = 0
        while size < self.max_message_bytes:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            conn.settimeout(remaining)
            try:
                chunk = conn.recv(min(4096, self.max_message_bytes - size))
            except TimeoutError:
                break
            if not chunk:
                break
            chunks.append(chunk)
            size += len(chunk)
        return b"".join(chunks).decode("utf-8", errors="replace").strip()


class TransferCoordinator:
    """Compresses, pushes and awaits the archive acknowledgement.

    Use as a context manager: entering opens the confirmation channel, leaving
    closes it.

    Example:
        >>> with TransferCoordinator(transport, channel) as coordinator:
        ...     artifacts = coordinator.compress(batch.files)
        ...     coordinator.push(artifacts)
        ...     result = coordinator.await_confirmation()
    """

    def __init__(
        self,
        transport: ArchiveTransport,
        channel: ConfirmationChannel,
        compression_level: int = 9,
        confirmation_timeout: float = 60.0,
    ):
        self.transport = transport
        self.channel = channel
        self.compression_level = compression_level
        self.confirmation_timeout = confirmation_timeout

    def compress(self, files: Sequence[Path]) -> list[Path]:
        """Compress every append-file.

        Raises:
            CompressionError: If any file cannot be compressed
        """
        with metrics.stage_duration.labels(stage="compress").time():
            compressed = compress_files(files, level=self.compression_level)
        logger.info("append_files_compressed", files=len(compressed))
        return compressed

    def push(self, files: Sequence[Path]) -> TransferResult:
        """Push compressed append-files to the archive share.

        Raises:
            TransferError: If the push fails
        """
        logger.info("append_files_sending", target=self.transport.target, files=len(files))
        with metrics.stage_duration.labels(stage="push").time():
            self.transport.push(files)
        return TransferResult(
            delivered=True,
            target=self.transport.target,
            files=tuple(f.name for f in files),
        )

    def await_confirmation(self) -> ConfirmationResult:
        """Wait (bounded) for the archive acknowledgement."""
        logger.info("confirmation_waiting", timeout_seconds=self.confirmation_timeout)
        with metrics.stage_duration.labels(stage="confirm").time():
            result = self.channel.wait(self.confirmation_timeout)

        metrics.confirmations.labels(outcome=result.outcome.value).inc()
        if result.is_committed:
            logger.info("confirmation_committed")
        elif result.message is None:
            logger.error(
                "confirmation_timed_out",
                target=self.transport.target,
                timeout_seconds=self.confirmation_timeout,
            )
        else:
            logger.error(
                "confirmation_rejected",
                target=self.transport.target,
                message=result.message,
            )
        return result

    def __enter__(self) -> TransferCoordinator:
        self.channel.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.channel.close()
