"""Abstract interfaces for the collaborators of a retirement run.

The retirement core only talks to the outside world through these contracts:
- SourceStore: reads retired points and deletes them afterwards
- ArchiveTransport: pushes compressed append-files to the archive share
- ConfirmationChannel: waits for the archive's acknowledgement

Implementations live in ``tsretire.sources`` and ``tsretire.retirement.transfer``;
tests replace them with in-memory fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from types import TracebackType


class ConfirmationOutcome(str, Enum):
    """Result of waiting for the archive acknowledgement."""

    COMMITTED = "committed"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class ConfirmationResult:
    """Acknowledgement received (or not) from the archive host.

    Attributes:
        outcome: COMMITTED, REJECTED or TIMED_OUT
        message: Error text sent by the archive for REJECTED, otherwise None
    """

    outcome: ConfirmationOutcome
    message: str | None = None

    @classmethod
    def committed(cls) -> ConfirmationResult:
        return cls(ConfirmationOutcome.COMMITTED)

    @classmethod
    def rejected(cls, message: str) -> ConfirmationResult:
        return cls(ConfirmationOutcome.REJECTED, message)

    @classmethod
    def timed_out(cls) -> ConfirmationResult:
        return cls(ConfirmationOutcome.TIMED_OUT)

    @property
    def is_committed(self) -> bool:
        return self.outcome is ConfirmationOutcome.COMMITTED


@dataclass(frozen=True)
class TransferResult:
    """Outcome of pushing append-files to the archive share."""

    delivered: bool
    target: str
    files: tuple[str, ...] = ()
    cause: str | None = None


@dataclass(frozen=True)
class DeletionResult:
    """Outcome of the source-side delete.

    Attributes:
        deleted: Whether the source store accepted the delete
        start: Lower bound of the deleted time range
        stop: Upper bound of the deleted time range (run start instant)
        predicate: Delete predicate selecting the retired points
        error: Failure description when ``deleted`` is False
    """

    deleted: bool
    start: str
    stop: str
    predicate: str
    error: str | None = None


@dataclass
class RunContext:
    """Metadata about one retirement run.

    Attributes:
        period: Retirement period (YYYY-MM) being retired
        started_at: Instant the query step began (UTC); upper bound of the delete
    """

    period: str
    started_at: datetime


class SourceStore(ABC):
    """Contract for the live time-series store.

    Implementations:
        - InfluxSourceStore (HTTP API of InfluxDB v2)
    """

    @abstractmethod
    def query_retired(self, period: str) -> Iterator[str]:
        """Stream the annotated CSV lines of all points tagged with ``period``.

        Raises:
            SourceQueryError: If the store cannot deliver the points
        """

    @abstractmethod
    def predicate(self, period: str) -> str:
        """Delete predicate selecting the points tagged with ``period``."""

    @abstractmethod
    def delete_retired(self, period: str, start: str, stop: str) -> None:
        """Delete all points tagged with ``period`` within ``[start, stop]``.

        Raises:
            DeletionError: If the store rejects the delete
        """

    def close(self) -> None:
        """Release connections held by the store."""


class ArchiveTransport(ABC):
    """Contract for pushing files to the archive inbound share."""

    @property
    @abstractmethod
    def target(self) -> str:
        """Human-readable address of the archive share."""

    @abstractmethod
    def push(self, files: Sequence[Path]) -> None:
        """Copy ``files`` to the archive share.

        Raises:
            TransferError: If any file could not be delivered
        """


class ConfirmationChannel(ABC):
    """Contract for the bounded rendezvous with the archive host.

    The channel is opened before the push so an early acknowledgement is not
    lost, and closed when the run finishes waiting.

    Usage:
        with channel:
            transport.push(files)
            result = channel.wait(timeout=60)
    """

    @abstractmethod
    def open(self) -> None:
        """Start listening.

        Raises:
            ConfirmationError: If the channel cannot be opened
        """

    @abstractmethod
    def wait(self, timeout: float) -> ConfirmationResult:
        """Block for at most ``timeout`` seconds waiting for one message."""

    @abstractmethod
    def close(self) -> None:
        """Stop listening."""

    def __enter__(self) -> ConfirmationChannel:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
