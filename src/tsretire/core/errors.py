"""tsretire error hierarchy.

Provides domain-specific exceptions with stable exit codes and recovery hints.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    """Process exit codes reported to the orchestrating caller."""

    SUCCESS = 0
    UNKNOWN_HEADER_LINE = 1
    ANNOTATION_COUNT = 2
    BLANK_MEASUREMENT = 3
    BLANK_TIME = 4
    SOURCE_QUERY_FAILED = 5
    CONFIRMATION_UNAVAILABLE = 6
    WORKDIR_FAILED = 7
    COMPRESSION_FAILED = 10
    TRANSFER_FAILED = 11
    CONFIRMATION_TIMED_OUT = 20
    CONFIRMATION_REJECTED = 21
    DELETION_FAILED = 30
    INPUT_NOT_FOUND = 66
    CONFIG_ERROR = 78
    NO_DATA = 99
    INTERRUPTED = 130


class RetireError(Exception):
    """Base exception for all retirement pipeline errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for logging/monitoring
        exit_code: Process exit code the CLI reports for this error
        retryable: Whether the whole batch can be safely retried
        recovery_hint: Suggested recovery action
    """

    exit_code: ExitCode = ExitCode.SOURCE_QUERY_FAILED

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        retryable: bool = False,
        recovery_hint: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.retryable = retryable
        self.recovery_hint = recovery_hint
        super().__init__(message)

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.recovery_hint:
            base += f" ({self.recovery_hint})"
        return base


class ConfigError(RetireError):
    """Raised on configuration errors."""

    exit_code = ExitCode.CONFIG_ERROR

    def __init__(self, message: str, recovery_hint: Optional[str] = None):
        super().__init__(
            message,
            code="CONFIG_ERROR",
            retryable=False,
            recovery_hint=recovery_hint or "Check environment variables and .env file",
        )


# ============================================================================
# Structural errors (record stream parser / router)
# ============================================================================


class StructuralError(RetireError):
    """Raised when the annotated record stream is malformed.

    Always fatal to the batch. The batch working directory is discarded, so no
    half-written append-file survives. Retrying the batch is safe because
    nothing was sent and nothing was deleted.

    Attributes:
        line_number: 1-based number of the offending input line
        line: The offending raw line
    """

    error_code = "STRUCTURAL_ERROR"

    def __init__(self, message: str, line_number: int, line: str):
        super().__init__(
            message,
            code=self.error_code,
            retryable=True,
            recovery_hint="Inspect the source query output",
        )
        self.line_number = line_number
        self.line = line


class UnknownHeaderLineError(StructuralError):
    """An annotation line does not fit the group/datatype/default/columns shape."""

    exit_code = ExitCode.UNKNOWN_HEADER_LINE
    error_code = "UNKNOWN_HEADER_LINE"


class AnnotationCountError(StructuralError):
    """A data line arrived while no complete 4-line annotation was live."""

    exit_code = ExitCode.ANNOTATION_COUNT
    error_code = "ANNOTATION_COUNT"

    def __init__(self, message: str, line_number: int, line: str, annotation: list[str]):
        super().__init__(message, line_number, line)
        self.annotation = annotation


class BlankMeasurementError(StructuralError):
    """A data line has a blank `_measurement` value."""

    exit_code = ExitCode.BLANK_MEASUREMENT
    error_code = "BLANK_MEASUREMENT"


class BlankTimeError(StructuralError):
    """A data line has a blank `_time` value."""

    exit_code = ExitCode.BLANK_TIME
    error_code = "BLANK_TIME"


# ============================================================================
# Stage errors (source, compression, transfer, confirmation, deletion)
# ============================================================================


class SourceQueryError(RetireError):
    """Raised when the source store cannot deliver the retired points."""

    exit_code = ExitCode.SOURCE_QUERY_FAILED

    def __init__(self, message: str, recovery_hint: Optional[str] = None):
        super().__init__(
            message,
            code="SOURCE_QUERY_ERROR",
            retryable=True,
            recovery_hint=recovery_hint or "Check source store connectivity",
        )


class CompressionError(RetireError):
    """Raised when an append-file cannot be compressed."""

    exit_code = ExitCode.COMPRESSION_FAILED

    def __init__(self, message: str):
        super().__init__(
            message,
            code="COMPRESSION_ERROR",
            retryable=True,
            recovery_hint="Check disk space of the working directory",
        )


class TransferError(RetireError):
    """Raised when append-files cannot be pushed to the archive share."""

    exit_code = ExitCode.TRANSFER_FAILED

    def __init__(self, target: str, message: str):
        super().__init__(
            f"{target}: {message}",
            code="TRANSFER_ERROR",
            retryable=True,
            recovery_hint=f"Check connectivity to {target}",
        )
        self.target = target


class ConfirmationError(RetireError):
    """Raised when the confirmation listener cannot be opened."""

    exit_code = ExitCode.CONFIRMATION_UNAVAILABLE

    def __init__(self, message: str):
        super().__init__(
            message,
            code="CONFIRMATION_ERROR",
            retryable=True,
            recovery_hint="Check that the confirmation port is free and bindable",
        )


class DeletionError(RetireError):
    """Raised when the source store rejects the delete request.

    Never triggers a re-transfer: the points already reached the archive
    inbound share and now exist in two places.
    """

    exit_code = ExitCode.DELETION_FAILED

    def __init__(self, message: str):
        super().__init__(
            message,
            code="DELETION_ERROR",
            retryable=False,
            recovery_hint="Reconcile source store and archive manually",
        )
