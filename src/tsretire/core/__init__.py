"""Core infrastructure and interfaces for the retirement pipeline.

This module provides foundational components for all domain packages:
- Configuration management
- Logging and run tracing
- Error handling and exit codes
- Abstract interfaces of external collaborators
"""

from .config import AppConfig, get_config, reload_config, validate_period
from .errors import (
    AnnotationCountError,
    BlankMeasurementError,
    BlankTimeError,
    CompressionError,
    ConfigError,
    ConfirmationError,
    DeletionError,
    ExitCode,
    RetireError,
    SourceQueryError,
    StructuralError,
    TransferError,
    UnknownHeaderLineError,
)
from .interfaces import (
    ArchiveTransport,
    ConfirmationChannel,
    ConfirmationOutcome,
    ConfirmationResult,
    DeletionResult,
    RunContext,
    SourceStore,
    TransferResult,
)
from .logging import clear_run_id, configure_logging, get_logger, get_run_id, set_run_id

__all__ = [
    # Config
    "AppConfig",
    "get_config",
    "reload_config",
    "validate_period",
    # Errors
    "ExitCode",
    "RetireError",
    "ConfigError",
    "StructuralError",
    "UnknownHeaderLineError",
    "AnnotationCountError",
    "BlankMeasurementError",
    "BlankTimeError",
    "SourceQueryError",
    "CompressionError",
    "TransferError",
    "ConfirmationError",
    "DeletionError",
    # Interfaces
    "SourceStore",
    "ArchiveTransport",
    "ConfirmationChannel",
    "ConfirmationOutcome",
    "ConfirmationResult",
    "TransferResult",
    "DeletionResult",
    "RunContext",
    # Logging
    "get_logger",
    "configure_logging",
    "get_run_id",
    "set_run_id",
    "clear_run_id",
]
