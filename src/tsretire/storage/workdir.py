"""Scoped working directory of a retirement batch."""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from tsretire.core.errors import ExitCode, RetireError
from tsretire.core.logging import get_logger

logger = get_logger(__name__)


class WorkdirError(RetireError):
    """Raised when the batch working directory cannot be created."""

    exit_code = ExitCode.WORKDIR_FAILED

    def __init__(self, message: str):
        super().__init__(
            message,
            code="WORKDIR_ERROR",
            retryable=True,
            recovery_hint="Check permissions and free space of the temp directory",
        )


@contextmanager
def batch_workdir(root: Path | None = None, prefix: str = "ret_") -> Iterator[Path]:
    """Create a private working directory and remove it on every exit path.

    The directory and everything in it (open append-files, compressed files)
    is deleted on normal completion, on errors and on interruption
    (KeyboardInterrupt / SystemExit unwind through the ``finally`` block).

    Args:
        root: Parent directory (system temp directory if None)
        prefix: Directory name prefix

    Yields:
        Path of the working directory
    """
    try:
        path = Path(tempfile.mkdtemp(prefix=prefix, dir=root))
    except OSError as e:
        raise WorkdirError(f"Error by creating a working directory for append-files: {e}") from e

    logger.debug("workdir_created", path=str(path))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        logger.debug("workdir_removed", path=str(path))
