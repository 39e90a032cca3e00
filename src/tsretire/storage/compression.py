"""Deterministic gzip compression of append-files."""

from __future__ import annotations

import gzip
import shutil
from collections.abc import Sequence
from pathlib import Path

from tsretire.core.errors import CompressionError
from tsretire.core.logging import get_logger

logger = get_logger(__name__)

GZIP_SUFFIX = ".gz"


def compress_file(path: Path, level: int = 9) -> Path:
    """Compress ``path`` to ``<path>.gz`` and remove the original.

    The output is byte-identical for identical input: the gzip header carries
    neither a modification time nor the original file name.

    Args:
        path: File to compress
        level: gzip compression level (1-9)

    Returns:
        Path of the compressed file

    Raises:
        CompressionError: If the file cannot be read or the output written
    """
    target = path.with_name(path.name + GZIP_SUFFIX)
    try:
        with open(path, "rb") as source, open(target, "wb") as raw:
            with gzip.GzipFile(
                filename="", mode="wb", compresslevel=level, fileobj=raw, mtime=0
            ) as gz:
                shutil.copyfileobj(source, gz)
        path.unlink()
    except OSError as e:
        target.unlink(missing_ok=True)
        raise CompressionError(f"Error by compressing {path.name}: {e}") from e

    return target


def compress_files(paths: Sequence[Path], level: int = 9) -> list[Path]:
    """Compress every file, stopping at the first failure.

    Returns:
        Compressed file paths in input order
    """
    compressed = []
    for path in paths:
        target = compress_file(path, level=level)
        logger.debug(
            "append_file_compressed",
            file=target.name,
            size_bytes=target.stat().st_size,
        )
        compressed.append(target)
    return compressed
