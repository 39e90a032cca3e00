"""Append-files: per (measurement, period) output groups of retired points.

An append-file contains the retired points of a single measurement and month,
named like ``append.S_UpFgl_WindDirection.2024-09.csv``. Its content is one
or more annotation blocks, each followed by the raw data lines read under it:

    #group,...
    #datatype,...
    #default,...
    ,result,table,_start,_stop,_time,_value,RetDate,_field,_measurement,item
    ,,0,...,2024-09,value,S_UpFgl_WindDirection,S_UpFgl_WindDirection
    <blank line>
    #group,...          <- re-annotation after a schema change, or when the
    ...                    file already held content before this batch

Invariants:
    - Lines of a group keep their input order
    - An annotation block version appears at most once consecutively per group
    - A blank separator line precedes an annotation written to a non-empty file
    - A closed group is never reopened
"""

from __future__ import annotations

import os
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import IO

from tsretire.core.logging import get_logger
from tsretire.parsers.annotated_csv import AnnotationBlock, DataRecord

logger = get_logger(__name__)

APPEND_FILE_PREFIX = "append"
APPEND_FILE_SUFFIX = ".csv"

_FILE_NAME_ESCAPES = str.maketrans({"%": "%25", "/": "%2F", "\\": "%5C"})


def append_file_name(measurement: str, period: str) -> str:
    """Deterministic append-file name for a measurement and period.

    Path separators in the measurement are percent-encoded (``%`` itself too)
    so that the file always lands in the batch working directory and distinct
    measurements never share a file.

    Example:
        >>> append_file_name("S_UpFgl_WindDirection", "2024-09")
        'append.S_UpFgl_WindDirection.2024-09.csv'
        >>> append_file_name("a/b", "2024-09")
        'append.a%2Fb.2024-09.csv'
    """
    safe_measurement = measurement.translate(_FILE_NAME_ESCAPES)
    return f"{APPEND_FILE_PREFIX}.{safe_measurement}.{period}{APPEND_FILE_SUFFIX}"


@dataclass(frozen=True)
class GroupKey:
    """Destination of a record: its measurement and year-month."""

    measurement: str
    period: str

    @classmethod
    def for_record(cls, record: DataRecord) -> GroupKey:
        return cls(record.measurement, record.period)

    @property
    def file_name(self) -> str:
        return append_file_name(self.measurement, self.period)


class OutputGroup:
    """Append-only output file of one group key.

    The file handle is opened lazily on the first write and kept open until
    ``close()``, which flushes the content to durable storage.
    """

    def __init__(self, key: GroupKey, path: Path):
        self.key = key
        self.path = path
        self.records = 0
        self.annotated = False
        self.closed = False
        self._lines_written = 0
        self._handle: IO[str] | None = None
        self._initial_size = path.stat().st_size if path.exists() else None
        # Content left by an earlier writer must be separated from ours
        self._had_content = bool(self._initial_size)

    @property
    def has_content(self) -> bool:
        return self._had_content or self._lines_written > 0

    def _write_line(self, line: str) -> None:
        if self.closed:
            raise RuntimeError(f"Output group {self.key.file_name} is already closed")
        if self._handle is None:
            self._handle = open(self.path, "a", encoding="utf-8", newline="")
        self._handle.write(line + "\n")
        self._lines_written += 1

    def annotate(self, block: AnnotationBlock) -> None:
        """Write the annotation block, separated by a blank line if needed."""
        if self.has_content:
            self._write_line("")
        for line in block.lines:
            self._write_line(line)
        self.annotated = True

    def append(self, record: DataRecord) -> None:
        """Append the raw line of a record."""
        self._write_line(record.line)
        self.records += 1

    def close(self) -> None:
        """Flush and close the file; the group cannot be written afterwards."""
        if self.closed:
            return
        if self._handle is not None:
            self._handle.flush()
            os.fsync(self._handle.fileno())
            self._handle.close()
            self._handle = None
        self.closed = True

    def discard(self) -> None:
        """Close the group and undo everything it wrote."""
        self.close()
        if self._initial_size is None:
            self.path.unlink(missing_ok=True)
        elif self.path.exists():
            os.truncate(self.path, self._initial_size)


class Router:
    """Routes parsed records into their output groups.

    The router owns every open group of a batch. Use it as a context manager
    so that file handles are released on every exit path.

    Attributes:
        directory: Directory receiving the append-files
        groups: Output groups keyed by (measurement, period)
        counts: Routed records per measurement

    Example:
        >>> with Router(work_dir) as router:
        ...     for block, record in parser.parse(lines):
        ...         router.route(block, record)
        ...     files = router.close_all()
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.groups: dict[GroupKey, OutputGroup] = {}
        self.counts: Counter[str] = Counter()
        self._block_version: int | None = None

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def route(self, block: AnnotationBlock, record: DataRecord) -> OutputGroup:
        """Append ``record`` to its group, annotating the group when needed."""
        if block.version != self._block_version:
            if self._block_version is not None:
                self._invalidate_annotations()
            self._block_version = block.version

        key = GroupKey.for_record(record)
        group = self.groups.get(key)
        if group is None:
            group = OutputGroup(key, self.directory / key.file_name)
            self.groups[key] = group
            logger.debug("output_group_opened", file=key.file_name, existing=group.has_content)

        if not group.annotated:
            group.annotate(block)
        group.append(record)
        self.counts[record.measurement] += 1
        return group

    def _invalidate_annotations(self) -> None:
        # Schema changed: every group gets the new block before its next record
        for group in self.groups.values():
            group.annotated = False
        logger.debug("annotation_changed", groups=len(self.groups))

    def close_all(self) -> list[Path]:
        """Close every group and return the file paths, sorted by name."""
        for group in self.groups.values():
            group.close()
        return sorted((group.path for group in self.groups.values()), key=lambda p: p.name)

    def discard(self) -> None:
        """Close every group and undo its writes."""
        for group in self.groups.values():
            group.discard()
        logger.debug("output_groups_discarded", groups=len(self.groups))
        self.groups.clear()
        self.counts.clear()

    def __enter__(self) -> Router:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        for group in self.groups.values():
            group.close()
