"""Retirement batch builder.

Drives the annotated stream parser and the router to exhaustion and reports
one of two outcomes:

- SUCCESS: append-files were written and closed; per-measurement counts
- EMPTY: the stream held no data lines (not an error)

Structural errors abort the batch immediately: every partially written
append-file is discarded and the classified ``StructuralError`` propagates.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from tsretire.core.errors import AnnotationCountError, StructuralError
from tsretire.core.logging import get_logger
from tsretire.parsers.annotated_csv import AnnotatedCSVParser
from tsretire.storage.append_files import Router
from tsretire.utils import metrics

logger = get_logger(__name__)


class BatchStatus(str, Enum):
    """Outcome of building a retirement batch."""

    SUCCESS = "success"
    EMPTY = "empty"


@dataclass
class BatchOutcome:
    """Result of a batch build.

    Attributes:
        status: SUCCESS or EMPTY
        counts: ``(measurement, points)`` pairs sorted by measurement
        total: Total number of points routed
        files: Closed append-files, sorted by name
    """

    status: BatchStatus
    counts: list[tuple[str, int]] = field(default_factory=list)
    total: int = 0
    files: list[Path] = field(default_factory=list)

    @classmethod
    def empty(cls) -> BatchOutcome:
        return cls(BatchStatus.EMPTY)

    @property
    def is_empty(self) -> bool:
        return self.status is BatchStatus.EMPTY

    def summary_lines(self) -> list[str]:
        """Human-readable summary: one ``<measurement> <count>`` line each plus the total."""
        lines = [f"{measurement} {count}" for measurement, count in self.counts]
        lines.append(f"*** Total points selected: {self.total} ***")
        return lines


def build_batch(
    lines: Iterable[str],
    directory: Path,
    parser: AnnotatedCSVParser | None = None,
) -> BatchOutcome:
    """Route an annotated record stream into append-files.

    Args:
        lines: Annotated CSV stream of the retired points
        directory: Batch working directory receiving the append-files
        parser: Parser instance (a new one if None)

    Returns:
        BatchOutcome with status SUCCESS or EMPTY

    Raises:
        StructuralError: If the stream is malformed (no append-file survives)
        SourceQueryError: If the source fails while streaming
    """
    parser = parser or AnnotatedCSVParser()

    with Router(directory) as router:
        try:
            for block, record in parser.parse(lines):
                router.route(block, record)
        except StructuralError as e:
            router.discard()
            logger.error(
                "batch_structural_error",
                code=e.code,
                line_number=e.line_number,
                line=e.line,
                annotation=e.annotation if isinstance(e, AnnotationCountError) else None,
                error=e.message,
            )
            raise
        except Exception:
            router.discard()
            raise

        if router.total == 0:
            logger.info("batch_empty", lines=parser.lines_read, blocks=parser.blocks_read)
            return BatchOutcome.empty()

        files = router.close_all()
        counts = sorted(router.counts.items())
        total = router.total

    for measurement, count in counts:
        metrics.points_routed.labels(measurement=measurement).inc(count)
    metrics.append_files_written.inc(len(files))

    logger.info(
        "batch_routed",
        measurements=len(counts),
        append_files=len(files),
        total_points=total,
        blocks=parser.blocks_read,
        parser=parser.SCHEMA_VERSION,
    )
    return BatchOutcome(BatchStatus.SUCCESS, counts=counts, total=total, files=files)
