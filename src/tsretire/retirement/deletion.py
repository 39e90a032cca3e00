"""Deletion committer: removes retired points from the source store.

Runs once the append-files reached the archive share, whatever the archive
acknowledged. A delete failure is reported, never retried by re-sending the
data: the points already exist on the archive side.
"""

from __future__ import annotations

from datetime import datetime, timezone

from tsretire.core.errors import DeletionError
from tsretire.core.interfaces import DeletionResult, SourceStore
from tsretire.core.logging import get_logger
from tsretire.utils import metrics

logger = get_logger(__name__)

EPOCH = "1970-01-01T00:00:00Z"


def format_instant(instant: datetime) -> str:
    """RFC3339 UTC timestamp with second precision, e.g. ``2024-09-01T03:00:00Z``."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class DeletionCommitter:
    """Issues the destructive delete for one retirement period.

    Attributes:
        source: Source store holding the retired points
        range_start: Lower bound of the delete range (covers the whole store)
    """

    def __init__(self, source: SourceStore, range_start: str = EPOCH):
        self.source = source
        self.range_start = range_start

    def commit(self, period: str, stop: datetime) -> DeletionResult:
        """Delete every point tagged with ``period`` up to ``stop``.

        ``stop`` is the instant the query step began, so points tagged with the
        period after the query (clock drift, late writes) are not deleted
        unseen.

        Returns:
            DeletionResult; ``deleted`` is False when the store refused
        """
        predicate = self.source.predicate(period)
        stop_text = format_instant(stop)
        logger.info(
            "deleting_retired_points",
            period=period,
            start=self.range_start,
            stop=stop_text,
            predicate=predicate,
        )

        try:
            with metrics.stage_duration.labels(stage="delete").time():
                self.source.delete_retired(period, self.range_start, stop_text)
        except DeletionError as e:
            metrics.deletions.labels(result="failed").inc()
            logger.error(
                "retired_points_delete_failed",
                period=period,
                error=str(e),
                recovery_hint=e.recovery_hint,
            )
            return DeletionResult(
                deleted=False,
                start=self.range_start,
                stop=stop_text,
                predicate=predicate,
                error=e.message,
            )

        metrics.deletions.labels(result="deleted").inc()
        logger.info("retired_points_deleted", period=period)
        return DeletionResult(
            deleted=True,
            start=self.range_start,
            stop=stop_text,
            predicate=predicate,
        )
