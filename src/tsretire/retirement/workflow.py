"""Retirement workflow: query, route, transfer, confirm, delete.

One run retires the points tagged with a single period (``YYYY-MM``):

    STARTED -> QUERYING -> ROUTED -> COMPRESSED -> LISTENING -> PUSHED
        -> AWAITING_CONFIRMATION -> CONFIRMED | REJECTED | TIMED_OUT
        -> DELETED | DELETE_FAILED

    QUERYING -> EMPTY                      (no retired points, clean no-op)
    any state before PUSHED -> ABORTED     (nothing deleted, safe to retry)

Every transition is logged with the run ID, so the point where a run stopped
can always be recovered from the logs.

Invariants:
    - The delete runs if and only if the push succeeded
    - The delete runs whatever the archive acknowledged (or not)
    - The batch working directory is removed on every exit path
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from tsretire.core.config import AppConfig, validate_period
from tsretire.core.errors import ExitCode, RetireError, TransferError
from tsretire.core.interfaces import (
    ArchiveTransport,
    ConfirmationChannel,
    ConfirmationOutcome,
    ConfirmationResult,
    DeletionResult,
    RunContext,
    SourceStore,
    TransferResult,
)
from tsretire.core.logging import get_logger, set_run_id
from tsretire.retirement.batch import BatchOutcome, build_batch
from tsretire.retirement.deletion import DeletionCommitter
from tsretire.retirement.transfer import TransferCoordinator
from tsretire.storage.workdir import batch_workdir
from tsretire.utils import metrics

logger = get_logger(__name__)


def current_period(now: datetime | None = None) -> str:
    """Retirement period of ``now`` (local time by default), e.g. ``2024-09``."""
    return (now or datetime.now()).strftime("%Y-%m")


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class WorkflowState(str, Enum):
    """Named intermediate states of a retirement run."""

    STARTED = "started"
    QUERYING = "querying"
    ROUTED = "routed"
    EMPTY = "empty"
    COMPRESSED = "compressed"
    LISTENING = "listening"
    PUSHED = "pushed"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    DELETED = "deleted"
    DELETE_FAILED = "delete_failed"
    ABORTED = "aborted"


_CONFIRMATION_STATES = {
    ConfirmationOutcome.COMMITTED: WorkflowState.CONFIRMED,
    ConfirmationOutcome.REJECTED: WorkflowState.REJECTED,
    ConfirmationOutcome.TIMED_OUT: WorkflowState.TIMED_OUT,
}


class FinalStatus(str, Enum):
    """Composite status of a finished run."""

    ARCHIVED = "archived"
    ARCHIVED_UNCONFIRMED = "archived_unconfirmed"
    NO_DATA = "no_data"
    ABORTED = "aborted"


@dataclass
class RetirementReport:
    """Everything a run did, stage by stage.

    Attributes:
        context: Period and run start instant
        run_id: ID bound to every log record of the run
        history: Workflow states in the order they were reached
        batch: Batch outcome (None if the query never completed)
        transfer: Push result (None if nothing was pushed)
        confirmation: Archive acknowledgement (None if not awaited)
        deletion: Source-side delete result (None if no delete ran)
        error: The error that aborted the run, if any
    """

    context: RunContext
    run_id: str
    history: list[WorkflowState] = field(default_factory=lambda: [WorkflowState.STARTED])
    batch: BatchOutcome | None = None
    transfer: TransferResult | None = None
    confirmation: ConfirmationResult | None = None
    deletion: DeletionResult | None = None
    error: RetireError | None = None

    @property
    def state(self) -> WorkflowState:
        return self.history[-1]

    @property
    def status(self) -> FinalStatus:
        if self.error is not None:
            return FinalStatus.ABORTED
        if self.batch is None or self.batch.is_empty:
            return FinalStatus.NO_DATA
        if self.confirmation is not None and self.confirmation.is_committed:
            return FinalStatus.ARCHIVED
        return FinalStatus.ARCHIVED_UNCONFIRMED

    @property
    def exit_code(self) -> ExitCode:
        status = self.status
        if status is FinalStatus.ABORTED:
            return self.error.exit_code  # type: ignore[union-attr]
        if status is FinalStatus.NO_DATA:
            return ExitCode.NO_DATA
        if self.deletion is not None and not self.deletion.deleted:
            return ExitCode.DELETION_FAILED
        if self.confirmation is not None and self.confirmation.is_committed:
            return ExitCode.SUCCESS
        if self.confirmation is not None and self.confirmation.message is not None:
            return ExitCode.CONFIRMATION_REJECTED
        return ExitCode.CONFIRMATION_TIMED_OUT


class RetirementWorkflow:
    """Sequential retirement workflow with inspectable intermediate states.

    Example:
        >>> workflow = RetirementWorkflow(source, transport, channel)
        >>> report = workflow.run("2024-09")
        >>> report.status, report.exit_code
        (<FinalStatus.ARCHIVED: 'archived'>, <ExitCode.SUCCESS: 0>)
    """

    def __init__(
        self,
        source: SourceStore,
        transport: ArchiveTransport,
        channel: ConfirmationChannel,
        committer: DeletionCommitter | None = None,
        workdir_root: Path | None = None,
        workdir_prefix: str = "ret_",
        compression_level: int = 9,
        confirmation_timeout: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.source = source
        self.committer = committer or DeletionCommitter(source)
        self.coordinator = TransferCoordinator(
            transport,
            channel,
            compression_level=compression_level,
            confirmation_timeout=confirmation_timeout,
        )
        self.workdir_root = workdir_root
        self.workdir_prefix = workdir_prefix
        self.clock = clock

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        source: SourceStore,
        transport: ArchiveTransport,
        channel: ConfirmationChannel,
    ) -> RetirementWorkflow:
        return cls(
            source,
            transport,
            channel,
            committer=DeletionCommitter(source, range_start=config.influx.delete_range_start),
            workdir_root=config.workdir.root,
            workdir_prefix=config.workdir.prefix,
            compression_level=config.workdir.compression_level,
            confirmation_timeout=config.confirmation.timeout_seconds,
        )

    def _advance(self, report: RetirementReport, state: WorkflowState, **details) -> None:
        report.history.append(state)
        logger.info(
            "workflow_state",
            state=state.value,
            period=report.context.period,
            **details,
        )

    def run(self, period: str | None = None, run_id: str | None = None) -> RetirementReport:
        """Retire the points of ``period`` (the current period by default).

        Returns:
            RetirementReport with the final status and exit code
        """
        period = validate_period(period or current_period())
        run_id = set_run_id(run_id)
        report = RetirementReport(context=RunContext(period, self.clock()), run_id=run_id)
        logger.info("retirement_started", period=period)

        try:
            self._run(report)
        except TransferError as e:
            report.transfer = TransferResult(
                delivered=False, target=self.coordinator.transport.target, cause=e.message
            )
            self._abort(report, e)
        except RetireError as e:
            self._abort(report, e)

        self._finish(report)
        return report

    def _run(self, report: RetirementReport) -> None:
        period = report.context.period

        with batch_workdir(self.workdir_root, self.workdir_prefix) as work_dir:
            # The delete never reaches past the instant the query began
            report.context.started_at = self.clock()
            self._advance(
                report, WorkflowState.QUERYING, stop=report.context.started_at.isoformat()
            )
            with metrics.stage_duration.labels(stage="route").time():
                report.batch = build_batch(self.source.query_retired(period), work_dir)

            if report.batch.is_empty:
                self._advance(report, WorkflowState.EMPTY)
                return

            self._advance(report, WorkflowState.ROUTED, total_points=report.batch.total)
            for line in report.batch.summary_lines():
                logger.info("batch_summary", line=line)

            artifacts = self.coordinator.compress(report.batch.files)
            self._advance(report, WorkflowState.COMPRESSED, files=len(artifacts))

            with self.coordinator:
                self._advance(report, WorkflowState.LISTENING)
                report.transfer = self.coordinator.push(artifacts)
                self._advance(report, WorkflowState.PUSHED, target=report.transfer.target)

                # Pushed: from here on the delete must run whatever happens
                try:
                    self._advance(report, WorkflowState.AWAITING_CONFIRMATION)
                    try:
                        report.confirmation = self.coordinator.await_confirmation()
                    except Exception as e:
                        # Data is on the archive: a broken wait only means unconfirmed
                        logger.error(
                            "confirmation_failed", error=str(e), error_type=type(e).__name__
                        )
                        report.confirmation = ConfirmationResult.timed_out()
                    self._advance(report, _CONFIRMATION_STATES[report.confirmation.outcome])
                finally:
                    report.deletion = self.committer.commit(period, report.context.started_at)
                    self._advance(
                        report,
                        WorkflowState.DELETED
                        if report.deletion.deleted
                        else WorkflowState.DELETE_FAILED,
                    )

    def _abort(self, report: RetirementReport, error: RetireError) -> None:
        report.error = error
        self._advance(
            report,
            WorkflowState.ABORTED,
            code=error.code,
            error=error.message,
            retryable=error.retryable,
        )

    def _finish(self, report: RetirementReport) -> None:
        status = report.status
        metrics.runs_finished.labels(status=status.value).inc()

        if status is FinalStatus.ARCHIVED:
            metrics.last_successful_run.set_to_current_time()
            logger.info("retirement_finished", status=status.value, detail="archived successfully")
        elif status is FinalStatus.ARCHIVED_UNCONFIRMED:
            metrics.last_successful_run.set_to_current_time()
            logger.warning(
                "retirement_finished",
                status=status.value,
                detail="archived, but not confirmed by the archive server",
            )
        elif status is FinalStatus.NO_DATA:
            logger.info(
                "retirement_finished", status=status.value, detail="no retired points found"
            )
        else:
            logger.error(
                "retirement_finished",
                status=status.value,
                detail="aborted, nothing deleted",
                exit_code=int(report.exit_code),
            )

        if report.deletion is not None and not report.deletion.deleted:
            logger.error(
                "manual_reconciliation_required",
                period=report.context.period,
                predicate=report.deletion.predicate,
                error=report.deletion.error,
            )


