"""Retirement domain: batch building, transfer, confirmation and deletion.

## Submodules

- `batch.py`: Routes the retired points stream into append-files
- `transfer.py`: Compresses and pushes append-files, awaits the acknowledgement
- `deletion.py`: Deletes the retired points from the source store
- `workflow.py`: Runs the stages in order and composes the final status
"""

from .batch import BatchOutcome, BatchStatus, build_batch
from .deletion import DeletionCommitter, format_instant
from .transfer import RsyncTransport, TcpConfirmationChannel, TransferCoordinator
from .workflow import (
    FinalStatus,
    RetirementReport,
    RetirementWorkflow,
    WorkflowState,
    current_period,
)

__all__ = [
    # Batch
    "BatchOutcome",
    "BatchStatus",
    "build_batch",
    # Transfer
    "RsyncTransport",
    "TcpConfirmationChannel",
    "TransferCoordinator",
    # Deletion
    "DeletionCommitter",
    "format_instant",
    # Workflow
    "FinalStatus",
    "RetirementReport",
    "RetirementWorkflow",
    "WorkflowState",
    "current_period",
]
