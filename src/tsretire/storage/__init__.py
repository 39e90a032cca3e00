"""Local storage of a retirement batch.

## Submodules

- `append_files.py`: Output groups (append-files) and the record router
- `compression.py`: Deterministic gzip compression of append-files
- `workdir.py`: Scoped batch working directory
"""

from .append_files import GroupKey, OutputGroup, Router, append_file_name
from .compression import compress_file, compress_files
from .workdir import WorkdirError, batch_workdir

__all__ = [
    # Append-files
    "GroupKey",
    "OutputGroup",
    "Router",
    "append_file_name",
    # Utilities
    "compress_file",
    "compress_files",
    "batch_workdir",
    "WorkdirError",
]
