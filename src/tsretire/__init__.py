"""tsretire - retirement of time-series points to an archive server.

Points tagged with a retirement period (``RetDate="YYYY-MM"``) are selected
from the live store, routed into one append-file per measurement and period,
pushed to the archive share and finally deleted from the store.

## Packages

1. **Core** (`tsretire.core`)
   - Configuration management
   - Logging and run tracing
   - Error handling and exit codes
   - Abstract interfaces

2. **Parsers** (`tsretire.parsers`)
   - Annotated CSV stream parser

3. **Storage** (`tsretire.storage`)
   - Append-files and the router
   - Batch working directory
   - Deterministic gzip compression

4. **Sources** (`tsretire.sources`)
   - InfluxDB v2 query and delete

5. **Retirement** (`tsretire.retirement`)
   - Batch building, transfer, confirmation, deletion
   - The end-to-end workflow

6. **CLI** (`tsretire.cli`)
   - `run`, `route` and `show-config` commands

## Quick Start

```python
from tsretire.core import get_config
from tsretire.retirement import RetirementWorkflow, RsyncTransport, TcpConfirmationChannel
from tsretire.sources import InfluxSourceStore

config = get_config()
source = InfluxSourceStore.from_config(config.influx)
workflow = RetirementWorkflow.from_config(
    config,
    source=source,
    transport=RsyncTransport.from_config(config.archive),
    channel=TcpConfirmationChannel.from_config(config.confirmation, config.archive.host),
)
report = workflow.run("2024-09")
```
"""

__version__ = "1.0.0"

from .core import (
    AppConfig,
    ExitCode,
    RetireError,
    configure_logging,
    get_config,
    get_logger,
    get_run_id,
    reload_config,
    set_run_id,
)

__all__ = [
    # Version
    "__version__",
    # Core
    "AppConfig",
    "get_config",
    "reload_config",
    "get_logger",
    "configure_logging",
    "get_run_id",
    "set_run_id",
    # Errors
    "ExitCode",
    "RetireError",
]
