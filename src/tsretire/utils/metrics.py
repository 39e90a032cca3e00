"""Prometheus metrics for monitoring retirement runs."""

from prometheus_client import Counter, Gauge, Histogram

# Batch metrics
points_routed = Counter(
    "tsretire_points_routed_total",
    "Total number of retired points written to append-files",
    ["measurement"],
)

append_files_written = Counter(
    "tsretire_append_files_written_total",
    "Total number of append-files produced",
)

# Run metrics
runs_finished = Counter(
    "tsretire_runs_total",
    "Retirement runs by final status",
    ["status"],
)

confirmations = Counter(
    "tsretire_confirmations_total",
    "Archive acknowledgements by outcome",
    ["outcome"],
)

deletions = Counter(
    "tsretire_deletions_total",
    "Source-side deletes by result",
    ["result"],
)

stage_duration = Histogram(
    "tsretire_stage_duration_seconds",
    "Time spent in each stage of a retirement run",
    ["stage"],
)

last_successful_run = Gauge(
    "tsretire_last_successful_run_timestamp",
    "Timestamp of the last run that archived points",
)
