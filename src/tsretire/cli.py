from __future__ import annotations

import sys
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tsretire.core.config import AppConfig, reload_config, validate_period
from tsretire.core.errors import ConfigError, ExitCode, StructuralError
from tsretire.core.logging import configure_logging, get_logger
from tsretire.retirement.batch import build_batch
from tsretire.retirement.transfer import RsyncTransport, TcpConfirmationChannel
from tsretire.retirement.workflow import RetirementReport, RetirementWorkflow
from tsretire.sources.influx import InfluxSourceStore

app = typer.Typer(
    name="tsretire",
    help="tsretire: moves retired time-series points to the archive server",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)
logger = get_logger(__name__)


def load_config() -> AppConfig:
    """Load configuration from the environment and configure logging.

    Raises:
        typer.Exit: With the configuration exit code if the settings are invalid
    """
    try:
        cfg = reload_config()
    except ValidationError as e:
        error = ConfigError(
            f"Invalid configuration: {e.error_count()} error(s)",
            recovery_hint="Check the INFLUX_, ARCHIVE_, CONFIRM_, WORKDIR_ and LOG_ variables",
        )
        err_console.print(f"[red]✗ {error}[/red]")
        err_console.print(str(e))
        raise typer.Exit(int(error.exit_code)) from e

    configure_logging(level=cfg.logging.level, format=cfg.logging.format)
    return cfg


def check_period(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return validate_period(value)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e


def print_report(report: RetirementReport) -> None:
    """Print the batch summary and the final status of a run."""
    if report.batch is not None:
        for line in report.batch.summary_lines():
            console.print(line, markup=False, highlight=False)

    table = Table(title=f"Retirement {report.context.period}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Run ID", report.run_id)
    table.add_row("Status", report.status.value)
    table.add_row("Last state", report.state.value)
    if report.transfer is not None:
        table.add_row("Target", report.transfer.target)
        table.add_row("Files", str(len(report.transfer.files)))
    if report.confirmation is not None:
        table.add_row("Confirmation", report.confirmation.outcome.value)
        if report.confirmation.message:
            table.add_row("Archive message", escape(report.confirmation.message))
    if report.deletion is not None:
        table.add_row("Deleted", "yes" if report.deletion.deleted else "no")
        table.add_row("Predicate", report.deletion.predicate)
    if report.error is not None:
        table.add_row("Error", escape(str(report.error)))
    table.add_row("Exit code", str(int(report.exit_code)))
    console.print(table)


@app.command("run")
def run(
    period: str | None = typer.Option(
        None,
        "--period",
        "-p",
        help="Retirement period YYYY-MM (default: current month)",
        callback=check_period,
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        "-t",
        min=0.1,
        help="Seconds to wait for the archive acknowledgement",
    ),
    run_id: str | None = typer.Option(None, "--run-id", help="Run ID for the logs"),
):
    """Retire the points of one period: query, archive, confirm, delete.

    [bold]Example:[/bold]
        tsretire run --period 2024-09 --timeout 120
    """
    cfg = load_config()
    if timeout is not None:
        cfg.confirmation.timeout_seconds = timeout

    source = InfluxSourceStore.from_config(cfg.influx)
    try:
        workflow = RetirementWorkflow.from_config(
            cfg,
            source=source,
            transport=RsyncTransport.from_config(cfg.archive),
            channel=TcpConfirmationChannel.from_config(cfg.confirmation, cfg.archive.host),
        )
        report = workflow.run(period, run_id=run_id)
    finally:
        source.close()

    print_report(report)
    raise typer.Exit(int(report.exit_code))


@app.command("route")
def route(
    input_file: str = typer.Argument(
        ..., metavar="INPUT", help="Annotated CSV export, or '-' for stdin"
    ),
    output_dir: Path = typer.Option(
        ...,
        "--output-dir",
        "-o",
        file_okay=False,
        help="Directory receiving the append-files",
    ),
):
    """Route an exported annotated CSV into append-files (no transfer, no delete).

    [bold]Example:[/bold]
        influx query --raw 'from(bucket: "autogen") ...' | tsretire route - -o ./out
    """
    load_config()
    output_dir.mkdir(parents=True, exist_ok=True)

    try:
        if input_file == "-":
            outcome = build_batch(sys.stdin, output_dir)
        else:
            path = Path(input_file)
            if not path.exists():
                err_console.print(f"[red]✗ File not found: {escape(str(path))}[/red]")
                raise typer.Exit(int(ExitCode.INPUT_NOT_FOUND))
            with open(path, encoding="utf-8", newline="") as handle:
                outcome = build_batch(handle, output_dir)
    except StructuralError as e:
        err_console.print(f"[red]✗ {escape(str(e))}[/red]")
        err_console.print(f"  line #{e.line_number}: {e.line}", markup=False)
        raise typer.Exit(int(e.exit_code)) from e

    if outcome.is_empty:
        console.print("[yellow]⊘ No data lines found[/yellow]")
        raise typer.Exit(int(ExitCode.NO_DATA))

    for line in outcome.summary_lines():
        console.print(line, markup=False, highlight=False)
    for file in outcome.files:
        console.print(f"[green]✓[/green] {file}")


@app.command("show-config")
def show_config():
    """Display the effective configuration (the token is masked)."""
    cfg = load_config()

    table = Table(title="tsretire configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("influx.url", cfg.influx.url)
    table.add_row("influx.org", cfg.influx.org)
    table.add_row("influx.bucket", cfg.influx.bucket)
    table.add_row("influx.token", "***" if cfg.influx.token else "(unset)")
    table.add_row("influx.retirement_tag", cfg.influx.retirement_tag)
    table.add_row("influx.query_range_start", cfg.influx.query_range_start)
    table.add_row("archive.target", cfg.archive.target)
    table.add_row("archive.rsync_binary", cfg.archive.rsync_binary)
    table.add_row(
        "confirmation.listen",
        f"{cfg.confirmation.bind_host}:{cfg.confirmation.port}",
    )
    table.add_row("confirmation.timeout_seconds", str(cfg.confirmation.timeout_seconds))
    table.add_row("confirmation.restrict_peer", str(cfg.confirmation.restrict_peer))
    table.add_row("workdir.root", str(cfg.workdir.root or "(system temp)"))
    table.add_row("logging.level", cfg.logging.level)

    console.print(table)


if __name__ == "__main__":
    app()
