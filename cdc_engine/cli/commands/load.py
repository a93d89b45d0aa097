"""Load command: chunked bulk load of an IMDb TSV with lag backpressure."""

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from cdc_engine.common.config import get_settings
from cdc_engine.common.errors import DrainTimeoutError
from cdc_engine.common.utils import format_count, format_duration
from cdc_engine.decoding import decoder_for, default_registry
from cdc_engine.ingestion import EventLogSink, IngestionPipeline, InMemoryEventLog, PartitionedIngestor
from cdc_engine.loading import (
    BackpressureController,
    DrainTimeoutPolicy,
    LoadReport,
    count_data_rows,
    read_tsv,
    rows_to_events,
)
from cdc_engine.observability.logging_config import setup_logging
from cdc_engine.store import SoftDeleteProjector, VersionedStore
from cdc_engine.validation import ValidationReport, ValidationStatus
from cdc_engine.validation.integrity import ChecksumValidator, RowCountValidator

console = Console()


@click.command()
@click.argument("table", type=click.Choice(default_registry().names()))
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--chunk-size", type=int, help="Rows per chunk (default from config)")
@click.option("--lag-threshold", type=int, help="Lag below which the next chunk starts")
@click.option("--max-wait", type=float, help="Max seconds to wait for lag per chunk")
@click.option("--wait-for-cdc/--no-wait-for-cdc", default=None, help="Wait for lag between chunks")
@click.option("--fail-on-timeout", is_flag=True, help="Abort when lag does not drain in time")
@click.option("--partitions", type=int, help="Consumer partitions (default from config)")
@click.option("--throttle", type=float, default=0.0, help="Seconds each consumer pauses per batch")
@click.option("--verify/--no-verify", default=True, help="Compare the active view with the file")
def load(
    table: str,
    file: Path,
    chunk_size: int | None,
    lag_threshold: int | None,
    max_wait: float | None,
    wait_for_cdc: bool | None,
    fail_on_timeout: bool,
    partitions: int | None,
    throttle: float,
    verify: bool,
) -> None:
    """
    Load TABLE from an IMDb-style TSV FILE in chunks.

    Rows are published to an in-memory transport and consumed into the
    versioned store by partition workers, so consumer lag builds up exactly as
    it would against a real broker.
    """
    settings = get_settings()
    setup_logging(log_format="text")

    wait = settings.loader.wait_for_cdc if wait_for_cdc is None else wait_for_cdc
    policy = DrainTimeoutPolicy.FAIL if fail_on_timeout else DrainTimeoutPolicy(settings.loader.on_drain_timeout)
    total_rows = count_data_rows(file)

    console.print(f"\n[bold blue]Loading {table} from {file}[/bold blue]")
    console.print(f"  Rows: {format_count(total_rows)}")
    console.print(f"  Chunk size: {format_count(chunk_size or settings.loader.chunk_size)}")
    console.print(f"  Wait for CDC: {wait}\n")

    decoder = decoder_for(table)
    store = VersionedStore(table)
    log = InMemoryEventLog(
        num_partitions=partitions or settings.app.ingest_partitions,
        group_id=settings.kafka.group_id,
    )
    workers = PartitionedIngestor(IngestionPipeline(decoder, store), log, throttle_seconds=throttle)
    controller = BackpressureController(
        EventLogSink(log, decoder),
        table,
        lag_observer=log if wait else None,
        on_timeout=policy,
        store=store,
    )

    workers.start()
    try:
        report = controller.load_bulk(
            rows_to_events(read_tsv(file), table),
            chunk_size=chunk_size,
            lag_threshold=lag_threshold,
            max_wait_per_chunk=max_wait,
        )
    except DrainTimeoutError as e:
        workers.stop(timeout=5)
        console.print(f"[red]✗ {e}[/red]")
        if e.report is not None:
            _display_report(e.report)
        raise SystemExit(1)
    except KeyboardInterrupt:
        controller.cancel()
        workers.stop(timeout=5)
        console.print("[yellow]Load interrupted[/yellow]")
        raise click.Abort()

    drained = workers.drain(timeout=settings.loader.max_wait_seconds)
    workers.stop(timeout=5)
    _display_report(report)

    if not drained:
        console.print(f"[yellow]⚠ {format_count(log.outstanding(table))} events still unconsumed[/yellow]")

    if verify:
        projector = SoftDeleteProjector(store)
        validation = ValidationReport.from_results(
            table,
            [
                RowCountValidator().validate(total_rows, projector),
                ChecksumValidator(decoder).validate(read_tsv(file), projector),
            ],
        )
        _display_validation(validation)
        if validation.overall_status is ValidationStatus.FAILED:
            console.print("[red]✗ Verification failed[/red]\n")
            raise SystemExit(1)

    console.print("[bold green]✓ Load complete[/bold green]\n")


def _display_report(report: LoadReport) -> None:
    table = Table(show_header=True, header_style="bold magenta", title=f"Bulk load: {report.stream}")
    table.add_column("Chunk", justify="right")
    table.add_column("Loaded", justify="right")
    table.add_column("Rejected", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Elapsed", justify="right")
    table.add_column("Waited", justify="right")
    table.add_column("Lag", justify="right")
    table.add_column("Drain")

    for chunk in report.chunks:
        if chunk.timed_out:
            drain = "[red]timed out[/red]"
        elif chunk.cancelled:
            drain = "[yellow]cancelled[/yellow]"
        else:
            drain = "[green]ok[/green]"
        table.add_row(
            str(chunk.index),
            format_count(chunk.accepted),
            format_count(chunk.rejected),
            format_count(chunk.total_count),
            format_duration(chunk.elapsed_seconds),
            format_duration(chunk.waited_seconds),
            format_count(chunk.final_lag),
            drain,
        )

    console.print(table)
    console.print(
        f"  {format_count(report.records_loaded)} loaded, {format_count(report.records_rejected)} rejected "
        f"in {format_duration(report.elapsed_seconds)}"
        + (" [yellow](cancelled)[/yellow]" if report.cancelled else "")
    )
    console.print()


def _display_validation(report: ValidationReport) -> None:
    table = Table(show_header=True, header_style="bold magenta", title="Verification")
    table.add_column("Validator")
    table.add_column("Status")
    table.add_column("Message")

    for result in report.results:
        status_color = {
            "passed": "green",
            "failed": "red",
            "warning": "yellow",
            "skipped": "dim",
        }.get(result.status.value, "white")
        table.add_row(
            result.validator,
            f"[{status_color}]{result.status.value}[/{status_color}]",
            result.message,
        )

    console.print(table)
    console.print()
