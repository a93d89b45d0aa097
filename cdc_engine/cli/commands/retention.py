"""Retention command for CDC topics."""

from datetime import timedelta

import click
from rich.console import Console

from cdc_engine.common.config import get_settings
from cdc_engine.common.errors import RetentionError
from cdc_engine.decoding import default_registry
from cdc_engine.loading import KafkaLagObserver
from cdc_engine.observability.logging_config import setup_logging
from cdc_engine.retention import KafkaRetentionBackend, RetentionManager, RetentionPreset

console = Console()


@click.command()
@click.argument("streams", nargs=-1)
@click.option("--all", "all_tables", is_flag=True, help="Every IMDb CDC topic")
@click.option(
    "--preset",
    type=click.Choice([p.name.lower() for p in RetentionPreset]),
    help="aggressive (1h), balanced (4h) or conservative (24h)",
)
@click.option("--hours", type=float, help="Custom retention in hours")
@click.option("--strict", is_flag=True, help="Refuse to change retention while lag is high")
@click.option("--force", is_flag=True, help="Apply even when lag is high in strict mode")
def retention(
    streams: tuple[str, ...],
    all_tables: bool,
    preset: str | None,
    hours: float | None,
    strict: bool,
    force: bool,
) -> None:
    """
    Set event retention on CDC topics.

    STREAMS are table names (expanded to their CDC topic) or full topic names.
    New retention applies to events written after the change.
    """
    setup_logging(log_format="text")
    kafka = get_settings().kafka

    if (preset is None) == (hours is None):
        raise click.UsageError("Give exactly one of --preset or --hours")

    names = list(default_registry().names()) if all_tables else list(streams)
    if not names:
        raise click.UsageError("Name at least one stream or use --all")
    topics = [name if "." in name else kafka.topic_for(name) for name in names]

    duration = RetentionPreset.from_name(preset).value if preset else timedelta(hours=hours)
    console.print(f"\n[bold blue]Setting retention to {duration} on {len(topics)} topics[/bold blue]\n")

    backend = KafkaRetentionBackend()
    observer = KafkaLagObserver()
    manager = RetentionManager(backend, lag_observer=observer, strict=strict)
    try:
        manager.validate(duration)
    except RetentionError as e:
        raise click.BadParameter(str(e), param_hint="--hours") from e

    try:
        succeeded, failed = manager.apply_all(topics, duration, force=force)
    finally:
        backend.close()
        observer.close()

    for topic in succeeded:
        console.print(f"  [green]✓ {topic}[/green]")
    for topic in failed:
        console.print(f"  [red]✗ {topic}[/red]")

    console.print()
    if failed:
        console.print(f"[yellow]⚠ Configured {len(succeeded)} out of {len(topics)} topics[/yellow]\n")
        raise SystemExit(1)
    console.print(f"[bold green]✓ All {len(topics)} topics configured[/bold green]\n")
