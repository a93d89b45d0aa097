"""Lag command: watch consumer lag of a CDC topic."""

import click
from rich.console import Console

from cdc_engine.common.config import get_settings
from cdc_engine.common.utils import format_count, format_duration
from cdc_engine.loading import ConsoleLagObserver, KafkaLagObserver
from cdc_engine.observability.logging_config import setup_logging
from cdc_engine.validation import ValidationStatus
from cdc_engine.validation.lag_monitor import LagMonitor

console = Console()


@click.command()
@click.argument("stream")
@click.option("--threshold", "-t", type=int, default=1_000_000, show_default=True,
              help="Stop once lag drops below this many messages")
@click.option("--interval", "-i", type=float, default=30.0, show_default=True,
              help="Seconds between samples")
@click.option("--console-url", help="Read lag from the Redpanda Console API instead of Kafka")
@click.option("--max-samples", type=int, help="Stop after this many samples")
@click.option("--stall-after", type=float, default=300.0, show_default=True,
              help="Warn when lag has not dropped for this many seconds")
def lag(
    stream: str,
    threshold: int,
    interval: float,
    console_url: str | None,
    max_samples: int | None,
    stall_after: float,
) -> None:
    """
    Watch consumer lag on STREAM until it drops below the threshold.

    STREAM is a table name (expanded to its CDC topic) or a full topic name.
    """
    setup_logging(log_format="text", log_level="WARNING")
    kafka = get_settings().kafka
    topic = stream if "." in stream else kafka.topic_for(stream)

    if console_url or kafka.console_url:
        observer = ConsoleLagObserver(console_url, group_id=kafka.group_id)
    else:
        observer = KafkaLagObserver()

    console.print(f"\n[bold blue]CDC lag monitor: {topic}[/bold blue] (group {kafka.group_id})\n")
    monitor = LagMonitor(observer, threshold_messages=threshold)

    started = None
    last = None
    try:
        for sample in monitor.watch(topic, interval=interval, max_samples=max_samples):
            started = sample.taken_at if started is None else started
            last = sample
            if sample.is_baseline:
                console.print(f"  Lag: {format_count(sample.lag)} | Baseline measurement")
            else:
                rate = f"{sample.rate_per_second:,.0f}/s" if sample.rate_per_second is not None else "n/a"
                console.print(
                    f"  Lag: {format_count(sample.lag)} ({sample.lag_change:+,}) | Rate: {rate}"
                )
                staleness = monitor.check_staleness(topic, stall_seconds=stall_after)
                if staleness.status is ValidationStatus.WARNING:
                    console.print(f"  [yellow]⚠ {staleness.message}[/yellow]")
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")

    if last is not None and last.lag is not None and last.lag < threshold:
        console.print(
            f"\n[bold green]✓ Lag below {format_count(threshold)} "
            f"after {format_duration(last.taken_at - started)}[/bold green]\n"
        )
