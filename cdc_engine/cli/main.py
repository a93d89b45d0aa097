"""Main CLI entry point for the CDC engine."""

import click

from cdc_engine import __version__
from cdc_engine.cli.commands.generate import generate
from cdc_engine.cli.commands.lag import lag
from cdc_engine.cli.commands.load import load
from cdc_engine.cli.commands.retention import retention


@click.group()
@click.version_option(version=__version__, prog_name="cdc-engine")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """
    CDC engine - materializes Debezium change streams into a versioned store.

    Bulk loads run in chunks gated by consumer lag; topic retention and lag
    can be managed against a Kafka/Redpanda cluster.
    """
    ctx.ensure_object(dict)


cli.add_command(load)
cli.add_command(retention)
cli.add_command(lag)
cli.add_command(generate)


if __name__ == "__main__":
    cli()
