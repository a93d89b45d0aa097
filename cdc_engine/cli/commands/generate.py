"""Generate command for creating synthetic IMDb data."""

from pathlib import Path

import click
from rich.console import Console

from cdc_engine.data_generators.generators import GENERATORS, generator_for, write_tsv

console = Console()


@click.command()
@click.argument("table", type=click.Choice(sorted(GENERATORS)))
@click.option("--count", "-c", default=1000, show_default=True, help="Number of rows to generate")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path),
              help="Output file (default: TABLE.tsv)")
@click.option("--seed", type=int, help="Random seed for reproducibility")
def generate(table: str, count: int, output: Path | None, seed: int | None) -> None:
    """
    Generate synthetic rows for TABLE as an IMDb-style TSV.

    The file can be fed to `cdc-engine load`. Use a .gz suffix for gzip output.
    """
    output = output or Path(f"{table}.tsv")
    console.print(f"\n[bold blue]Generating {count} {table} rows[/bold blue]\n")

    try:
        written = write_tsv(output, generator_for(table, seed=seed), count)
    except OSError as e:
        console.print(f"[red]✗ Failed to write {output}: {e}[/red]")
        raise click.Abort()

    console.print(f"[bold green]✓ Wrote {written} rows to {output}[/bold green]\n")
