"""Bulk sources: IMDb-style TSV dumps turned into change events."""

import csv
import gzip
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, TextIO, Union

from cdc_engine.decoding.extractors import NULL_MARKER
from cdc_engine.models import Operation

PathLike = Union[str, Path]


def _open_text(path: PathLike) -> TextIO:
    path = Path(path)
    if path.suffix == ".gz":
        return gzip.open(path, "rt", encoding="utf-8", newline="")
    return open(path, "r", encoding="utf-8", newline="")


def read_tsv(path: PathLike) -> Iterator[Dict[str, Optional[str]]]:
    """
    Lazily read a tab-separated file with a header line.

    IMDb dumps mark nulls with \\N and never quote fields, so quoting is
    disabled and \\N becomes None.

    Args:
        path: .tsv or .tsv.gz file

    Yields:
        One dict per data row, keyed by header column
    """
    with _open_text(path) as handle:
        reader = csv.reader(handle, delimiter="\t", quoting=csv.QUOTE_NONE)
        header = next(reader, None)
        if header is None:
            return
        for values in reader:
            if not values:
                continue
            yield {
                column: (None if value == NULL_MARKER else value)
                for column, value in zip(header, values)
            }


def count_data_rows(path: PathLike) -> int:
    """Number of data rows, excluding the header."""
    with _open_text(path) as handle:
        lines = sum(1 for line in handle if line.strip())
    return max(0, lines - 1)


def rows_to_events(
    rows: Iterable[Dict[str, Any]],
    stream: str,
    operation: Operation = Operation.SNAPSHOT,
    clock_ms: Optional[Callable[[], int]] = None,
    start_position: int = 0,
) -> Iterator[Dict[str, Any]]:
    """
    Wrap plain rows into Debezium envelopes.

    Args:
        rows: Source rows
        stream: Source table name, recorded in the envelope's source block
        operation: Operation tag (snapshot by default)
        clock_ms: Epoch-millisecond timestamp source
        start_position: Source position of the first row; each row gets the next one

    Yields:
        Envelope dicts accepted by ChangeEventDecoder
    """
    clock_ms = clock_ms or (lambda: int(time.time() * 1000))
    for position, row in enumerate(rows, start_position):
        ts_ms = clock_ms()
        image = dict(row)
        yield {
            "op": operation.value,
            "before": image if operation is Operation.DELETE else None,
            "after": None if operation is Operation.DELETE else image,
            "source": {"table": stream, "ts_ms": ts_ms, "sequence": position},
            "ts_ms": ts_ms,
        }
