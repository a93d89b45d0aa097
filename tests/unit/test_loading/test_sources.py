"""Unit tests for bulk sources."""

import gzip

import pytest

TSV = "tconst\taverageRating\tnumVotes\ntt0000001\t5.7\t1965\ntt0000002\t\\N\t264\n\n"


@pytest.mark.unit
class TestReadTsv:
    """Test TSV reading."""

    def test_reads_rows_with_null_marker(self, tmp_path):
        """Test \\N becomes None and blank lines are skipped."""
        from cdc_engine.loading import read_tsv

        path = tmp_path / "ratings.tsv"
        path.write_text(TSV, encoding="utf-8")

        rows = list(read_tsv(path))

        assert rows == [
            {"tconst": "tt0000001", "averageRating": "5.7", "numVotes": "1965"},
            {"tconst": "tt0000002", "averageRating": None, "numVotes": "264"},
        ]

    def test_reads_gzip(self, tmp_path):
        """Test .gz files are decompressed transparently."""
        from cdc_engine.loading import count_data_rows, read_tsv

        path = tmp_path / "ratings.tsv.gz"
        with gzip.open(path, "wt", encoding="utf-8") as handle:
            handle.write(TSV)

        assert len(list(read_tsv(path))) == 2
        assert count_data_rows(path) == 2

    def test_quotes_are_literal(self, tmp_path):
        """Test quote characters are kept as data."""
        from cdc_engine.loading import read_tsv

        path = tmp_path / "akas.tsv"
        path.write_text('titleId\ttitle\ntt1\t"Quoted" Title\n', encoding="utf-8")

        assert next(read_tsv(path))["title"] == '"Quoted" Title'

    def test_empty_file(self, tmp_path):
        """Test a file without a header yields nothing."""
        from cdc_engine.loading import count_data_rows, read_tsv

        path = tmp_path / "empty.tsv"
        path.write_text("", encoding="utf-8")

        assert list(read_tsv(path)) == []
        assert count_data_rows(path) == 0


@pytest.mark.unit
class TestRowsToEvents:
    """Test wrapping rows into change events."""

    def test_snapshot_envelopes(self):
        """Test rows become snapshot envelopes with a timestamp."""
        from cdc_engine.loading import rows_to_events

        events = list(rows_to_events([{"key": "k1"}], "ratings", clock_ms=lambda: 42))

        assert events == [
            {
                "op": "r",
                "before": None,
                "after": {"key": "k1"},
                "source": {"table": "ratings", "ts_ms": 42, "sequence": 0},
                "ts_ms": 42,
            }
        ]

    def test_delete_envelopes_use_before(self):
        """Test delete envelopes carry the row as the before image."""
        from cdc_engine.loading import rows_to_events
        from cdc_engine.models import Operation

        event = next(rows_to_events([{"key": "k1"}], "ratings", operation=Operation.DELETE))

        assert event["op"] == "d"
        assert event["before"] == {"key": "k1"}
        assert event["after"] is None

    def test_envelopes_decode(self, decoder):
        """Test generated envelopes are accepted by the decoder."""
        from cdc_engine.loading import rows_to_events

        rows = [{"key": "k1", "rating": "7.5", "votes": None}]
        event = decoder.decode(next(rows_to_events(rows, "ratings", clock_ms=lambda: 1)))

        assert decoder.extract_payload(event)["rating"] == 7.5
        assert decoder.extract_payload(event)["votes"] == 0
