"""Unit tests for the CLI commands."""

from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep commands from replacing the root log handlers."""
    for module in ("load", "retention", "lag"):
        monkeypatch.setattr(f"cdc_engine.cli.commands.{module}.setup_logging", lambda **kwargs: None)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.mark.unit
class TestGenerateCommand:
    """Test synthetic data generation."""

    def test_writes_tsv(self, runner, tmp_path):
        """Test rows are written with a header line."""
        from cdc_engine.cli.main import cli

        output = tmp_path / "ratings.tsv"
        result = runner.invoke(
            cli, ["generate", "title_ratings", "--count", "25", "--output", str(output), "--seed", "7"]
        )

        assert result.exit_code == 0, result.output
        lines = output.read_text(encoding="utf-8").splitlines()
        assert lines[0] == "tconst\taverageRating\tnumVotes"
        assert len(lines) == 26

    def test_unknown_table(self, runner):
        """Test an unknown table is a usage error."""
        from cdc_engine.cli.main import cli

        result = runner.invoke(cli, ["generate", "no_such_table"])

        assert result.exit_code == 2


@pytest.mark.unit
class TestLoadCommand:
    """Test the bulk load command end to end over the in-memory transport."""

    @pytest.mark.parametrize("table", ["title_ratings", "title_akas", "title_principals"])
    def test_load_and_verify(self, runner, tmp_path, table):
        """Test a generated file loads in chunks and verifies against the active view."""
        from cdc_engine.cli.main import cli

        output = tmp_path / f"{table}.tsv.gz"
        runner.invoke(cli, ["generate", table, "--count", "45", "--output", str(output), "--seed", "3"])

        result = runner.invoke(
            cli,
            [
                "load", table, str(output),
                "--chunk-size", "20",
                "--partitions", "2",
                "--no-wait-for-cdc",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Load complete" in result.output
        assert "failed" not in result.output

    def test_missing_file(self, runner, tmp_path):
        """Test a missing input file is rejected."""
        from cdc_engine.cli.main import cli

        result = runner.invoke(cli, ["load", "title_ratings", str(tmp_path / "missing.tsv")])

        assert result.exit_code == 2


@pytest.mark.unit
class TestRetentionCommand:
    """Test retention changes with mocked Kafka clients."""

    @pytest.fixture
    def kafka(self):
        with patch("cdc_engine.cli.commands.retention.KafkaRetentionBackend") as backend, patch(
            "cdc_engine.cli.commands.retention.KafkaLagObserver"
        ) as observer:
            observer.return_value.outstanding.return_value = 0
            yield backend.return_value, observer.return_value

    def test_preset_on_tables(self, runner, kafka):
        """Test table names expand to CDC topics."""
        from cdc_engine.cli.main import cli

        backend, _ = kafka
        result = runner.invoke(cli, ["retention", "title_basics", "--preset", "aggressive"])

        assert result.exit_code == 0, result.output
        backend.apply_retention.assert_called_once_with("cdc.imdb.title_basics", 3_600_000)
        backend.close.assert_called_once()

    def test_all_tables_custom_hours(self, runner, kafka):
        """Test --all applies to every topic."""
        from cdc_engine.cli.main import cli

        backend, _ = kafka
        result = runner.invoke(cli, ["retention", "--all", "--hours", "12"])

        assert result.exit_code == 0, result.output
        assert backend.apply_retention.call_count == 7

    def test_out_of_range_hours(self, runner, kafka):
        """Test hours outside 1..168 are rejected before any change."""
        from cdc_engine.cli.main import cli

        backend, _ = kafka
        result = runner.invoke(cli, ["retention", "title_basics", "--hours", "200"])

        assert result.exit_code == 2
        backend.apply_retention.assert_not_called()

    def test_preset_and_hours_exclusive(self, runner, kafka):
        """Test exactly one of --preset and --hours is required."""
        from cdc_engine.cli.main import cli

        result = runner.invoke(cli, ["retention", "title_basics", "--preset", "balanced", "--hours", "4"])

        assert result.exit_code == 2

    def test_partial_failure_exit_code(self, runner, kafka):
        """Test a failed topic makes the command exit non-zero."""
        from cdc_engine.cli.main import cli
        from cdc_engine.common.errors import RetentionError

        backend, _ = kafka
        backend.apply_retention.side_effect = [None, RetentionError("rejected")]
        result = runner.invoke(cli, ["retention", "title_basics", "title_ratings", "--hours", "4"])

        assert result.exit_code == 1
        assert "Configured 1 out of 2 topics" in result.output


@pytest.mark.unit
class TestLagCommand:
    """Test the lag watcher."""

    def test_watch_until_below_threshold(self, runner):
        """Test samples print until lag drops below the threshold."""
        from cdc_engine.cli.main import cli

        observer = MagicMock()
        observer.outstanding.side_effect = [5_000, 2_000, 0]
        with patch("cdc_engine.cli.commands.lag.KafkaLagObserver", return_value=observer):
            result = runner.invoke(cli, ["lag", "title_ratings", "--threshold", "1", "--interval", "0"])

        assert result.exit_code == 0, result.output
        assert "Baseline measurement" in result.output
        assert "Lag below 1" in result.output
        observer.outstanding.assert_called_with("cdc.imdb.title_ratings")

    def test_warns_when_lag_stalls(self, runner):
        """Test a lag that stops dropping is flagged while watching."""
        from cdc_engine.cli.main import cli

        observer = MagicMock()
        observer.outstanding.side_effect = [5_000, 5_000, 5_000]
        with patch("cdc_engine.cli.commands.lag.KafkaLagObserver", return_value=observer):
            result = runner.invoke(
                cli,
                [
                    "lag", "title_ratings", "--threshold", "1", "--interval", "0",
                    "--max-samples", "3", "--stall-after", "0",
                ],
            )

        assert result.exit_code == 0, result.output
        assert "may be stalled" in result.output
        assert "Lag below" not in result.output
