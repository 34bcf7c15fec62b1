"""
Command line tests - exit codes, one-line output and the shell session.
"""

import io
import json
from unittest.mock import MagicMock, patch

import pytest

from runetime.cli import main, run_shell
from runetime.commands.dispatcher import CommandDispatcher
from runetime.core.errors import (
    ConflictError,
    FatalError,
    InvalidArgumentError,
    NotInitializedError,
)


@pytest.fixture
def cli(config_file):
    """Run the CLI against the test config."""
    def invoke(*args):
        return main(["--config", str(config_file), *args])
    return invoke


def test_init(cli, capsys):
    assert cli("init") == 0
    assert capsys.readouterr().out.strip() == "Database initialized successfully."


def test_insert_and_query(cli, capsys):
    cli("init")
    capsys.readouterr()

    assert cli("insert", "1", "2024-06-01T12:00:00Z", "3.5") == 0
    assert "Data inserted: sensor_id=1, timestamp=2024-06-01T12:00:00+00:00, value=3.5" in capsys.readouterr().out

    assert cli("query", "2024-06-01T11:59:59Z", "2024-06-01T12:00:01Z") == 0
    out = capsys.readouterr().out.strip().splitlines()
    assert out == ["Timestamp: 2024-06-01T12:00:00+00:00, Sensor ID: 1, Value: 3.5"]


def test_negative_value(cli, capsys):
    cli("init")
    assert cli("insert", "2", "2024-06-01T12:00:00Z", "-3.5") == 0
    assert "value=-3.5" in capsys.readouterr().out


def test_query_without_matches(cli, capsys):
    cli("init")
    capsys.readouterr()
    assert cli("query", "2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z") == 0
    assert capsys.readouterr().out.strip() == "No readings found."


def test_duplicate_insert_exit_code(cli, capsys):
    cli("init")
    cli("insert", "1", "2024-06-01T12:00:00Z", "3.5")
    capsys.readouterr()

    assert cli("insert", "1", "2024-06-01T12:00:00Z", "4.0") == ConflictError.exit_code
    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err.startswith("Error [Conflict]:")


@pytest.mark.parametrize("args", [
    ("insert", "1", "2024-06-01T12:00:00Z", "nan"),
    ("insert", "x", "2024-06-01T12:00:00Z", "1.0"),
    ("insert", "1", "not-a-time", "1.0"),
    ("insert", "1", "2024-06-01T12:00:00Z"),
    ("insert", str(2**63), "2024-06-01T12:00:00Z", "1.0"),
    ("insert", str(2**31), "2024-06-01T12:00:00Z", "1.0"),
    ("query", "2024-06-02T00:00:00Z", "2024-06-01T00:00:00Z"),
    ("vector-add", "1"),
    ("vector-search", "1.0", "0"),
])
def test_invalid_arguments(cli, capsys, args):
    cli("init")
    capsys.readouterr()

    assert cli(*args) == InvalidArgumentError.exit_code
    assert capsys.readouterr().err.startswith("Error [InvalidArgument]:")


def test_unknown_command(cli, capsys):
    assert cli("frobnicate") == InvalidArgumentError.exit_code
    assert "Unknown command: frobnicate" in capsys.readouterr().err


def test_missing_config_is_fatal(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "missing.json"), "init"]) == FatalError.exit_code
    assert capsys.readouterr().err.startswith("Error [Fatal]: Config file not found")


def test_store_command_before_init(cli, capsys):
    assert cli("query", "2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z") == 4
    assert "runetime-db init" in capsys.readouterr().err


def test_compress_and_purge(cli, capsys):
    cli("init")
    cli("insert", "1", "2020-01-01T06:00:00Z", "1.0")
    cli("insert", "1", "2020-01-01T07:00:00Z", "3.0")
    capsys.readouterr()

    assert cli("compress") == 0
    assert capsys.readouterr().out.startswith("Data compressed successfully: days=1")

    assert cli("purge") == 0
    assert capsys.readouterr().out.startswith("Data purged: days=1, rows=2")


def test_status(cli, capsys):
    cli("init")
    cli("insert", "1", "2024-06-01T12:00:00Z", "3.5")
    capsys.readouterr()

    assert cli("status") == 0
    out = capsys.readouterr().out
    assert "Readings: 1, Buckets: 0" in out
    assert "Compression lease: free" in out
    assert "Vector index: absent, size=0" in out


@patch("runetime.core.scheduler.subprocess.Popen")
def test_daemon_commands(mock_popen, cli, capsys):
    mock_popen.return_value = MagicMock(pid=4242)

    with patch("runetime.core.scheduler._is_alive", return_value=False):
        assert cli("daemon") == 0
    assert capsys.readouterr().out.strip() == "Daemon started: PID=4242"

    with patch("runetime.core.scheduler._is_alive", return_value=False):
        assert cli("daemon-status") == 0
    assert capsys.readouterr().out.strip() == "Daemon not running."


def test_vector_state_does_not_survive_invocations(cli, capsys):
    """Without a snapshot each CLI invocation starts with an absent index."""
    assert cli("vector-add", "1", "1", "2", "3") == 0
    assert capsys.readouterr().out.strip() == "Vector added: ID=1"

    assert cli("vector-search", "1", "2", "3", "1") == NotInitializedError.exit_code
    assert capsys.readouterr().err.startswith("Error [NotInitialized]:")


def test_vector_snapshot_across_invocations(tmp_path, app_config, capsys):
    data = json.loads(app_config.model_dump_json())
    data["vector"]["snapshot_path"] = str(tmp_path / "vectors.npz")
    path = tmp_path / "snap.json"
    path.write_text(json.dumps(data), encoding="utf-8")

    assert main(["--config", str(path), "vector-add", "5", "0", "0", "0"]) == 0
    assert main(["--config", str(path), "vector-search", "0", "0", "1", "3"]) == 0
    assert "Result 0: ID=5, Distance=1.0" in capsys.readouterr().out

    assert main(["--config", str(path), "vector-reset", "--discard-snapshot"]) == 0
    assert not (tmp_path / "vectors.npz").exists()


class TestShell:
    """One dispatcher serves a whole session."""

    def test_shell_keeps_index_between_commands(self, app_config, config_file):
        script = io.StringIO(
            "vector-add 1 0 0 0\n"
            "vector-add 2 1 0 0\n"
            "vector-add 3 5 0 0\n"
            "\n"
            "vector-search 0 0 0 2\n"
            "vector-add 4 1 2\n"
            "vector-search 0 0 0 10\n"
        )
        out, err = io.StringIO(), io.StringIO()

        code = run_shell(CommandDispatcher(app_config, config_file), stdin=script, out=out, err=err)

        lines = out.getvalue().splitlines()
        assert lines[:3] == ["Vector added: ID=1", "Vector added: ID=2", "Vector added: ID=3"]
        assert lines[3:5] == ["Result 0: ID=1, Distance=0.0", "Result 1: ID=2, Distance=1.0"]
        assert len(lines[5:]) == 3
        assert err.getvalue().startswith("Error [DimensionMismatch]:")
        # Exit status reflects the last failed command
        assert code == 5

    def test_shell_stops_at_exit(self, app_config, config_file):
        script = io.StringIO("vector-reset\nexit\nvector-add 1 1\n")
        out = io.StringIO()

        assert run_shell(CommandDispatcher(app_config, config_file), stdin=script, out=out, err=io.StringIO()) == 0
        assert out.getvalue().splitlines() == ["Vector index reset."]

    def test_shell_reports_bad_quoting(self, app_config, config_file):
        err = io.StringIO()
        code = run_shell(CommandDispatcher(app_config, config_file), stdin=io.StringIO('insert "1\n'),
                         out=io.StringIO(), err=err)

        assert code == InvalidArgumentError.exit_code
        assert "Cannot parse command" in err.getvalue()

    def test_shell_via_main(self, cli, capsys, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("init\ninsert 1 2024-06-01T12:00:00Z 2.0\n"))

        assert cli("shell") == 0
        out = capsys.readouterr().out
        assert "Database initialized successfully." in out
        assert "Data inserted: sensor_id=1" in out
