"""Tests for the vaultfuzz CLI (vaultfuzz/cli/main.py).

Covers:
- Argument parsing (run, replay, config, version)
- Weight parsing
- Campaign output (table, json, file)
- Replay of saved reports
- Error handling and exit codes
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from unittest.mock import patch

import pytest

from vaultfuzz.cli.main import (
    BANNER,
    _run_config,
    build_parser,
    load_sequences,
    main,
    parse_weights,
)
from vaultfuzz.core.config import get_settings
from vaultfuzz.core.errors import ReplayError


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture
def parser() -> argparse.ArgumentParser:
    return build_parser()


@pytest.fixture(autouse=True)
def _quiet_logging():
    get_settings.cache_clear()
    with patch("vaultfuzz.cli.main.setup_logging"):
        yield
    get_settings.cache_clear()


# ── Parser ───────────────────────────────────────────────────────────────


class TestBuildParser:

    def test_run_defaults(self, parser: argparse.ArgumentParser):
        args = parser.parse_args(["run"])
        assert args.command == "run"
        assert args.sequences is None
        assert args.format == "table"
        assert not args.no_shrink

    def test_run_options(self, parser: argparse.ArgumentParser):
        args = parser.parse_args(
            ["run", "-n", "3", "--steps", "40", "--seed", "9", "-w", "2",
             "--no-shrink", "--no-settle", "--trace", "-f", "json", "-o", "out.json"]
        )
        assert (args.sequences, args.steps, args.seed, args.workers) == (3, 40, 9, 2)
        assert args.no_shrink and args.no_settle and args.trace
        assert args.output == "out.json"

    def test_run_weights(self, parser: argparse.ArgumentParser):
        args = parser.parse_args(["run", "--weights", "deposit=5,time_jump=1"])
        assert args.weights == {"deposit": 5, "time_jump": 1}

    def test_replay_subcommand(self, parser: argparse.ArgumentParser):
        args = parser.parse_args(["replay", "report.json", "--full"])
        assert args.report == "report.json"
        assert args.full

    def test_config_subcommand(self, parser: argparse.ArgumentParser):
        assert parser.parse_args(["config"]).command == "config"

    def test_global_flags(self, parser: argparse.ArgumentParser):
        args = parser.parse_args(["--quiet", "--no-banner"])
        assert args.quiet and args.no_banner


class TestParseWeights:

    def test_parses_pairs(self):
        assert parse_weights(" deposit=2 , rebase=0,") == {"deposit": 2, "rebase": 0}

    def test_missing_equals(self):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_weights("deposit")

    def test_non_integer(self):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_weights("deposit=lots")


# ── Commands ─────────────────────────────────────────────────────────────


class TestRunCommand:

    def test_table_output(self, capsys):
        code = main(["--no-banner", "run", "-n", "2", "--steps", "15", "--seed", "1"])
        assert code == 0
        out = capsys.readouterr().out
        assert "2 passed" in out
        assert "PASS" in out

    def test_json_to_file(self, tmp_path: Path):
        target = tmp_path / "run.json"
        code = main(
            ["--no-banner", "--quiet", "run", "-n", "2", "--steps", "10", "--seed", "5",
             "-f", "json", "-o", str(target)]
        )
        assert code == 0
        data = json.loads(target.read_text())
        assert data["passed"] == 2
        assert [s["seed"] for s in data["sequences"]] == [5, 6]

    def test_unknown_weight_exits_2(self, capsys):
        code = main(["--no-banner", "run", "-n", "1", "--steps", "5", "--weights", "bogus=1"])
        assert code == 2
        assert "bogus" in capsys.readouterr().err

    def test_invalid_override_exits_2(self):
        assert main(["--no-banner", "run", "--workers", "0"]) == 2


class TestReplayCommand:

    def test_replay_passing_report(self, tmp_path: Path, capsys):
        target = tmp_path / "run.json"
        main(["--no-banner", "--quiet", "run", "-n", "1", "--steps", "10", "--seed", "2",
              "-f", "json", "-o", str(target)])
        capsys.readouterr()

        assert main(["--no-banner", "replay", str(target)]) == 0
        assert "No failing sequences" in capsys.readouterr().out

    def test_replay_selected_sequence(self, tmp_path: Path, capsys):
        target = tmp_path / "run.json"
        main(["--no-banner", "--quiet", "run", "-n", "1", "--steps", "10", "--seed", "2",
              "-f", "json", "-o", str(target)])
        sequence_id = json.loads(target.read_text())["sequences"][0]["sequence_id"]
        capsys.readouterr()

        assert main(["--no-banner", "replay", str(target), "--sequence", sequence_id]) == 0
        assert sequence_id in capsys.readouterr().out

    def test_replay_missing_file_exits_2(self, tmp_path: Path):
        assert main(["--no-banner", "replay", str(tmp_path / "nope.json")]) == 2

    def test_load_sequences_rejects_garbage(self, tmp_path: Path):
        target = tmp_path / "bad.json"
        target.write_text('{"sequences": [{"seed": "x"}]}')
        with pytest.raises(ReplayError):
            load_sequences(target)


# ── main() entry point ──────────────────────────────────────────────────


class TestMainEntryPoint:

    def test_version_print(self, capsys):
        assert main(["--version"]) == 0
        assert "0.1.0" in capsys.readouterr().out

    def test_no_command_shows_help(self, capsys):
        assert main(["--no-banner"]) == 0
        assert "usage" in capsys.readouterr().out

    def test_banner_shown_on_stderr(self, capsys):
        main([])
        assert "Stateful vault fuzzer" in capsys.readouterr().err
        assert "Stateful vault fuzzer" in BANNER

    @patch("vaultfuzz.cli.main._run_config")
    def test_config_dispatch(self, mock_config):
        mock_config.return_value = 0
        assert main(["--no-banner", "config"]) == 0
        mock_config.assert_called_once()

    def test_config_command_runs(self, capsys):
        assert _run_config() == 0
        out = capsys.readouterr().out
        assert "steps_per_sequence" in out
        assert "handler_weights" in out
