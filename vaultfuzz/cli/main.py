"""vaultfuzz CLI — stateful property fuzzing for the reference vault.

Usage:
    vaultfuzz run                   Run a fuzzing campaign
    vaultfuzz replay <report.json>  Re-execute failing sequences from a report
    vaultfuzz config                Show current configuration
    vaultfuzz --version             Print version

Examples:
    vaultfuzz run --sequences 50 --steps 200 --seed 7
    vaultfuzz run --weights deposit=5,request_withdrawal=3,time_jump=1 --format json -o run.json
    vaultfuzz replay run.json --full
"""

from __future__ import annotations

import argparse
import json
import random
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from vaultfuzz import __version__
from vaultfuzz.core.config import Settings, get_settings
from vaultfuzz.core.errors import ConfigurationError, HarnessError, ReplayError
from vaultfuzz.core.logging import setup_logging
from vaultfuzz.core.types import CampaignReport, SequenceReport
from vaultfuzz.fuzzer.driver import DriverConfig, HandlerCall, SequenceDriver, run_campaign


# ── Coloured output helpers ──────────────────────────────────────────────────

_RESET = "\033[0m"
_BOLD = "\033[1m"
_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"


def _c(text: str, code: str) -> str:
    return f"{code}{text}{_RESET}"


# ── Banner ───────────────────────────────────────────────────────────────────

BANNER = rf"""
{_BOLD}{_CYAN}__   ____ _ _   _| | |_ / _|_   _ ________
\ \ / / _` | | | | | __| |_| | | |_  /_  /
 \ V / (_| | |_| | | |_|  _| |_| |/ / / /
  \_/ \__,_|\__,_|_|\__|_|  \__,_/___/___|{_RESET}
  {_DIM}Stateful vault fuzzer v{__version__}{_RESET}
"""


# ── CLI argument parser ─────────────────────────────────────────────────────


def parse_weights(text: str) -> dict[str, int]:
    """Parse ``name=weight,name=weight`` into a mapping."""
    weights: dict[str, int] = {}
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        name, sep, value = part.partition("=")
        if not sep:
            raise argparse.ArgumentTypeError(f"expected name=weight, got '{part}'")
        try:
            weights[name.strip()] = int(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"weight for '{name}' is not an integer") from None
    return weights


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vaultfuzz",
        description="vaultfuzz — stateful property fuzzing for a yield-bearing vault",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--no-banner", action="store_true", help="Suppress the startup banner")
    parser.add_argument("--quiet", "-q", action="store_true", help="Minimal output")

    sub = parser.add_subparsers(dest="command")

    # ── run ──────────────────────────────────────────────────────────────────
    run_p = sub.add_parser("run", help="Run a fuzzing campaign")
    run_p.add_argument("--sequences", "-n", type=int, help="Number of sequences")
    run_p.add_argument("--steps", "-s", type=int, help="Steps per sequence")
    run_p.add_argument("--seed", type=int, help="Base seed (sequence i uses seed + i)")
    run_p.add_argument("--workers", "-w", type=int, help="Parallel worker processes")
    run_p.add_argument(
        "--weights",
        type=parse_weights,
        help="Handler selection weights, e.g. deposit=5,time_jump=1",
    )
    run_p.add_argument("--no-shrink", action="store_true", help="Report failures without minimizing")
    run_p.add_argument("--no-settle", action="store_true", help="Skip the settlement hook")
    run_p.add_argument("--trace", action="store_true", help="Record a per-operation trace")
    run_p.add_argument(
        "--format",
        "-f",
        default="table",
        choices=["table", "json"],
        help="Output format (default: table)",
    )
    run_p.add_argument("--output", "-o", help="Write the JSON report to a file")

    # ── replay ───────────────────────────────────────────────────────────────
    replay_p = sub.add_parser("replay", help="Re-execute failing sequences from a JSON report")
    replay_p.add_argument("report", help="Path to a report written by 'run --output'")
    replay_p.add_argument("--sequence", help="Only replay this sequence id")
    replay_p.add_argument(
        "--full", action="store_true", help="Replay the full sequence, not the minimized one"
    )

    # ── config ───────────────────────────────────────────────────────────────
    sub.add_parser("config", help="Show current configuration")

    return parser


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    overrides: dict[str, Any] = {}
    if args.sequences is not None:
        overrides["sequences"] = args.sequences
    if args.steps is not None:
        overrides["steps_per_sequence"] = args.steps
    if args.seed is not None:
        overrides["seed"] = args.seed
    if args.workers is not None:
        overrides["workers"] = args.workers
    if args.weights is not None:
        overrides["handler_weights"] = args.weights
    if args.no_shrink:
        overrides["enable_shrinking"] = False
    if args.no_settle:
        overrides["enable_settlement"] = False
    if args.trace:
        overrides["trace"] = True
    if not overrides:
        return settings
    try:
        return Settings(**{**settings.model_dump(), **overrides})
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


# ── Run command ──────────────────────────────────────────────────────────────


def _format_call(call: Any) -> str:
    args = ", ".join(str(v) if v < 10**12 else f"{v:#x}" for v in call.raw_arguments)
    who = f" as {call.chosen_actor}" if call.chosen_actor else ""
    return f"{call.handler_id}({args}){who}"


def _print_sequence(report: SequenceReport, quiet: bool = False) -> None:
    if report.passed:
        badge = _c(" PASS ", _GREEN + _BOLD)
    else:
        badge = _c(" FAIL ", _RED + _BOLD)
    extra = _c("  (timed out)", _YELLOW) if report.timed_out else ""
    print(
        f"  {badge} {report.sequence_id}  seed={report.seed}  "
        f"steps={report.steps_executed}  ok={report.successes}  "
        f"declined={report.declines}{extra}"
    )
    if report.failure is None:
        return

    failure = report.failure
    where = "settlement" if failure.during_settlement else f"step {failure.step}"
    what = ", ".join(failure.property_ids) or failure.revert_code or "exception"
    print(f"       {_c(failure.kind.value, _RED)} at {where}: {what}")
    if failure.message and not quiet:
        print(f"       {_DIM}{failure.message[:300]}{_RESET}")
    if report.minimal_calls is not None:
        print(f"       {_BOLD}Minimal sequence ({len(report.minimal_calls)} calls):{_RESET}")
        for i, call in enumerate(report.minimal_calls):
            print(f"       {_DIM}{i:>3}.{_RESET} {_format_call(call)}")
    if report.trace and not quiet:
        print(f"       {_BOLD}Trace:{_RESET}")
        for line in report.trace:
            print(f"       {_DIM}{line}{_RESET}")


def _print_table(report: CampaignReport, quiet: bool = False) -> None:
    if not quiet:
        print(f"\n{_BOLD}Campaign complete{_RESET}")
        status = _c(f"{report.passed} passed", _GREEN)
        if report.failed:
            status += "  " + _c(f"{report.failed} failed", _RED)
        print(f"  {status}  |  Duration: {report.duration_seconds:.1f}s\n")

    for sequence in report.sequences:
        if quiet and sequence.passed:
            continue
        _print_sequence(sequence, quiet=quiet)
    print()


def _run_campaign(args: argparse.Namespace, settings: Settings) -> int:
    """Execute a campaign and print results."""
    settings = _apply_overrides(settings, args)
    config = DriverConfig.from_settings(settings)
    base_seed = settings.seed if settings.seed is not None else random.SystemRandom().randrange(2**32)
    seeds = [base_seed + i for i in range(settings.sequences)]

    if not args.quiet:
        print(
            f"  Running {_c(str(len(seeds)), _CYAN)} sequences × {config.steps} steps "
            f"from seed {_c(str(base_seed), _CYAN)}…"
        )

    report = run_campaign(config, seeds, workers=settings.workers)
    output = json.dumps(report.to_dict(), indent=2)

    if args.format == "table":
        _print_table(report, quiet=args.quiet)
    elif not args.output:
        print(output)

    if args.output:
        Path(args.output).write_text(output)
        if not args.quiet:
            print(f"  Written to {_c(args.output, _CYAN)}")

    return 1 if report.failed else 0


# ── Replay command ───────────────────────────────────────────────────────────


def load_sequences(path: str | Path) -> list[SequenceReport]:
    """Load sequence reports from a campaign report or a single sequence report."""
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, ValueError) as exc:
        raise ReplayError(f"cannot read report '{path}': {exc}") from exc

    raw = data.get("sequences", [data]) if isinstance(data, dict) else data
    try:
        return [SequenceReport.model_validate(item) for item in raw]
    except ValidationError as exc:
        raise ReplayError(f"malformed report '{path}': {exc}") from exc


def _run_replay(args: argparse.Namespace, settings: Settings) -> int:
    sequences = load_sequences(args.report)
    if args.sequence:
        sequences = [s for s in sequences if s.sequence_id == args.sequence]
        if not sequences:
            raise ReplayError(f"sequence '{args.sequence}' not found in {args.report}")
    else:
        sequences = [s for s in sequences if not s.passed]

    if not sequences:
        print(_c("  ✓ No failing sequences to replay.", _GREEN))
        return 0

    driver = SequenceDriver(DriverConfig.from_settings(settings))
    reproduced = 0
    for sequence in sequences:
        recorded = sequence.calls if args.full or sequence.minimal_calls is None else sequence.minimal_calls
        calls = [HandlerCall.from_schema(c) for c in recorded]
        settle_at_end = sequence.failure.during_settlement if sequence.failure else settings.enable_settlement
        execution = driver.replay(calls, settle_at_end=settle_at_end)

        if execution.failure is None:
            print(f"  {_c(' PASS ', _GREEN + _BOLD)} {sequence.sequence_id}  ({len(calls)} calls)")
            continue
        reproduced += 1
        failure = execution.failure
        what = ", ".join(failure.property_ids) or failure.revert_code or "exception"
        print(
            f"  {_c(' FAIL ', _RED + _BOLD)} {sequence.sequence_id}  "
            f"({len(calls)} calls) {failure.kind.value} at step {failure.step}: {what}"
        )
        if not args.quiet:
            print(f"       {_DIM}{failure.message[:300]}{_RESET}")

    return 1 if reproduced else 0


# ── Config command ───────────────────────────────────────────────────────────


def _run_config() -> int:
    """Print current settings."""
    s = get_settings()
    print(f"\n{_BOLD}vaultfuzz Configuration{_RESET}\n")
    for field_name in sorted(type(s).model_fields.keys()):
        val = getattr(s, field_name, "")
        print(f"  {_DIM}{field_name}:{_RESET}  {val}")
    print()
    return 0


# ── Entrypoint ───────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"vaultfuzz {__version__}")
        return 0

    if not args.no_banner:
        print(BANNER, file=sys.stderr)

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "config":
        return _run_config()

    settings = get_settings()
    setup_logging(settings.app_env, "WARNING" if args.quiet else settings.log_level)

    try:
        if args.command == "run":
            return _run_campaign(args, settings)
        if args.command == "replay":
            return _run_replay(args, settings)
    except HarnessError as exc:
        print(_c(f"Error: {exc}", _RED), file=sys.stderr)
        return 2

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
