from __future__ import annotations

import argparse
import logging
import sys

from adaptcore.cli.commands.analyze import cmd_analyze
from adaptcore.cli.commands.run_config import cmd_run_config
from adaptcore.cli.commands.sample_size import cmd_power, cmd_sample_size
from adaptcore.cli.commands.simulate import cmd_simulate
from adaptcore.cli.commands.version import cmd_version
from adaptcore.sequential.numerics import ConvergenceError


def _add_design_args(sp: argparse.ArgumentParser) -> None:
    sp.add_argument("--design", choices=["local", "global"], default="local")
    sp.add_argument("--alpha", type=float, default=0.025, help="Overall one-sided significance level.")
    sp.add_argument("--min-effect-size", type=float, default=1.0)
    sp.add_argument("--work-beta", type=float, default=0.1, help="Type II error of the global working test.")
    sp.add_argument("--basic-schedule-num", type=int, default=8)
    sp.add_argument("--basic-schedule-power", type=float, default=2.0)
    sp.add_argument("--simpson-div", type=int, default=16)
    sp.add_argument("--out", default=None, help="Output bundle directory.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="adaptcore", description="Adaptive sequential design CLI.")
    p.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ...).")
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("version", help="Print installed package version.")
    sp.set_defaults(func=cmd_version)

    sp = sub.add_parser("analyze", help="Analyze accumulated statistics of an adaptive design.")
    _add_design_args(sp)
    sp.add_argument("--times", default=None, help="Comma-separated analysis times (information).")
    sp.add_argument("--stats", default=None, help="Comma-separated accumulated statistics.")
    sp.add_argument("--input", default=None, help="CSV with one row per analysis.")
    sp.add_argument("--time-col", default="time")
    sp.add_argument("--stat-col", default="stat")
    sp.add_argument("--costs", default=None, help="Comma-separated stage costs of an earlier analysis (global).")
    sp.add_argument("--cost-type-1-err", type=float, default=0.0)
    sp.add_argument("--cost-type-2-err", type=float, default=None)
    sp.add_argument("--final", action="store_true", help="Treat the latest analysis as the final one.")
    sp.add_argument("--estimate", action="store_true", help="Add p-value and effect estimates (global).")
    sp.set_defaults(func=cmd_analyze)

    sp = sub.add_parser("sample-size", help="Final analysis time reaching a target power.")
    _add_design_args(sp)
    sp.add_argument("--effect-size", type=float, required=True)
    sp.add_argument("--time", type=float, default=0.0, help="Time of the most recent interim analysis.")
    sp.add_argument("--target-power", type=float, default=0.8)
    sp.add_argument("--best-effort", action="store_true", help="Return the last iterate instead of failing.")
    sp.set_defaults(func=cmd_sample_size)

    sp = sub.add_parser("power", help="Power of a final analysis at a given time.")
    _add_design_args(sp)
    sp.add_argument("--effect-size", type=float, required=True)
    sp.add_argument("--time", type=float, default=0.0)
    sp.add_argument("--final-time", type=float, required=True)
    sp.set_defaults(func=cmd_power)

    sp = sub.add_parser("simulate", help="Simulate Brownian statistics and analyze each path.")
    _add_design_args(sp)
    sp.add_argument("--times", required=True)
    sp.add_argument("--drift", type=float, default=0.0)
    sp.add_argument("--n-paths", type=int, default=1000)
    sp.add_argument("--seed", type=int, default=42)
    sp.add_argument("--final", action="store_true")
    sp.set_defaults(func=cmd_simulate)

    sp = sub.add_parser("run-config", help="Run a command described by a YAML file.")
    sp.add_argument("--config", required=True)
    sp.set_defaults(func=cmd_run_config)

    return p


def main(argv: list[str] | None = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(args.func(args))
    except (ValueError, ConvergenceError, FileNotFoundError) as e:
        print(f"[adaptcore][error] {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
