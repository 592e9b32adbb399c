from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import yaml

from adaptcore.cli.commands.analyze import cmd_analyze
from adaptcore.cli.commands.sample_size import cmd_power, cmd_sample_size
from adaptcore.cli.commands.simulate import cmd_simulate


def _fail(msg: str) -> int:
    print(f"[adaptcore][error] {msg}", file=sys.stderr)
    return 2


def _as_args(d: dict[str, Any]) -> SimpleNamespace:
    # cmd_* functions expect attribute access (args.foo)
    return SimpleNamespace(**d)


def _load_yaml(path: str) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    data = yaml.safe_load(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping (YAML dict).")
    return data


def _csv(v: Any) -> str | None:
    # YAML lists and "a,b,c" strings are both accepted
    if v is None:
        return None
    if isinstance(v, (list, tuple)):
        return ",".join(str(x) for x in v)
    return str(v)


def _design_params(params: dict[str, Any]) -> dict[str, Any]:
    return {
        "design": str(params.get("design", "local")),
        "alpha": float(params.get("alpha", 0.025)),
        "min_effect_size": float(params.get("min_effect_size", 1.0)),
        "work_beta": float(params.get("work_beta", 0.1)),
        "basic_schedule_num": int(params.get("basic_schedule_num", 8)),
        "basic_schedule_power": float(params.get("basic_schedule_power", 2.0)),
        "simpson_div": int(params.get("simpson_div", 16)),
    }


def cmd_run_config(args) -> int:
    cfg_path = str(args.config)
    cfg = _load_yaml(cfg_path)

    command = str(cfg.get("command", "")).strip()
    if not command:
        return _fail("Missing required field: command")

    params = cfg.get("params", {}) or {}
    if not isinstance(params, dict):
        return _fail("Field `params` must be a mapping (YAML dict).")

    base_args: dict[str, Any] = {"out": cfg.get("out", None), **_design_params(params)}

    if command == "analyze":
        merged = {
            **base_args,
            "input": cfg.get("input", None),
            "time_col": params.get("time_col", "time"),
            "stat_col": params.get("stat_col", "stat"),
            "times": _csv(params.get("times")),
            "stats": _csv(params.get("stats")),
            "costs": _csv(params.get("costs")),
            "final": bool(params.get("final", False)),
            "estimate": bool(params.get("estimate", False)),
            "cost_type_1_err": float(params.get("cost_type_1_err", 0.0)),
            "cost_type_2_err": params.get("cost_type_2_err"),
        }
        if merged["input"] is None and (merged["times"] is None or merged["stats"] is None):
            return _fail("analyze requires `input` or params.times and params.stats")
        return int(cmd_analyze(_as_args(merged)))

    if command in {"sample-size", "sample_size"}:
        if params.get("effect_size") is None:
            return _fail("sample-size requires params.effect_size")
        merged = {
            **base_args,
            "effect_size": float(params["effect_size"]),
            "time": float(params.get("time", 0.0)),
            "target_power": float(params.get("target_power", 0.8)),
            "best_effort": bool(params.get("best_effort", False)),
        }
        return int(cmd_sample_size(_as_args(merged)))

    if command == "power":
        miss = [k for k in ("effect_size", "final_time") if params.get(k) is None]
        if miss:
            return _fail(f"power requires params: {miss}")
        merged = {
            **base_args,
            "effect_size": float(params["effect_size"]),
            "time": float(params.get("time", 0.0)),
            "final_time": float(params["final_time"]),
        }
        return int(cmd_power(_as_args(merged)))

    if command == "simulate":
        if params.get("times") is None:
            return _fail("simulate requires params.times")
        merged = {
            **base_args,
            "times": _csv(params.get("times")),
            "drift": float(params.get("drift", 0.0)),
            "n_paths": int(params.get("n_paths", 1000)),
            "seed": int(params.get("seed", 42)),
            "final": bool(params.get("final", False)),
        }
        return int(cmd_simulate(_as_args(merged)))

    return _fail(f"Unknown command: {command}")
