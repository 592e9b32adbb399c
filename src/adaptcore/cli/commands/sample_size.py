from __future__ import annotations

from dataclasses import asdict
from typing import Any

from adaptcore.cli.bundle import prepare_out_dir, write_results_json, write_run_meta
from adaptcore.sequential import (
    Design,
    build_working_test,
    compute_power_global,
    compute_power_local,
    compute_sample_size_global,
    compute_sample_size_local,
)


def _working_test(args):
    return build_working_test(
        overall_sig_level=float(getattr(args, "alpha", 0.025)),
        work_beta=float(getattr(args, "work_beta", 0.1)),
        min_effect_size=float(getattr(args, "min_effect_size", 1.0)),
        basic_schedule_num=int(getattr(args, "basic_schedule_num", 8)),
        basic_schedule_power=float(getattr(args, "basic_schedule_power", 2.0)),
        simpson_div=int(getattr(args, "simpson_div", 16)),
    )


def _write(args, command: str, design: Design, result) -> int:
    out_dir = prepare_out_dir(getattr(args, "out", None), command=command)
    write_run_meta(out_dir, args, extra={"command": command, "design": design.value})
    payload: dict[str, Any] = {
        "command": command,
        "design": design.value,
        "estimates": asdict(result),
        "warnings": list(result.warnings),
    }
    write_results_json(out_dir, payload)
    return 0


def cmd_sample_size(args) -> int:
    design = Design(str(getattr(args, "design", "local")))
    strict = not bool(getattr(args, "best_effort", False))
    common = dict(
        effect_size=float(args.effect_size),
        time=float(getattr(args, "time", 0.0)),
        target_power=float(getattr(args, "target_power", 0.8)),
        strict=strict,
    )
    if design is Design.LOCAL:
        res = compute_sample_size_local(
            overall_sig_level=float(getattr(args, "alpha", 0.025)),
            min_effect_size=float(getattr(args, "min_effect_size", 1.0)),
            **common,
        )
    else:
        res = compute_sample_size_global(_working_test(args), **common)

    print(f"sample_size={res.sample_size:.6g} power={res.power:.6g}")
    return _write(args, "sample-size", design, res)


def cmd_power(args) -> int:
    design = Design(str(getattr(args, "design", "local")))
    common = dict(
        effect_size=float(args.effect_size),
        time=float(getattr(args, "time", 0.0)),
        final_time=float(args.final_time),
    )
    if design is Design.LOCAL:
        res = compute_power_local(
            overall_sig_level=float(getattr(args, "alpha", 0.025)),
            min_effect_size=float(getattr(args, "min_effect_size", 1.0)),
            **common,
        )
    else:
        res = compute_power_global(_working_test(args), **common)

    print(f"power={res.power:.6g}")
    return _write(args, "power", design, res)
