from __future__ import annotations

from typing import Any, Optional

from adaptcore.cli.bundle import prepare_out_dir, write_results_json, write_run_meta, write_table
from adaptcore.sequential import Design, adaptive_analysis_norm_global, adaptive_analysis_norm_local
from adaptcore.sequential.preprocess import parse_float_csv, read_trace_csv


def _load_trace(args) -> tuple[list[float], list[float]]:
    if getattr(args, "input", None):
        return read_trace_csv(
            str(args.input),
            time_col=str(getattr(args, "time_col", "time")),
            stat_col=str(getattr(args, "stat_col", "stat")),
        )
    if not getattr(args, "times", None) or not getattr(args, "stats", None):
        raise ValueError("analyze requires --input or both --times and --stats")
    return parse_float_csv(args.times), parse_float_csv(args.stats)


def _optional_float(args, name: str) -> Optional[float]:
    v = getattr(args, name, None)
    return None if v is None else float(v)


def cmd_analyze(args) -> int:
    design = Design(str(getattr(args, "design", "local")))
    times, stats = _load_trace(args)

    alpha = float(getattr(args, "alpha", 0.025))
    rho = float(getattr(args, "min_effect_size", 1.0))
    final = bool(getattr(args, "final", False))

    if design is Design.LOCAL:
        res = adaptive_analysis_norm_local(
            overall_sig_level=alpha,
            min_effect_size=rho,
            times=times,
            stats=stats,
            final_analysis=final,
        )
    else:
        costs = parse_float_csv(args.costs) if getattr(args, "costs", None) else None
        res = adaptive_analysis_norm_global(
            overall_sig_level=alpha,
            min_effect_size=rho,
            times=times,
            stats=stats,
            costs=costs,
            final_analysis=final,
            estimate=bool(getattr(args, "estimate", False)),
            work_beta=float(getattr(args, "work_beta", 0.1)),
            cost_type_1_err=float(getattr(args, "cost_type_1_err", 0.0)),
            cost_type_2_err=_optional_float(args, "cost_type_2_err"),
            basic_schedule_num=int(getattr(args, "basic_schedule_num", 8)),
            basic_schedule_power=float(getattr(args, "basic_schedule_power", 2.0)),
            simpson_div=int(getattr(args, "simpson_div", 16)),
        )

    out_dir = prepare_out_dir(getattr(args, "out", None), command="analyze")
    write_run_meta(out_dir, args, extra={"command": "analyze", "design": design.value})

    artifacts: dict[str, Any] = {"tables": []}
    artifacts["tables"].append(write_table(out_dir, "look_table", res.to_frame()))

    payload: dict[str, Any] = {
        "command": "analyze",
        **res.to_dict(),
        "decision": {
            "rejected": res.rejected,
            "stop_analysis": res.stop_analysis,
        },
        "artifacts": artifacts,
    }
    write_results_json(out_dir, payload)

    print(f"state={res.state.value} rejected={res.rejected} out={out_dir}")
    return 0
