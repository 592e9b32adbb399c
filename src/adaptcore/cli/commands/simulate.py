from __future__ import annotations

from typing import Any

from adaptcore.cli.bundle import prepare_out_dir, write_results_json, write_run_meta, write_table
from adaptcore.sequential import Design
from adaptcore.sequential.preprocess import parse_float_csv
from adaptcore.sequential.simulate import BrownianSimConfig, simulate_decisions


def cmd_simulate(args) -> int:
    sim_cfg = BrownianSimConfig(
        times=tuple(parse_float_csv(args.times)),
        drift=float(getattr(args, "drift", 0.0)),
        n_paths=int(getattr(args, "n_paths", 1000)),
        seed=int(getattr(args, "seed", 42)),
    )
    design = Design(str(getattr(args, "design", "local")))
    alpha = float(getattr(args, "alpha", 0.025))

    df = simulate_decisions(
        sim_cfg,
        design=design,
        overall_sig_level=alpha,
        min_effect_size=float(getattr(args, "min_effect_size", 1.0)),
        final_analysis=bool(getattr(args, "final", False)),
    )
    rate = float(df["rejected"].mean()) if len(df) else float("nan")

    out_dir = prepare_out_dir(getattr(args, "out", None), command="simulate")
    write_run_meta(out_dir, args, extra={"command": "simulate", "design": design.value})

    artifacts: dict[str, Any] = {"tables": []}
    artifacts["tables"].append(write_table(out_dir, "paths", df))

    payload: dict[str, Any] = {
        "command": "simulate",
        "inputs": {"sim_config": sim_cfg.__dict__, "design": design.value, "alpha": alpha},
        "estimates": {
            "rejection_rate": rate,
            "n_paths": int(len(df)),
            "interim_stops": int((df["state"] == "interim_stop").sum()) if len(df) else 0,
        },
        "artifacts": artifacts,
    }
    write_results_json(out_dir, payload)

    print(f"rejection_rate={rate:.6g} out={out_dir}")
    return 0
