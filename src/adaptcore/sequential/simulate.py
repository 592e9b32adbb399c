from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from adaptcore.sequential.global_design import adaptive_analysis_norm_global
from adaptcore.sequential.local import adaptive_analysis_norm_local
from adaptcore.sequential.schema import Design, WorkingTest


@dataclass(frozen=True)
class BrownianSimConfig:
    times: Tuple[float, ...] = (1.0, 2.0, 3.0)
    drift: float = 0.0
    n_paths: int = 1000
    seed: int = 42


def simulate_brownian_paths(cfg: BrownianSimConfig) -> np.ndarray:
    """Accumulated statistics W(t) at ``cfg.times``, one row per path."""
    rng = np.random.default_rng(int(cfg.seed))
    t = np.asarray(cfg.times, dtype=float)
    dt = np.diff(np.concatenate([[0.0], t]))
    if np.any(dt <= 0):
        raise ValueError("All intervals of 'times' should be positive.")

    inc = rng.normal(0.0, 1.0, size=(int(cfg.n_paths), len(t))) * np.sqrt(dt) + float(cfg.drift) * dt
    return np.cumsum(inc, axis=1)


def simulate_decisions(
    cfg: BrownianSimConfig,
    design: Design = Design.LOCAL,
    overall_sig_level: float = 0.025,
    min_effect_size: float = 1.0,
    final_analysis: bool = True,
    working_test: Optional[WorkingTest] = None,
) -> pd.DataFrame:
    """Analyze every simulated path; one row per path."""
    design = Design(design)
    paths = simulate_brownian_paths(cfg)
    rows = []
    for i, path in enumerate(paths):
        if design is Design.LOCAL:
            res = adaptive_analysis_norm_local(
                overall_sig_level=overall_sig_level,
                min_effect_size=min_effect_size,
                times=cfg.times,
                stats=path,
                final_analysis=final_analysis,
                input_check=False,
            )
        else:
            res = adaptive_analysis_norm_global(
                working_test=working_test,
                overall_sig_level=overall_sig_level,
                min_effect_size=min_effect_size,
                times=cfg.times,
                stats=path,
                final_analysis=final_analysis,
                input_check=False,
            )
            # build the working test once and reuse it for the other paths
            working_test = res.working_test
        rows.append(
            {
                "path": i,
                "state": res.state.value,
                "rejected": res.rejected,
                "stop_analysis": res.stop_analysis,
                "last_stat": float(path[-1]),
            }
        )
    return pd.DataFrame(rows)


def empirical_rejection_rate(
    cfg: BrownianSimConfig,
    design: Design = Design.LOCAL,
    overall_sig_level: float = 0.025,
    min_effect_size: float = 1.0,
    final_analysis: bool = True,
    working_test: Optional[WorkingTest] = None,
) -> float:
    df = simulate_decisions(
        cfg,
        design=design,
        overall_sig_level=overall_sig_level,
        min_effect_size=min_effect_size,
        final_analysis=final_analysis,
        working_test=working_test,
    )
    return float(df["rejected"].mean()) if len(df) else float("nan")
