from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd


class Design(str, Enum):
    LOCAL = "local"
    GLOBAL = "global"


class DecisionState(str, Enum):
    CONTINUE = "continue"
    INTERIM_STOP = "interim_stop"  # reject H0 at an interim analysis
    FINAL_REJECT = "final_reject"
    FINAL_ACCEPT = "final_accept"

    @property
    def terminal(self) -> bool:
        return self is not DecisionState.CONTINUE


@dataclass(frozen=True)
class DecisionRecord:
    """Per-analysis output row. Stage 0 is the design itself (t=0, x=0)."""

    analysis: int
    time: float
    stat: float
    intercept: Optional[float]
    boundary: float
    cond_type_I_err: float
    rej_H0: bool
    final: bool
    cost: Optional[float] = None


@dataclass(frozen=True)
class AnalysisState:
    """Working values carried from one stage to the next."""

    time: float
    stat: float
    xi: float
    alpha: float
    boundary: float
    cost: Optional[float] = None


@dataclass(frozen=True)
class WorkingTest:
    """Reference group sequential test of the global design."""

    overall_sig_level: float
    work_beta: float
    min_effect_size: float
    cost_type_1_err: float
    cost_type_2_err: float
    max_time: float
    times: Tuple[float, ...]
    boundaries: Tuple[float, ...]
    type_I_err_spent: Tuple[float, ...]
    power: float
    calibrated: bool = False
    simpson_div: int = 16

    @property
    def num_looks(self) -> int:
        return len(self.times)

    @property
    def type_I_err(self) -> float:
        return float(sum(self.type_I_err_spent))

    @property
    def intercepts(self) -> Tuple[float, ...]:
        rho = self.min_effect_size
        return tuple(float(b - 0.5 * rho * t) for t, b in zip(self.times, self.boundaries))

    def intercept_at(self, t: float) -> float:
        """Working intercept interpolated linearly in time, flat outside the schedule."""
        return float(np.interp(float(t), np.asarray(self.times), np.asarray(self.intercepts)))

    def boundary_at(self, t: float) -> float:
        return self.intercept_at(t) + 0.5 * self.min_effect_size * float(t)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["type_I_err"] = self.type_I_err
        return d


@dataclass(frozen=True)
class EstimateResult:
    p_value: float
    median_unbiased_estimate: float
    lower_limit: float
    upper_limit: float
    confidence_level: float
    converged: bool = True


@dataclass(frozen=True)
class SampleSizeResult:
    sample_size: float
    power: float
    target_power: float
    effect_size: float
    time: float
    fixed_sample_size: float
    interim_power: float
    overpowered: bool
    converged: bool
    iterations: int
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PowerResult:
    power: float
    interim_power: float
    effect_size: float
    time: float
    final_time: float
    warnings: Tuple[str, ...] = ()


LOOK_TABLE_COLUMNS = [
    "analysis",
    "time",
    "stat",
    "intercept",
    "boundary",
    "cond_type_I_err",
    "rej_H0",
    "final",
    "cost",
]


@dataclass
class AnalysisResult:
    design: Design
    overall_sig_level: float
    min_effect_size: float
    analyses: int
    times: Tuple[float, ...]
    stats: Tuple[float, ...]
    final_analysis: bool

    records: List[Optional[DecisionRecord]]
    state: DecisionState

    working_test: Optional[WorkingTest] = None
    estimate: Optional[EstimateResult] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def _column(self, name: str) -> List[Any]:
        return [getattr(r, name) if r is not None else None for r in self.records]

    @property
    def intercept(self) -> List[Optional[float]]:
        return self._column("intercept")

    @property
    def boundary(self) -> List[Optional[float]]:
        return self._column("boundary")

    @property
    def cond_type_I_err(self) -> List[Optional[float]]:
        return self._column("cond_type_I_err")

    @property
    def rej_H0(self) -> List[Optional[bool]]:
        return self._column("rej_H0")

    @property
    def final(self) -> List[bool]:
        fin = bool(self.final_analysis)
        return [fin and k == self.analyses for k in range(self.analyses + 1)]

    @property
    def costs(self) -> List[Optional[float]]:
        return self._column("cost")

    @property
    def rejected(self) -> bool:
        return self.state in (DecisionState.INTERIM_STOP, DecisionState.FINAL_REJECT)

    @property
    def stop_analysis(self) -> Optional[int]:
        for r in self.records:
            if r is not None and r.rej_H0:
                return r.analysis
        return None

    def to_frame(self) -> pd.DataFrame:
        """Look table: one row per analysis, skipped stages as NaN."""
        rows: List[Dict[str, Any]] = []
        for k, r in enumerate(self.records):
            if r is None:
                rows.append({"analysis": k, "time": self.times[k], "stat": self.stats[k], "final": self.final[k]})
                continue
            d = asdict(r)
            d["final"] = self.final[k]
            rows.append(d)
        df = pd.DataFrame(rows).reindex(columns=LOOK_TABLE_COLUMNS)
        for col in ["intercept", "boundary", "cond_type_I_err", "cost"]:
            df[col] = pd.to_numeric(df[col], errors="coerce")
        return df

    def to_dict(self) -> Dict[str, Any]:
        return {
            "par": {
                "design": self.design.value,
                "overall_sig_level": self.overall_sig_level,
                "min_effect_size": self.min_effect_size,
                "analyses": self.analyses,
                "times": list(self.times),
                "stats": list(self.stats),
                "final_analysis": self.final_analysis,
            },
            "char": {
                "intercept": self.intercept,
                "boundary": self.boundary,
                "cond_type_I_err": self.cond_type_I_err,
                "rej_H0": self.rej_H0,
                "final": self.final,
                "cost": self.costs,
            },
            "state": self.state.value,
            "working_test": self.working_test.to_dict() if self.working_test is not None else None,
            "estimate": asdict(self.estimate) if self.estimate is not None else None,
            "diagnostics": dict(self.diagnostics),
            "warnings": list(self.warnings),
        }
