"""Stage-by-stage decision driver shared by the local and global designs.

The history is rebuilt on every call from the complete (time, statistic)
trace: an :class:`AnalysisState` is folded through the interim stages by a
design-specific step function, and the designated final analysis (if any)
exhausts the remaining conditional error with the exact normal boundary.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, List, Optional, Sequence, Tuple

from adaptcore.sequential.numerics import normal_ppf
from adaptcore.sequential.schema import AnalysisState, DecisionRecord, DecisionState

logger = logging.getLogger(__name__)

StepFn = Callable[[AnalysisState, float, float, int], AnalysisState]


def final_boundary(prev: AnalysisState, time: float) -> float:
    """Boundary spending the conditional error ``prev.alpha`` in one last look."""
    if prev.alpha <= 0.0:
        return math.inf
    if prev.alpha >= 1.0:
        return -math.inf
    return float(prev.stat - normal_ppf(prev.alpha) * math.sqrt(time - prev.time))


def run_stages(
    times: Sequence[float],
    stats: Sequence[float],
    final_analysis: bool,
    initial: AnalysisState,
    step: StepFn,
) -> Tuple[List[Optional[DecisionRecord]], DecisionState]:
    n = len(times) - 1
    last_interim = n - 1 if final_analysis else n

    records: List[Optional[DecisionRecord]] = [
        DecisionRecord(
            analysis=0,
            time=0.0,
            stat=0.0,
            intercept=initial.xi,
            boundary=initial.boundary,
            cond_type_I_err=min(1.0, initial.alpha),
            rej_H0=False,
            final=False,
            cost=initial.cost,
        )
    ]
    decision = DecisionState.CONTINUE
    state = initial

    for k in range(1, n + 1):
        t_k = float(times[k])
        x_k = float(stats[k])

        if k <= last_interim:
            logger.debug("analysis for stage %d (t=%.6g, x=%.6g)", k, t_k, x_k)
            state = step(state, t_k, x_k, k)
            rej = state.alpha >= 1.0
            records.append(
                DecisionRecord(
                    analysis=k,
                    time=t_k,
                    stat=x_k,
                    intercept=state.xi,
                    boundary=state.boundary,
                    cond_type_I_err=min(1.0, state.alpha),
                    rej_H0=rej,
                    final=False,
                    cost=state.cost,
                )
            )
            if rej:
                logger.debug("INTERIM STOP at stage %d", k)
                decision = DecisionState.INTERIM_STOP
                break
            logger.debug("CONTINUE (conditional error %.6g)", state.alpha)
            continue

        logger.debug("analysis for stage %d (FINAL)", k)
        b_k = final_boundary(state, t_k)
        rej = x_k >= b_k
        records.append(
            DecisionRecord(
                analysis=k,
                time=t_k,
                stat=x_k,
                intercept=None,
                boundary=b_k,
                cond_type_I_err=1.0 if rej else 0.0,
                rej_H0=rej,
                final=True,
                cost=None,
            )
        )
        decision = DecisionState.FINAL_REJECT if rej else DecisionState.FINAL_ACCEPT

    records.extend([None] * (n + 1 - len(records)))
    return records, decision
