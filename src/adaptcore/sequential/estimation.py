from __future__ import annotations

import logging
import math
from typing import List, Tuple

import numpy as np

from adaptcore.sequential.numerics import bisect, clip_prob
from adaptcore.sequential.schema import AnalysisResult, EstimateResult
from adaptcore.sequential.working_test import crossing_probabilities

logger = logging.getLogger(__name__)

ESTIMATE_HALF_WIDTH = 10.0


def _realised_design(result: AnalysisResult) -> Tuple[List[float], List[float]]:
    """Analysis times and boundaries up to the decisive analysis.

    The last boundary is replaced by the observed statistic, so that the sum of
    crossing probabilities is the stage-wise ordering tail probability.
    """
    decided = [r for r in result.records[1:] if r is not None]
    if not decided:
        raise ValueError("Estimation needs at least one analysis after time 0.")
    times = [r.time for r in decided]
    bounds = [r.boundary for r in decided[:-1]] + [decided[-1].stat]
    return times, bounds


def ordering_tail(result: AnalysisResult, theta: float) -> float:
    """P_theta(outcome at least as extreme as observed) under stage-wise ordering."""
    times, bounds = _realised_design(result)
    div = result.working_test.simpson_div if result.working_test is not None else 16
    probs, _ = crossing_probabilities(times, bounds, float(theta), div)
    return float(clip_prob(np.sum(probs)))


def estimate_effect(result: AnalysisResult, tol: float = 1e-6) -> EstimateResult:
    """P-value, median unbiased estimate and ``1 - 2 * alpha`` confidence limits."""
    times, bounds = _realised_design(result)
    alpha = result.overall_sig_level
    t_last = times[-1]
    x_last = bounds[-1]

    center = x_last / t_last
    half = ESTIMATE_HALF_WIDTH / math.sqrt(t_last)
    lo, hi = center - half, center + half

    converged = True

    def solve(q: float, what: str) -> float:
        nonlocal converged

        def f(th: float) -> float:
            return q - ordering_tail(result, th)

        if f(lo) <= 0.0:
            root = lo
        elif f(hi) > 0.0:
            root = hi
        else:
            res = bisect(f, lo, hi, xtol=tol, what=what)
            if res.converged:
                return res.root
            root = res.root
        converged = False
        msg = f"The {what} was clipped to {root:.6g} (search domain [{lo:.6g}, {hi:.6g}])."
        logger.warning(msg)
        result.warnings.append(msg)
        return root

    p_value = ordering_tail(result, 0.0)
    median = solve(0.5, "median unbiased estimate")
    lower = solve(alpha, "lower confidence limit")
    upper = solve(1.0 - alpha, "upper confidence limit")

    logger.info("estimate: p=%.6g, theta=%.6g [%.6g, %.6g]", p_value, median, lower, upper)
    return EstimateResult(
        p_value=p_value,
        median_unbiased_estimate=median,
        lower_limit=lower,
        upper_limit=upper,
        confidence_level=1.0 - 2.0 * alpha,
        converged=converged,
    )
