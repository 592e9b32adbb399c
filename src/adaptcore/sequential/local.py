"""Locally efficient adaptive design.

The working test is the sequential probability ratio test for drift ``rho``
with continuous boundary ``xi + rho * t / 2``. Its conditional Type I error
at ``(t, x)`` is ``exp(-rho * (xi + rho * t / 2 - x))``. At every analysis
the intercept is re-solved so that the working test, observed only at the
new analysis time, keeps exactly the conditional error carried over from the
previous stage; hence the significance level is preserved whatever the number
and timing of future analyses.

Reference: Kashiwabara, K., Matsuyama, Y. An efficient adaptive design
approximating fixed sample size designs.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

from adaptcore.sequential.numerics import bisect, normal_log_cdf, normal_sf
from adaptcore.sequential.preprocess import check_open_unit, check_positive, check_scalar, check_trace, normalize_trace
from adaptcore.sequential.schema import AnalysisResult, AnalysisState, Design
from adaptcore.sequential.stages import run_stages

logger = logging.getLogger(__name__)

XI_TOL = 1e-8


def initial_intercept(overall_sig_level: float, min_effect_size: float) -> float:
    return -math.log(overall_sig_level) / min_effect_size


def clipped_error_mass(cond_xi: float, rho: float, dt: float) -> float:
    """E0[min(1, exp(-rho * (cond_xi + rho * dt / 2 - W)))] with W ~ N(0, dt).

    The first term is the mass above the boundary, the second the working
    conditional error of the paths that stay below it (in log-space).
    """
    sq = math.sqrt(dt)
    above = float(normal_sf((cond_xi + 0.5 * rho * dt) / sq))
    below = math.exp(-cond_xi * rho + float(normal_log_cdf((cond_xi - 0.5 * rho * dt) / sq)))
    return above + below


def solve_intercept(prev_alpha: float, rho: float, dt: float, *, xtol: float = XI_TOL) -> float:
    """Intercept relative to the current state that keeps ``prev_alpha``."""
    c = -math.log(prev_alpha) / rho
    # mass(c) <= prev_alpha holds exactly; rounding can push it just above
    if clipped_error_mass(c, rho, dt) >= prev_alpha:
        return c
    lo = -20.0 * (c + math.sqrt(dt) + rho * dt)
    res = bisect(
        lambda xi: clipped_error_mass(xi, rho, dt) - prev_alpha,
        lo,
        c,
        xtol=xtol,
        what="the working intercept",
    )
    return res.require("the working intercept")


def local_step(rho: float):
    def step(prev: AnalysisState, t_k: float, x_k: float, k: int) -> AnalysisState:
        if prev.alpha <= 0.0:
            return AnalysisState(time=t_k, stat=x_k, xi=math.inf, alpha=0.0, boundary=math.inf)

        cond_xi = solve_intercept(prev.alpha, rho, t_k - prev.time)
        xi = cond_xi + prev.stat - 0.5 * rho * prev.time
        b_k = xi + 0.5 * rho * t_k
        alpha = 1.0 if x_k >= b_k else math.exp(-rho * (b_k - x_k))
        return AnalysisState(time=t_k, stat=x_k, xi=xi, alpha=alpha, boundary=b_k)

    return step


def adaptive_analysis_norm_local(
    overall_sig_level: float = 0.025,
    min_effect_size: float = 1.0,
    times: Sequence[float] = (),
    stats: Sequence[float] = (),
    final_analysis: bool = True,
    input_check: bool = True,
) -> AnalysisResult:
    """Analyze data according to a locally efficient adaptive design.

    Normality with known variance is assumed (the statistic follows Brownian
    motion with drift equal to the effect size); the null hypothesis is fixed
    at 0. With ``final_analysis=True`` the latest analysis is the last one and
    the remaining significance level is exhausted; otherwise it is an interim
    analysis and the level is preserved for later ones.

    Examples
    --------
    >>> import math
    >>> res = adaptive_analysis_norm_local(
    ...     overall_sig_level=0.025,
    ...     min_effect_size=-math.log(0.65),
    ...     times=[5.67, 9.18, 14.71, 20.02],
    ...     stats=[3.40, 4.35, 7.75, 11.11],
    ...     final_analysis=False,
    ... )
    >>> res.rej_H0
    [False, False, False, False, False]
    """
    check_scalar("input_check", input_check)
    if input_check:
        check_open_unit("overall_sig_level", overall_sig_level)
        check_positive("min_effect_size", min_effect_size)
        check_scalar("final_analysis", final_analysis)
        check_trace(times, stats)

    alpha = float(overall_sig_level)
    rho = float(min_effect_size)
    fin = bool(final_analysis)
    s_k, x_s_k = normalize_trace(times, stats)

    xi0 = initial_intercept(alpha, rho)
    initial = AnalysisState(time=0.0, stat=0.0, xi=xi0, alpha=alpha, boundary=xi0)
    records, decision = run_stages(s_k, x_s_k, fin, initial, local_step(rho))

    logger.info("local design: %d analyses, state=%s", len(s_k) - 1, decision.value)

    return AnalysisResult(
        design=Design.LOCAL,
        overall_sig_level=alpha,
        min_effect_size=rho,
        analyses=len(s_k) - 1,
        times=tuple(float(t) for t in s_k),
        stats=tuple(float(x) for x in x_s_k),
        final_analysis=fin,
        records=records,
        state=decision,
        diagnostics={"design": "local", "initial_intercept": xi0},
    )
