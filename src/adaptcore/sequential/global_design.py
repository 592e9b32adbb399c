"""Globally efficient adaptive design.

At every analysis the stage test is the working test with all future
boundaries raised by a common shift ``lam`` plus an extra look at the current
time whose boundary follows the interpolated working intercept. The shift is
solved so that this stage test, started from the previous state, has exactly
the conditional Type I error carried over from the previous stage. The
remaining Type I loss of the stage test, ``c1 * exp(rho * lam)``, is reported
as the stage cost and can be fed back to reproduce the design.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from adaptcore.sequential.estimation import estimate_effect
from adaptcore.sequential.numerics import bisect, normal_pdf, normal_sf, truncated_grid
from adaptcore.sequential.preprocess import check_costs, check_positive, check_scalar, check_trace, normalize_trace
from adaptcore.sequential.schema import AnalysisResult, AnalysisState, Design, WorkingTest
from adaptcore.sequential.stages import final_boundary, run_stages
from adaptcore.sequential.working_test import ConditionalErrorFunction, build_working_test

logger = logging.getLogger(__name__)


def stage_error(
    cef: ConditionalErrorFunction,
    prev: AnalysisState,
    t_k: float,
    boundary: float,
    shift: float,
) -> float:
    """Null rejection probability of the stage test from ``prev``."""
    sd = math.sqrt(t_k - prev.time)
    pts, wts = truncated_grid(prev.stat, sd, boundary, cef.working_test.simpson_div)
    below = np.sum(wts * normal_pdf(pts, loc=prev.stat, scale=sd) * cef.evaluate(t_k, pts, shift=shift))
    return float(normal_sf((boundary - prev.stat) / sd)) + float(below)


def global_step(
    cef: ConditionalErrorFunction,
    costs: Optional[np.ndarray],
    tol_boundary: float,
    warnings: List[str],
):
    wt = cef.working_test
    rho = wt.min_effect_size
    c1 = wt.cost_type_1_err
    t_end = wt.times[-1]

    def step(prev: AnalysisState, t_k: float, x_k: float, k: int) -> AnalysisState:
        if prev.alpha <= 0.0:
            return AnalysisState(time=t_k, stat=x_k, xi=math.inf, alpha=0.0, boundary=math.inf)

        if t_k >= t_end:
            msg = (
                f"Analysis {k} at time {t_k:.6g} is beyond the end of the basic schedule "
                f"({t_end:.6g}); the remaining conditional error is spent at this analysis."
            )
            logger.warning(msg)
            warnings.append(msg)
            b_k = final_boundary(prev, t_k)
            alpha = 1.0 if x_k >= b_k else 0.0
            return AnalysisState(time=t_k, stat=x_k, xi=b_k - 0.5 * rho * t_k, alpha=alpha, boundary=b_k)

        xi_t = wt.intercept_at(t_k)
        if costs is not None and k <= len(costs):
            lam = math.log(float(costs[k - 1]) / c1) / rho
        else:
            radius = cef.search_radius() + abs(prev.stat) + 40.0 * math.sqrt(t_k - prev.time)
            res = bisect(
                lambda s: stage_error(cef, prev, t_k, xi_t + s + 0.5 * rho * t_k, s) - prev.alpha,
                -radius,
                radius,
                xtol=tol_boundary,
                what=f"the boundary shift at analysis {k}",
            )
            lam = res.require(f"the boundary shift at analysis {k}")

        b_k = xi_t + lam + 0.5 * rho * t_k
        if x_k >= b_k:
            alpha = 1.0
        else:
            alpha = float(min(1.0, cef.evaluate(t_k, x_k, shift=lam)[0]))
        with np.errstate(over="ignore"):
            cost = float(c1 * np.exp(rho * lam))
        return AnalysisState(time=t_k, stat=x_k, xi=xi_t + lam, alpha=alpha, boundary=b_k, cost=cost)

    return step


def adaptive_analysis_norm_global(
    working_test: Optional[WorkingTest] = None,
    overall_sig_level: float = 0.025,
    min_effect_size: float = 1.0,
    times: Sequence[float] = (),
    stats: Sequence[float] = (),
    costs: Optional[Sequence[float]] = None,
    final_analysis: bool = True,
    estimate: bool = False,
    work_beta: float = 0.1,
    cost_type_1_err: float = 0.0,
    cost_type_2_err: Optional[float] = None,
    basic_schedule_num: int = 8,
    basic_schedule_power: float = 2.0,
    simpson_div: int = 16,
    tol_boundary: float = 1e-7,
    tol_cost: float = 1e-6,
    tol_estimate: float = 1e-6,
    input_check: bool = True,
) -> AnalysisResult:
    """Analyze data according to a globally efficient adaptive design.

    The working test is built from ``overall_sig_level``, ``work_beta``,
    ``min_effect_size`` and the cost / schedule parameters unless an already
    built ``working_test`` is passed (building it is the expensive part, so
    repeated analyses of one trial should share it). With ``estimate=True``
    and a terminal decision, the p-value, median unbiased estimate and
    confidence limits are added under the stage-wise ordering.
    """
    check_scalar("input_check", input_check)
    if input_check:
        check_scalar("final_analysis", final_analysis)
        check_scalar("estimate", estimate)
        check_trace(times, stats)
        check_positive("tol_boundary", tol_boundary)
        check_positive("tol_estimate", tol_estimate)

    if working_test is None:
        working_test = build_working_test(
            overall_sig_level=overall_sig_level,
            work_beta=work_beta,
            min_effect_size=min_effect_size,
            cost_type_1_err=cost_type_1_err,
            cost_type_2_err=cost_type_2_err,
            basic_schedule_num=basic_schedule_num,
            basic_schedule_power=basic_schedule_power,
            simpson_div=simpson_div,
            tol_boundary=tol_boundary,
            tol_cost=tol_cost,
            input_check=input_check,
        )

    alpha = working_test.overall_sig_level
    rho = working_test.min_effect_size
    fin = bool(final_analysis)
    s_k, x_s_k = normalize_trace(times, stats)

    cost_arr = None
    if costs is not None:
        raw_times = np.atleast_1d(np.asarray(times, dtype=float))
        cost_arr = check_costs(costs, len(raw_times))
        if np.any(raw_times == 0.0) and len(cost_arr):
            # the analysis at time 0 was folded into the origin
            cost_arr = cost_arr[1:]

    warnings: List[str] = []
    cef = ConditionalErrorFunction(working_test)
    xi0 = working_test.intercept_at(0.0)
    initial = AnalysisState(
        time=0.0,
        stat=0.0,
        xi=xi0,
        alpha=alpha,
        boundary=xi0,
        cost=working_test.cost_type_1_err,
    )
    records, decision = run_stages(s_k, x_s_k, fin, initial, global_step(cef, cost_arr, tol_boundary, warnings))

    logger.info("global design: %d analyses, state=%s", len(s_k) - 1, decision.value)

    result = AnalysisResult(
        design=Design.GLOBAL,
        overall_sig_level=alpha,
        min_effect_size=rho,
        analyses=len(s_k) - 1,
        times=tuple(float(t) for t in s_k),
        stats=tuple(float(x) for x in x_s_k),
        final_analysis=fin,
        records=records,
        state=decision,
        working_test=working_test,
        diagnostics={
            "design": "global",
            "max_time": working_test.max_time,
            "working_type_I_err": working_test.type_I_err,
            "working_power": working_test.power,
            "replayed_costs": 0 if cost_arr is None else int(len(cost_arr)),
        },
        warnings=warnings,
    )

    if estimate:
        if decision.terminal:
            result.estimate = estimate_effect(result, tol=tol_estimate)
        else:
            msg = "Estimation needs a terminal decision; no estimate was computed."
            logger.warning(msg)
            result.warnings.append(msg)

    return result
