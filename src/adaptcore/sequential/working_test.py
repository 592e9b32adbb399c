"""Working test of the globally efficient adaptive design.

The working test is a one-sided group sequential test over a basic schedule
of ``basic_schedule_num`` analyses with power-law spacing up to the fixed
sample size. Its boundaries minimise the loss

    c1 * P0(reject) + c2 * P_rho(accept) + (E0[T] + E_rho[T]) / (2 * T_max)

(equal prior weight on 0 and ``rho``; information is charged in units of the
maximum information ``T_max``). At the last analysis the Bayes decision
rejects iff ``c1 * f0 <= c2 * f1``; at earlier analyses the boundary is the
point where the expected loss of stopping equals the expected loss of
continuing, found by bisection, with the continuation loss integrated by
Simpson's rule over the next analysis' grid (backward induction). When
``cost_type_1_err`` is 0 the Type I loss ``c1`` is calibrated by bisection so
that the test has size exactly ``overall_sig_level``.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

from adaptcore.sequential.numerics import (
    ConvergenceError,
    bisect,
    clip_prob,
    normal_ppf,
    normal_sf,
    transition_density,
    truncated_grid,
)
from adaptcore.sequential.preprocess import check_non_negative, check_open_unit, check_positive, check_scalar
from adaptcore.sequential.schema import WorkingTest

logger = logging.getLogger(__name__)


def max_information(overall_sig_level: float, work_beta: float, min_effect_size: float) -> float:
    """Fixed sample size of the one-sided z-test with power ``1 - work_beta`` at ``rho``."""
    z_a = float(normal_ppf(1.0 - overall_sig_level))
    z_b = float(normal_ppf(1.0 - work_beta))
    return ((z_a + z_b) / min_effect_size) ** 2


def basic_schedule(max_time: float, basic_schedule_num: int, basic_schedule_power: float = 2.0) -> np.ndarray:
    k = np.arange(1, int(basic_schedule_num) + 1, dtype=float)
    return float(max_time) * (k / float(basic_schedule_num)) ** float(basic_schedule_power)


def crossing_probabilities(
    times: Sequence[float],
    boundaries: Sequence[float],
    drift: float,
    simpson_div: int,
    *,
    start_time: float = 0.0,
    start_stat: float = 0.0,
) -> Tuple[np.ndarray, Tuple[np.ndarray, np.ndarray, np.ndarray]]:
    """First-crossing probabilities of upper boundaries by forward recursion.

    Returns the per-analysis crossing probabilities under ``drift`` and the
    (points, weights, density) of the paths still running at the last time.
    """
    pts = np.array([float(start_stat)])
    wts = np.array([1.0])
    dens = np.array([1.0])
    prev_t = float(start_time)
    probs: List[float] = []

    for t, b in zip(times, boundaries):
        t = float(t)
        dt = t - prev_t
        sd = math.sqrt(dt)
        mass = dens * wts
        probs.append(float(np.sum(mass * normal_sf((b - pts - drift * dt) / sd))))

        center = float(start_stat) + drift * (t - float(start_time))
        new_pts, new_wts = truncated_grid(center, math.sqrt(t - float(start_time)), b, simpson_div)
        dens = mass @ transition_density(pts, new_pts, dt, drift)
        pts, wts = new_pts, new_wts
        prev_t = t

    return clip_prob(np.asarray(probs, dtype=float)), (pts, wts, dens)


def _look_grid(t: float, upper: float, rho: float, simpson_div: int) -> Tuple[np.ndarray, np.ndarray]:
    # centred between the null and the alternative means
    return truncated_grid(0.5 * rho * t, math.sqrt(t), upper, simpson_div)


def solve_boundaries(
    times: Sequence[float],
    min_effect_size: float,
    cost_type_1_err: float,
    cost_type_2_err: float,
    max_time: float,
    *,
    simpson_div: int = 16,
    tol_boundary: float = 1e-7,
) -> np.ndarray:
    """Loss-balancing boundaries over the basic schedule (backward induction)."""
    rho = float(min_effect_size)
    c1 = float(cost_type_1_err)
    c2 = float(cost_type_2_err)
    t = np.asarray(times, dtype=float)
    n_looks = len(t)
    log_ratio = math.log(c1 / c2)

    u = np.empty(n_looks, dtype=float)
    u[-1] = log_ratio / rho + 0.5 * rho * t[-1]

    # expected future loss under H0 (l0) and under H1 (l1) below the boundary
    next_pts, next_wts = _look_grid(t[-1], u[-1], rho, simpson_div)
    l0 = np.zeros_like(next_pts)
    l1 = np.full_like(next_pts, c2)

    for i in range(n_looks - 2, -1, -1):
        dt = t[i + 1] - t[i]
        sd = math.sqrt(dt)
        step_cost = dt / max_time
        u_next = u[i + 1]
        w0 = next_wts * l0
        w1 = next_wts * l1
        grid = next_pts

        def continuation(x: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
            x = np.atleast_1d(np.asarray(x, dtype=float))
            loss0 = step_cost + c1 * normal_sf((u_next - x) / sd) + transition_density(x, grid, dt, 0.0) @ w0
            loss1 = step_cost + transition_density(x, grid, dt, rho) @ w1
            return loss0, loss1

        def excess(x: float) -> float:
            # > 0: continuing is cheaper than stopping to reject
            loss0, loss1 = continuation(np.array([x]))
            gain = c1 - float(loss0[0])
            if gain <= 0.0:
                return -math.inf
            return math.log(gain) - (rho * x - 0.5 * rho * rho * t[i] + math.log(float(loss1[0])))

        spread = (abs(math.log(c1)) + abs(log_ratio) + abs(math.log(step_cost)) + 1.0) / rho
        lo = 0.5 * rho * t[i] - spread - 10.0 * math.sqrt(t[i])
        hi = 0.5 * rho * t[i] + spread + 10.0 * math.sqrt(t[i])
        if excess(lo) <= 0.0:
            u[i] = lo
        elif excess(hi) > 0.0:
            u[i] = hi
        else:
            u[i] = bisect(excess, lo, hi, xtol=tol_boundary, what=f"the boundary at look {i + 1}").require(
                f"the boundary at look {i + 1}"
            )

        cur_pts, cur_wts = _look_grid(t[i], u[i], rho, simpson_div)
        l0, l1 = continuation(cur_pts)
        next_pts, next_wts = cur_pts, cur_wts

    return u


def _evaluate_design(
    times: np.ndarray,
    rho: float,
    c1: float,
    c2: float,
    max_time: float,
    simpson_div: int,
    tol_boundary: float,
) -> Tuple[np.ndarray, np.ndarray]:
    u = solve_boundaries(times, rho, c1, c2, max_time, simpson_div=simpson_div, tol_boundary=tol_boundary)
    spent, _ = crossing_probabilities(times, u, 0.0, simpson_div)
    return u, spent


def build_working_test(
    overall_sig_level: float = 0.025,
    work_beta: float = 0.1,
    min_effect_size: float = 1.0,
    cost_type_1_err: float = 0.0,
    cost_type_2_err: Optional[float] = None,
    basic_schedule_num: int = 8,
    basic_schedule_power: float = 2.0,
    simpson_div: int = 16,
    tol_boundary: float = 1e-7,
    tol_cost: float = 1e-6,
    input_check: bool = True,
) -> WorkingTest:
    """Construct the working test of a globally efficient adaptive design."""
    check_scalar("input_check", input_check)
    if input_check:
        check_open_unit("overall_sig_level", overall_sig_level)
        check_open_unit("work_beta", work_beta)
        check_positive("min_effect_size", min_effect_size)
        check_non_negative("cost_type_1_err", cost_type_1_err)
        if cost_type_2_err is not None:
            check_positive("cost_type_2_err", cost_type_2_err)
        check_scalar("basic_schedule_num", basic_schedule_num)
        if int(basic_schedule_num) < 1 or int(basic_schedule_num) != basic_schedule_num:
            raise ValueError("'basic_schedule_num' should be a positive integer.")
        check_positive("basic_schedule_power", basic_schedule_power)
        check_scalar("simpson_div", simpson_div)
        if int(simpson_div) < 2:
            raise ValueError("'simpson_div' should be an integer no less than 2.")
        check_positive("tol_boundary", tol_boundary)
        check_positive("tol_cost", tol_cost)

    alpha = float(overall_sig_level)
    beta = float(work_beta)
    rho = float(min_effect_size)
    div = int(simpson_div)
    c2 = float(cost_type_2_err) if cost_type_2_err is not None else 1.0 / beta

    t_max = max_information(alpha, beta, rho)
    times = basic_schedule(t_max, int(basic_schedule_num), basic_schedule_power)

    calibrated = float(cost_type_1_err) == 0.0
    if calibrated:
        sd_max = math.sqrt(times[-1])
        base = math.log(c2) - 0.5 * rho * rho * times[-1]
        lo = base - 10.0 * rho * sd_max
        hi = base + 40.0 * rho * sd_max

        def size_excess(log_c1: float) -> float:
            _, spent = _evaluate_design(times, rho, math.exp(log_c1), c2, t_max, div, tol_boundary)
            return float(np.sum(spent)) - alpha

        try:
            res = bisect(size_excess, lo, hi, xtol=tol_cost, what="cost_type_1_err")
        except ConvergenceError as e:
            raise ConvergenceError(
                f"Calibration of 'cost_type_1_err' failed: {e}",
                last_iterate=math.exp(e.last_iterate) if math.isfinite(e.last_iterate) else e.last_iterate,
                residual=e.residual,
                iterations=e.iterations,
            ) from e
        c1 = math.exp(res.require("cost_type_1_err"))
        logger.debug("calibrated cost_type_1_err=%.6g in %d iterations", c1, res.iterations)
    else:
        c1 = float(cost_type_1_err)

    u, spent = _evaluate_design(times, rho, c1, c2, t_max, div, tol_boundary)
    power_spent, _ = crossing_probabilities(times, u, rho, div)

    wt = WorkingTest(
        overall_sig_level=alpha,
        work_beta=beta,
        min_effect_size=rho,
        cost_type_1_err=c1,
        cost_type_2_err=c2,
        max_time=float(t_max),
        times=tuple(float(x) for x in times),
        boundaries=tuple(float(x) for x in u),
        type_I_err_spent=tuple(float(x) for x in spent),
        power=float(np.sum(power_spent)),
        calibrated=calibrated,
        simpson_div=div,
    )
    logger.info(
        "working test: %d looks, T_max=%.6g, size=%.6g, power=%.6g",
        wt.num_looks,
        wt.max_time,
        wt.type_I_err,
        wt.power,
    )
    return wt


class ConditionalErrorFunction:
    """Conditional rejection probability of a working test under H0.

    ``A_j(z) = P0(reject at an analysis after look j | W(t_j) = z)`` is
    tabulated on every look's grid by backward recursion. Shifting all
    boundaries by ``shift`` is the same as shifting the state by ``-shift``
    (driftless Brownian motion), so one table serves every shift.
    """

    def __init__(self, working_test: WorkingTest) -> None:
        self.working_test = working_test
        self.times = np.asarray(working_test.times, dtype=float)
        self.boundaries = np.asarray(working_test.boundaries, dtype=float)
        rho = working_test.min_effect_size
        div = working_test.simpson_div

        n_looks = len(self.times)
        self._grids: List[Tuple[np.ndarray, np.ndarray, np.ndarray]] = [None] * n_looks  # type: ignore[list-item]
        pts, wts = _look_grid(self.times[-1], self.boundaries[-1], rho, div)
        self._grids[-1] = (pts, wts, np.zeros_like(pts))
        for j in range(n_looks - 2, -1, -1):
            pts, wts = _look_grid(self.times[j], self.boundaries[j], rho, div)
            self._grids[j] = (pts, wts, self._continue(pts, j + 1, self.times[j]))

    def _continue(self, x: np.ndarray, j: int, t: float) -> np.ndarray:
        dt = self.times[j] - t
        pts, wts, vals = self._grids[j]
        cross = normal_sf((self.boundaries[j] - x) / math.sqrt(dt))
        below = transition_density(x, pts, dt, 0.0) @ (wts * vals)
        return clip_prob(cross + below)

    def evaluate(self, t: float, x, shift: float = 0.0) -> np.ndarray:
        """``A(t, x)`` for the working test with every boundary raised by ``shift``."""
        x = np.atleast_1d(np.asarray(x, dtype=float)) - float(shift)
        j = int(np.searchsorted(self.times, float(t), side="right"))
        if j >= len(self.times):
            return np.zeros_like(x)
        return self._continue(x, j, float(t))

    def search_radius(self) -> float:
        return 40.0 * math.sqrt(self.times[-1]) + float(np.max(np.abs(self.boundaries)))

    def initial_shift(self, overall_sig_level: float, tol: float = 1e-8) -> float:
        """Shift giving the working test size ``overall_sig_level``."""
        radius = self.search_radius()
        res = bisect(
            lambda lam: float(self.evaluate(0.0, 0.0, shift=lam)[0]) - overall_sig_level,
            -radius,
            radius,
            xtol=tol,
            what="the initial boundary shift",
        )
        return res.require("the initial boundary shift")
