"""Sample size and power of the final analysis after an interim analysis.

Both designs share the same shape: the probability ``r_m0`` of having
rejected by the most recent interim analysis at time ``m`` plus the expected
power of a final analysis at time ``n`` that spends the conditional Type I
error left at ``m``. The computed power for ``effect_size`` is an approximate
lower bound, because the interim analyses between ``m`` and ``n`` that a
trial may still add can only raise it.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, List, Optional, Tuple

import numpy as np

from adaptcore.sequential.local import initial_intercept
from adaptcore.sequential.numerics import (
    ConvergenceError,
    bisect,
    clip_prob,
    normal_cdf,
    normal_log_cdf,
    normal_pdf,
    normal_ppf,
    truncated_grid,
)
from adaptcore.sequential.preprocess import check_non_negative, check_open_unit, check_positive, check_scalar
from adaptcore.sequential.schema import PowerResult, SampleSizeResult, WorkingTest
from adaptcore.sequential.working_test import ConditionalErrorFunction, crossing_probabilities

logger = logging.getLogger(__name__)

# Simpson divisions over the interim statistic
POWER_SIMPSON_DIV = 128

PowerFn = Callable[[float], float]


def fixed_sample_size(overall_sig_level: float, target_power: float, effect_size: float) -> float:
    z_a = -float(normal_ppf(overall_sig_level))
    z_b = float(normal_ppf(1.0 - target_power))
    return (z_a - z_b) ** 2 / effect_size ** 2


def _final_power(mass: np.ndarray, cond_err: np.ndarray, effect_size: float, dn: float) -> float:
    return float(np.sum(mass * normal_cdf(normal_ppf(cond_err) + effect_size * math.sqrt(max(dn, 0.0)))))


# Local design

def local_interim_power(overall_sig_level: float, min_effect_size: float, effect_size: float, time: float) -> float:
    """Probability of crossing ``xi0 + rho * t / 2`` by ``time`` (continuous monitoring)."""
    m = float(time)
    if m <= 0.0:
        return 0.0
    xi0 = initial_intercept(overall_sig_level, min_effect_size)
    mu_sym = effect_size - 0.5 * min_effect_size
    sq = math.sqrt(m)
    first = float(normal_cdf(-(xi0 - mu_sym * m) / sq))
    second = math.exp(2.0 * xi0 * mu_sym + float(normal_log_cdf((-xi0 - mu_sym * m) / sq)))
    return float(clip_prob(first + second))


def local_power_function(
    overall_sig_level: float,
    min_effect_size: float,
    effect_size: float,
    time: float,
) -> Tuple[float, PowerFn]:
    alpha = float(overall_sig_level)
    rho = float(min_effect_size)
    mu = float(effect_size)
    m = float(time)

    if m <= 0.0:
        z_a = float(normal_ppf(alpha))
        return 0.0, lambda n: float(normal_cdf(z_a + mu * math.sqrt(max(n, 0.0))))

    r_m0 = local_interim_power(alpha, rho, mu, m)
    xi0 = initial_intercept(alpha, rho)
    b_m = xi0 + 0.5 * rho * m
    sq = math.sqrt(m)

    w, wts = truncated_grid(mu * m, sq, b_m, POWER_SIMPSON_DIV)
    # Brownian bridge: share of paths ending at w that never touched the line
    crossed = np.minimum(1.0, np.exp(-2.0 * xi0 * (b_m - w) / m))
    mass = wts * normal_pdf(w, loc=mu * m, scale=sq) * (1.0 - crossed)
    cond_err = np.minimum(1.0, np.exp(-rho * (b_m - w)))

    return r_m0, lambda n: r_m0 + _final_power(mass, cond_err, mu, n - m)


# Global design

def global_power_function(
    working_test: WorkingTest,
    effect_size: float,
    time: float,
    overall_sig_level: Optional[float] = None,
) -> Tuple[float, PowerFn]:
    alpha = working_test.overall_sig_level if overall_sig_level is None else float(overall_sig_level)
    mu = float(effect_size)
    m = float(time)
    cef = ConditionalErrorFunction(working_test)
    shift = cef.initial_shift(alpha)

    if m <= 0.0:
        a0 = float(cef.evaluate(0.0, 0.0, shift=shift)[0])
        return 0.0, lambda n: _final_power(np.array([1.0]), np.array([a0]), mu, n)

    looks = [(t, b + shift) for t, b in zip(working_test.times, working_test.boundaries) if t < m]
    looks.append((m, working_test.boundary_at(m) + shift))
    probs, (pts, wts, dens) = crossing_probabilities(
        [t for t, _ in looks],
        [b for _, b in looks],
        mu,
        working_test.simpson_div,
    )
    r_m0 = float(clip_prob(np.sum(probs)))
    mass = wts * dens
    cond_err = cef.evaluate(m, pts, shift=shift)

    return r_m0, lambda n: r_m0 + _final_power(mass, cond_err, mu, n - m)


# Shared search

def _search_sample_size(
    power_fn: PowerFn,
    time: float,
    fss: float,
    target_power: float,
    tol_sample_size: float,
    strict: bool,
) -> Tuple[float, bool, int, List[str]]:
    warnings: List[str] = []
    m = float(time)
    lo, hi = m, m + 10.0 * fss

    def deficit(n: float) -> float:
        return target_power - power_fn(n)

    if deficit(lo) <= 0.0:
        return lo, True, 0, warnings

    d_hi = deficit(hi)
    if d_hi > 0.0:
        msg = (
            f"No solution of sample size was found: the power at {hi:.6g} is "
            f"{target_power - d_hi:.6g} < {target_power:.6g}."
        )
        if strict:
            raise ConvergenceError(msg, last_iterate=hi, residual=d_hi)
        logger.warning(msg)
        warnings.append(msg)
        return hi, False, 0, warnings

    res = bisect(deficit, lo, hi, xtol=tol_sample_size, what="sample size")
    if not res.converged:
        if strict:
            res.require("sample size")
        msg = f"Sample size search stopped after {res.iterations} iterations; the last iterate is returned."
        logger.warning(msg)
        warnings.append(msg)
    return res.root, res.converged, res.iterations, warnings


def _check_common(overall_sig_level, effect_size, time, strict, input_check) -> None:
    check_scalar("input_check", input_check)
    if input_check:
        check_open_unit("overall_sig_level", overall_sig_level)
        check_scalar("effect_size", effect_size)
        if not np.isfinite(float(effect_size)):
            raise ValueError("'effect_size' should be finite.")
        check_non_negative("time", time)
        check_scalar("strict", strict)


def _sample_size_result(
    power_fn: PowerFn,
    r_m0: float,
    overall_sig_level: float,
    effect_size: float,
    time: float,
    target_power: float,
    tol_sample_size: float,
    strict: bool,
) -> SampleSizeResult:
    fss = fixed_sample_size(overall_sig_level, target_power, effect_size)
    if r_m0 >= target_power:
        logger.info("interim power %.6g already reaches %.6g", r_m0, target_power)
        return SampleSizeResult(
            sample_size=float(time),
            power=r_m0,
            target_power=float(target_power),
            effect_size=float(effect_size),
            time=float(time),
            fixed_sample_size=fss,
            interim_power=r_m0,
            overpowered=True,
            converged=True,
            iterations=0,
        )

    n, converged, iterations, warnings = _search_sample_size(
        power_fn, time, fss, target_power, tol_sample_size, strict
    )
    return SampleSizeResult(
        sample_size=float(n),
        power=float(power_fn(n)),
        target_power=float(target_power),
        effect_size=float(effect_size),
        time=float(time),
        fixed_sample_size=fss,
        interim_power=r_m0,
        overpowered=False,
        converged=converged,
        iterations=iterations,
        warnings=tuple(warnings),
    )


def _power_result(power_fn: PowerFn, r_m0: float, effect_size: float, time: float, final_time: float) -> PowerResult:
    warnings: List[str] = []
    m = float(time)
    n = float(final_time)
    if n < m:
        msg = "Because 'final_time' is less than 'time', 'time' was substituted into 'final_time'."
        logger.warning(msg)
        warnings.append(msg)
        n = m
    power = r_m0 if n == m else float(clip_prob(power_fn(n)))
    return PowerResult(
        power=power,
        interim_power=r_m0,
        effect_size=float(effect_size),
        time=m,
        final_time=n,
        warnings=tuple(warnings),
    )


def compute_sample_size_local(
    overall_sig_level: float = 0.025,
    min_effect_size: float = 1.0,
    effect_size: float = 1.0,
    time: float = 0.0,
    target_power: float = 0.8,
    tol_sample_size: float = 1e-8,
    strict: bool = True,
    input_check: bool = True,
) -> SampleSizeResult:
    """Final analysis time reaching ``target_power`` after the interim at ``time``.

    Examples
    --------
    >>> import math
    >>> res = compute_sample_size_local(
    ...     overall_sig_level=0.025,
    ...     min_effect_size=-math.log(0.65),
    ...     effect_size=11.11 / 20.02,
    ...     time=20.02,
    ...     target_power=0.75,
    ... )
    >>> res.sample_size > 20.02
    True
    """
    _check_common(overall_sig_level, effect_size, time, strict, input_check)
    if input_check:
        check_positive("min_effect_size", min_effect_size)
        check_positive("effect_size", effect_size)
        check_open_unit("target_power", target_power)
        check_positive("tol_sample_size", tol_sample_size)

    r_m0, power_fn = local_power_function(overall_sig_level, min_effect_size, effect_size, time)
    return _sample_size_result(
        power_fn, r_m0, overall_sig_level, effect_size, time, target_power, tol_sample_size, strict
    )


def compute_power_local(
    overall_sig_level: float = 0.025,
    min_effect_size: float = 1.0,
    effect_size: float = 1.0,
    time: float = 0.0,
    final_time: float = 0.0,
    input_check: bool = True,
) -> PowerResult:
    _check_common(overall_sig_level, effect_size, time, True, input_check)
    if input_check:
        check_positive("min_effect_size", min_effect_size)
        check_non_negative("final_time", final_time)

    r_m0, power_fn = local_power_function(overall_sig_level, min_effect_size, effect_size, time)
    return _power_result(power_fn, r_m0, effect_size, time, final_time)


def compute_sample_size_global(
    working_test: WorkingTest,
    effect_size: float = 1.0,
    time: float = 0.0,
    target_power: float = 0.8,
    overall_sig_level: Optional[float] = None,
    tol_sample_size: float = 1e-6,
    strict: bool = True,
    input_check: bool = True,
) -> SampleSizeResult:
    alpha = working_test.overall_sig_level if overall_sig_level is None else overall_sig_level
    _check_common(alpha, effect_size, time, strict, input_check)
    if input_check:
        check_positive("effect_size", effect_size)
        check_open_unit("target_power", target_power)
        check_positive("tol_sample_size", tol_sample_size)

    r_m0, power_fn = global_power_function(working_test, effect_size, time, alpha)
    return _sample_size_result(power_fn, r_m0, alpha, effect_size, time, target_power, tol_sample_size, strict)


def compute_power_global(
    working_test: WorkingTest,
    effect_size: float = 1.0,
    time: float = 0.0,
    final_time: float = 0.0,
    overall_sig_level: Optional[float] = None,
    input_check: bool = True,
) -> PowerResult:
    alpha = working_test.overall_sig_level if overall_sig_level is None else overall_sig_level
    _check_common(alpha, effect_size, time, True, input_check)
    if input_check:
        check_non_negative("final_time", final_time)

    r_m0, power_fn = global_power_function(working_test, effect_size, time, alpha)
    return _power_result(power_fn, r_m0, effect_size, time, final_time)
