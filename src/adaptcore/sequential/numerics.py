"""Numerical building blocks shared by the local and global designs.

* a bounded bisection root-finder that reports convergence explicitly;
* the Jennison & Turnbull (2000, chap. 19) grid of normal deviates;
* composite Simpson's rule on unequally spaced nodes;
* thin vectorised wrappers around the standard normal distribution.

Every iterative search in the package goes through :func:`bisect`, so each
one is capped by ``max_iter`` and surfaces non-convergence as
:class:`ConvergenceError` instead of silently returning the last iterate.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np
from scipy import special
from scipy.stats import norm


class ConvergenceError(RuntimeError):
    """A numerical search hit its iteration cap or lost its bracket."""

    def __init__(
        self,
        message: str,
        *,
        last_iterate: float = float("nan"),
        residual: float = float("nan"),
        iterations: int = 0,
    ) -> None:
        super().__init__(message)
        self.last_iterate = float(last_iterate)
        self.residual = float(residual)
        self.iterations = int(iterations)


@dataclass(frozen=True)
class BisectionResult:
    root: float
    converged: bool
    iterations: int
    residual: float
    lo: float
    hi: float

    def require(self, what: str = "root") -> float:
        if not self.converged:
            raise ConvergenceError(
                f"No solution of {what} was found within {self.iterations} iterations "
                f"(bracket=[{self.lo:.6g}, {self.hi:.6g}]).",
                last_iterate=self.root,
                residual=self.residual,
                iterations=self.iterations,
            )
        return self.root


def default_max_iter(lo: float, hi: float, xtol: float) -> int:
    width = max(float(hi) - float(lo), float(xtol))
    return int(math.ceil(math.log2(width / float(xtol)))) + 2


def bisect(
    f: Callable[[float], float],
    lo: float,
    hi: float,
    *,
    xtol: float,
    max_iter: Optional[int] = None,
    what: str = "root",
) -> BisectionResult:
    """Bisection for a function decreasing across one sign change on [lo, hi].

    The bracket keeps ``f(lo) > 0 >= f(hi)``. The returned root is the upper
    end of the final bracket, i.e. always a point with ``f(root) <= 0``.
    """
    lo = float(lo)
    hi = float(hi)
    if not hi > lo:
        raise ValueError(f"Invalid bracket for {what}: [{lo}, {hi}]")
    if xtol <= 0:
        raise ValueError("'xtol' should be positive.")

    f_lo = float(f(lo))
    f_hi = float(f(hi))
    if not (f_lo > 0.0 and f_hi <= 0.0):
        raise ConvergenceError(
            f"The search for {what} is not bracketed: f({lo:.6g})={f_lo:.6g}, f({hi:.6g})={f_hi:.6g}.",
            last_iterate=hi,
            residual=f_hi,
        )

    if max_iter is None:
        max_iter = default_max_iter(lo, hi, xtol)

    it = 0
    while (hi - lo) > xtol and it < max_iter:
        mid = 0.5 * (lo + hi)
        f_mid = float(f(mid))
        if f_mid > 0.0:
            lo = mid
        else:
            hi = mid
            f_hi = f_mid
        it += 1

    return BisectionResult(
        root=hi,
        converged=bool((hi - lo) <= xtol),
        iterations=it,
        residual=f_hi,
        lo=lo,
        hi=hi,
    )


# Standard normal helpers

def normal_cdf(x):
    return special.ndtr(x)


def normal_sf(x):
    return special.ndtr(-np.asarray(x, dtype=float))


def normal_log_cdf(x):
    return special.log_ndtr(x)


def normal_ppf(p):
    """Quantile function; ``ppf(0) = -inf`` and ``ppf(1) = +inf``."""
    return special.ndtri(np.clip(p, 0.0, 1.0))


def normal_pdf(x, loc=0.0, scale=1.0):
    return norm.pdf(x, loc=loc, scale=scale)


def clip_prob(p):
    return np.clip(p, 0.0, 1.0)


# Quadrature grid

def grid_deviates(simpson_div: int) -> np.ndarray:
    """Jennison & Turnbull grid of ``6 * r - 1`` standard normal deviates."""
    r = int(simpson_div)
    if r < 2:
        raise ValueError("'simpson_div' should be an integer no less than 2.")
    tail = -3.0 - 4.0 * np.log(r / np.arange(1, r))
    body = -3.0 + 3.0 * np.arange(0, 4 * r + 1) / (2.0 * r)
    return np.concatenate([tail, body, -tail[::-1]])


def simpson_rule(nodes: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Composite Simpson's rule on sorted (possibly uneven) nodes.

    Midpoints of consecutive nodes are appended to the node list; the
    weights integrate a function sampled at the returned points.
    """
    odd = np.asarray(nodes, dtype=float)
    if odd.size == 0:
        return odd, odd
    d = np.diff(odd)
    points = np.concatenate([odd, odd[:-1] + d / 2.0])
    weights = np.concatenate([np.append(d, 0.0) + np.insert(d, 0, 0.0), 4.0 * d]) / 6.0
    return points, weights


def truncated_grid(
    center: float,
    scale: float,
    upper: float,
    simpson_div: int,
) -> Tuple[np.ndarray, np.ndarray]:
    """Simpson points/weights covering ``center + scale * z`` below ``upper``."""
    nodes = float(center) + float(scale) * grid_deviates(simpson_div)
    nodes = nodes[nodes < upper]
    if np.isfinite(upper):
        nodes = np.append(nodes, float(upper))
    return simpson_rule(nodes)


def transition_density(x_from: np.ndarray, y_to: np.ndarray, dt: float, drift: float = 0.0) -> np.ndarray:
    """Matrix ``phi(y_j | x_i)`` of Brownian increments over ``dt``."""
    sd = math.sqrt(dt)
    mean = np.asarray(x_from, dtype=float)[:, None] + drift * dt
    return normal_pdf(np.asarray(y_to, dtype=float)[None, :], loc=mean, scale=sd)
