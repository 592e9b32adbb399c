from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd


def check_scalar(name: str, value: Any) -> None:
    if np.ndim(value) != 0:
        raise ValueError(f"'{name}' should be scalar.")


def check_open_unit(name: str, value: float) -> None:
    check_scalar(name, value)
    v = float(value)
    if not (0.0 < v < 1.0):
        raise ValueError(f"'{name}' should be a value in (0, 1).")


def check_positive(name: str, value: float) -> None:
    check_scalar(name, value)
    v = float(value)
    if not np.isfinite(v) or v <= 0:
        raise ValueError(f"'{name}' should be positive.")


def check_non_negative(name: str, value: float) -> None:
    check_scalar(name, value)
    v = float(value)
    if not np.isfinite(v) or v < 0:
        raise ValueError(f"'{name}' should be non-negative.")


def _as_vector(name: str, values: Iterable[float]) -> np.ndarray:
    arr = np.atleast_1d(np.asarray(values if values is not None else [], dtype=float))
    if arr.ndim != 1:
        raise ValueError(f"'{name}' should be a one-dimensional sequence.")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"All values of '{name}' should be finite.")
    return arr


def check_trace(times: Sequence[float], stats: Sequence[float]) -> None:
    t = _as_vector("times", times)
    x = _as_vector("stats", stats)
    if len(t) != len(x):
        raise ValueError("'times' and 'stats' should have the same length.")
    if np.any(t < 0):
        raise ValueError("All values of 'times' should be non-negative.")
    if np.any(np.diff(t) <= 0):
        raise ValueError("All intervals of 'times' should be positive.")


def normalize_trace(times: Sequence[float], stats: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    """Return (times, stats) with the design origin (0, 0) prepended.

    Pairs are sorted by time (stable) and only the first pair of a repeated
    time is kept. A leading analysis at time 0 is treated as the origin
    itself and dropped; its statistic has to be 0 because no information has
    accrued.
    """
    t = _as_vector("times", times)
    x = _as_vector("stats", stats)
    if len(t) != len(x):
        raise ValueError("'times' and 'stats' should have the same length.")
    order = np.argsort(t, kind="mergesort")
    t, x = t[order], x[order]
    keep = np.concatenate([[True], np.diff(t) > 0])[: len(t)]
    t, x = t[keep], x[keep]
    if len(t) and t[0] == 0.0:
        if x[0] != 0.0:
            raise ValueError("The statistic at time 0 should be 0.")
        t, x = t[1:], x[1:]
    return np.concatenate([[0.0], t]), np.concatenate([[0.0], x])


def check_costs(costs: Optional[Sequence[float]], n_analyses: int) -> Optional[np.ndarray]:
    """Stage costs recorded earlier, one per analysis from the first on.

    Fewer costs than analyses is allowed; the trailing stages are solved anew.
    Trailing ``None`` entries (stages that recorded no cost) are ignored.
    """
    if costs is None:
        return None
    vals = list(np.atleast_1d(np.asarray(costs, dtype=object)))
    while vals and vals[-1] is None:
        vals.pop()
    c = _as_vector("costs", vals)
    if len(c) > n_analyses:
        raise ValueError("'costs' should not be longer than 'times'.")
    if np.any(c <= 0):
        raise ValueError("All values of 'costs' should be positive.")
    return c


def parse_float_csv(s: str) -> list[float]:
    parts = [p.strip() for p in str(s).split(",") if p.strip()]
    return [float(p) for p in parts]


def read_trace_csv(path: str, *, time_col: str = "time", stat_col: str = "stat") -> Tuple[list[float], list[float]]:
    """Read an accumulated (time, statistic) table, one row per analysis."""
    df = pd.read_csv(path)
    missing = [c for c in (time_col, stat_col) if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}. Present columns: {list(df.columns)}")
    t = pd.to_numeric(df[time_col], errors="coerce")
    x = pd.to_numeric(df[stat_col], errors="coerce")
    bad = t.isna() | x.isna()
    if bool(bad.any()):
        raise ValueError(f"Non-numeric values in rows: {list(df.index[bad])}")
    order = np.argsort(t.to_numpy(dtype=float), kind="mergesort")
    return t.to_numpy(dtype=float)[order].tolist(), x.to_numpy(dtype=float)[order].tolist()
