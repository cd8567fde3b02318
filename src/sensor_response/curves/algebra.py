"""
Curve algebra shared by the estimator, the mapping builder and LUT export.

Two curve representations are handled:

- uniform tables: a 1D sequence of samples spread evenly over [0, 1];
- point curves: an ordered sequence of (x, y) pairs, non-decreasing in
  both coordinates, implicitly bounded by (0, 0) and (1, 1).

All lookups accept either a scalar (and return a float) or a numpy array of
positions (and return an array of the same shape).
"""

from typing import Sequence, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray

FloatOrArray = Union[float, NDArray[np.float64]]


def _as_table(table: ArrayLike) -> NDArray[np.float64]:
    values = np.asarray(table, dtype=np.float64)
    if values.ndim != 1 or len(values) < 2:
        raise ValueError("A uniform table needs at least 2 samples")
    return values


def _as_points(points: Union[ArrayLike, Sequence[tuple[float, float]]]) -> NDArray[np.float64]:
    arr = np.asarray(points, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 2 or len(arr) == 0:
        raise ValueError("A point curve needs at least one (x, y) pair")
    return arr


def _result(value: NDArray[np.float64], t: ArrayLike) -> FloatOrArray:
    if np.ndim(t) == 0:
        return float(value)
    return value


def sample_uniform(table: ArrayLike, t: ArrayLike) -> FloatOrArray:
    """Linearly interpolate a uniform table at position(s) ``t`` in [0, 1].

    At ``t == 1.0`` the last sample is returned as-is. Positions outside
    [0, 1] are not meaningful; callers clamp.

    Args:
        table: Uniformly spaced samples (at least 2).
        t: Normalized position or array of positions.

    Returns:
        Interpolated value(s).
    """
    values = _as_table(table)
    last = len(values) - 1

    pos = np.asarray(t, dtype=np.float64) * last
    i1 = np.clip(np.floor(pos), 0, last).astype(np.int64)
    alpha = pos - i1
    i2 = np.minimum(i1 + 1, last)

    interpolated = values[i1] + (values[i2] - values[i1]) * alpha
    result = np.where(i1 == last, values[last], interpolated)
    return _result(result, t)


def _lerp_keys(
    keys: NDArray[np.float64],
    values: NDArray[np.float64],
    t: ArrayLike,
) -> FloatOrArray:
    """Interpolate ``values`` over ordered ``keys`` with (0,0)/(1,1) bounds."""
    t_arr = np.asarray(t, dtype=np.float64)
    n = len(keys)

    i = np.searchsorted(keys, t_arr, side="left")
    i_hit = np.minimum(i, n - 1)
    hit = (i < n) & (keys[i_hit] == t_arr)

    lo = np.clip(i - 1, 0, n - 1)
    hi = np.clip(i, 0, n - 1)
    k1 = np.where(i == 0, 0.0, keys[lo])
    v1 = np.where(i == 0, 0.0, values[lo])
    k2 = np.where(i == n, 1.0, keys[hi])
    v2 = np.where(i == n, 1.0, values[hi])

    span = k2 - k1
    with np.errstate(divide="ignore", invalid="ignore"):
        alpha = np.where(span != 0.0, (t_arr - k1) / span, 0.0)

    result = np.where(hit, values[i_hit], v1 + (v2 - v1) * alpha)
    return _result(result, t)


def sample_at_x(points: ArrayLike, t: ArrayLike) -> FloatOrArray:
    """Return the y value of a point curve at x = ``t``.

    Exact key hits return the stored y. Outside the covered range the
    curve is extended towards (0, 0) below and (1, 1) above.
    """
    arr = _as_points(points)
    return _lerp_keys(arr[:, 0], arr[:, 1], t)


def sample_at_y(points: ArrayLike, t: ArrayLike) -> FloatOrArray:
    """Return the x value of a point curve at y = ``t``.

    Mirror of :func:`sample_at_x` with the roles of x and y swapped.
    """
    arr = _as_points(points)
    return _lerp_keys(arr[:, 1], arr[:, 0], t)


def invert_monotonic(table: ArrayLike, resolution: int) -> NDArray[np.float64]:
    """Resample the inverse of a monotonic [0,1] -> [0,1] uniform table.

    Both the input positions and the table values are forced forward with a
    running maximum before inversion, so noisy, flat or slightly decreasing
    tables still yield a well-defined (if lossy) non-decreasing inverse.

    Args:
        table: Uniform table of a (nominally) monotonic function.
        resolution: Number of samples in the inverse table (at least 2).

    Returns:
        Uniform table of the inverse function.
    """
    values = _as_table(table)
    if resolution < 2:
        raise ValueError("Inverse resolution must be at least 2")

    xs = np.maximum.accumulate(np.maximum(np.linspace(0.0, 1.0, len(values)), 0.0))
    ys = np.maximum.accumulate(np.maximum(values, 0.0))
    curve = np.column_stack((xs, ys))

    targets = np.linspace(0.0, 1.0, resolution)
    flipped = _lerp_keys(curve[:, 1], curve[:, 0], targets)
    return np.maximum.accumulate(np.maximum(flipped, 0.0))


def walk_min_slope(
    values: ArrayLike,
    min_delta: float,
    lift: bool = False,
    start: float | None = None,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Walk a uniform table checking every step against a minimum rise.

    With ``lift=False`` the values are left untouched and the shortfall of
    each step is measured against the raw previous sample:
    ``max(0, previous - value + min_delta)``.

    With ``lift=True`` each sample is raised to at least the previous
    (already lifted) sample plus ``min_delta``; the shortfall is the amount
    it was raised by.

    Args:
        values: Table to walk.
        min_delta: Minimum rise between consecutive samples.
        lift: Whether to lift samples that fall short.
        start: Virtual predecessor of the first sample. When None the first
            sample is never short.

    Returns:
        Tuple of (walked values, per-sample shortfall).
    """
    v = np.asarray(values, dtype=np.float64)
    if v.ndim != 1 or len(v) == 0:
        raise ValueError("Expected a non-empty 1D table")

    if lift:
        seq = v if start is None else np.concatenate(([start], v))
        ramp = np.arange(len(seq), dtype=np.float64) * min_delta
        floor = np.maximum.accumulate(seq - ramp)
        walked = np.where(floor > seq - ramp, floor + ramp, seq)
        if start is not None:
            walked = walked[1:]
        return walked, walked - v

    prev = np.empty_like(v)
    prev[1:] = v[:-1]
    prev[0] = v[0] if start is None else start
    shortfall = np.maximum(prev - v + min_delta, 0.0)
    if start is None:
        shortfall[0] = 0.0
    return v.copy(), shortfall


def is_non_decreasing(values: ArrayLike, tolerance: float = 0.0) -> bool:
    """Check that a table never drops by more than ``tolerance``."""
    v = np.asarray(values, dtype=np.float64)
    if len(v) < 2:
        return True
    return bool(np.all(np.diff(v) >= -tolerance))
