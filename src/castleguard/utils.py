"""
Numerical helpers shared by the generalizer and the cluster manager.

Ranges are recomputed from scratch whenever a cluster is split or merged or
loses members, so the min/max kernels below sit on the engine's hot path and
are compiled with numba.
"""

from collections import Counter
from typing import Any, Hashable, Iterable

import numba
import numpy as np


@numba.jit(nopython=True)
def min_max(x: np.ndarray) -> tuple[float, float]:
    """
    Find the minimum and maximum values of an array, ignoring NaN values.

    Both values are found in a single pass over the array.

    Parameters
    ----------
    x : np.ndarray
        Input array of numerical values.

    Returns
    -------
    Tuple[float, float]
        A tuple containing (minimum, maximum) values from the array.
        Returns (np.nan, np.nan) if the array is empty or contains only NaN values.

    Examples
    --------
    >>> min_max(np.array([1.0, 2.0, 3.0]))
    (1.0, 3.0)
    >>> min_max(np.array([np.nan, np.nan]))
    (nan, nan)
    """
    x = x[~np.isnan(x)]
    if len(x) == 0:
        return (np.nan, np.nan)
    maximum = x[0]
    minimum = x[0]
    for i in x[1:]:
        if i > maximum:
            maximum = i
        elif i < minimum:
            minimum = i
    return (minimum, maximum)


def as_float_array(values: Iterable[Any]) -> np.ndarray:
    """Convert numeric QI values to a float64 array suitable for the numba kernels."""
    return np.fromiter((float(value) for value in values), dtype=np.float64)


def mode(values: Iterable[Hashable]) -> Any:
    """
    Most common value, ties broken by first occurrence.

    Returns None for an empty input.
    """
    counts = Counter(values)
    if not counts:
        return None
    # Counter preserves insertion order, and most_common is stable
    return counts.most_common(1)[0][0]
