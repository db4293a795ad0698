"""
Differential privacy accounting for Bernoulli-sampled k-anonymous releases.

Sampling every candidate record with probability beta before it is released
from a k-anonymous cluster hides whether any individual was present in the
stream. Li, Qardaji & Su show that beta-sampling followed by a k-anonymizer
that does not depend on the data beyond what sampling exposes satisfies
(epsilon, delta)-differential privacy for every epsilon >= -ln(1 - beta), with

    gamma = (e^epsilon - 1 + beta) / e^epsilon
    n_m   = ceil(k / gamma - 1)
    delta = max_{n >= n_m} sum_{j > gamma * n} Binomial(j; n, beta)

This module evaluates those quantities; it does not tune beta.

References
----------
N. Li, W. Qardaji, and D. Su, "On sampling, anonymization, and differential
privacy or, k-anonymization meets differential privacy," in Proceedings of the
7th ACM Symposium on Information, Computer and Communications Security
(ASIACCS '12), 2012, pp. 32-33.
"""

import math
from typing import Optional

import numpy as np
from scipy.stats import binom

from castleguard.constants import PRIVACY_DELTA_HORIZON


def minimum_epsilon(beta: float) -> float:
    """
    Smallest epsilon achievable by sampling with probability ``beta``.

    Parameters
    ----------
    beta : float
        Sampling probability in [0, 1].

    Returns
    -------
    float
        -ln(1 - beta); 0.0 for beta = 0 and inf for beta = 1 (no sampling, no
        membership protection).

    Examples
    --------
    >>> minimum_epsilon(0.0)
    0.0
    >>> round(minimum_epsilon(0.5), 6)
    0.693147
    """
    if not 0.0 <= beta <= 1.0:
        raise ValueError(f"beta must be in [0, 1], got {beta}")
    if beta == 1.0:
        return math.inf
    return -math.log1p(-beta)


def sampling_gamma(beta: float, epsilon: float) -> float:
    """gamma = (e^epsilon - 1 + beta) / e^epsilon, computed as 1 - (1 - beta) e^-epsilon."""
    return 1.0 - (1.0 - beta) * math.exp(-epsilon)


def privacy_delta(
    k: int,
    beta: float,
    epsilon: Optional[float] = None,
    horizon: int = PRIVACY_DELTA_HORIZON,
) -> float:
    """
    The delta of the (epsilon, delta)-DP guarantee for beta-sampled k-anonymity.

    Parameters
    ----------
    k : int
        Minimum released cluster size.
    beta : float
        Sampling probability in [0, 1].
    epsilon : float, optional
        Target epsilon; defaults to ``minimum_epsilon(beta)``.
    horizon : int, default PRIVACY_DELTA_HORIZON
        Number of values of n, starting at n_m, over which the binomial tail is
        maximized. The tail vanishes as n grows because gamma > beta.

    Returns
    -------
    float
        delta in [0, 1]. Returns 0.0 when beta is 0 (nothing is released) and
        when epsilon is infinite.

    Raises
    ------
    ValueError
        If k < 1, beta is outside [0, 1], or epsilon < -ln(1 - beta).
    """
    if k < 1:
        raise ValueError(f"k must be >= 1, got {k}")
    floor = minimum_epsilon(beta)
    if epsilon is None:
        epsilon = floor
    if not epsilon >= floor:
        raise ValueError(f"epsilon ({epsilon}) must be >= -ln(1 - beta) = {floor}")
    if beta == 0.0 or math.isinf(epsilon):
        return 0.0
    gamma = sampling_gamma(beta, epsilon)
    n_m = max(1, math.ceil(k / gamma - 1))
    ns = np.arange(n_m, n_m + horizon)
    # sum over j > gamma * n of the binomial pmf is the survival function at floor(gamma * n)
    tails = binom.sf(np.floor(gamma * ns), ns, beta)
    return float(np.max(tails))
