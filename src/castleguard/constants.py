"""
Shared constants for the CASTLEGUARD streaming anonymization engine.

This module defines constants used across engine components for consistency
in float comparisons, random number generation, and generalization output.
"""

import math

import numpy as np

# Used to determine equality of floats, e.g. when comparing costs
MAXIMUM_PRECISION_DIGITS: int = 8
EPSILON: float = math.pow(10, -MAXIMUM_PRECISION_DIGITS)

MAX_RANDOM_STATE: int = 2**31 - 1
NOT_DEFINED_NA: float = np.nan

GTREE_ROOT_TAG: str = "*"

NUMERIC: str = "numeric"
CATEGORICAL: str = "categorical"
ATTRIBUTE_KINDS: tuple[str, ...] = (NUMERIC, CATEGORICAL)

# Horizon over n when maximizing the binomial tail for the privacy delta
PRIVACY_DELTA_HORIZON: int = 2_000

# Most recent per-cluster information losses kept for audit percentiles
INFORMATION_LOSS_SAMPLE_SIZE: int = 10_000
