"""
Entropy l-diversity of a released stream.

Functions:
- compute_entropy_log_l_diversity: entropy of the sensitive values within each
  equivalence class of released records
"""

from collections import Counter
from typing import Sequence

import numpy as np
import pandas as pd

from castleguard.constants import NOT_DEFINED_NA


def compute_entropy_log_l_diversity(
    released_df: pd.DataFrame,
    qids: Sequence[str],
    sens_attr_col: str = "sensitive",
) -> tuple[float, float, float]:
    """
    Compute entropy l-diversity across all equivalence classes of a release.

    Parameters
    ----------
    released_df : pd.DataFrame
        Released records, as built by ``outcomes_to_df``.
    qids : Sequence[str]
        Generalized QI columns defining the equivalence classes.
    sens_attr_col : str, default "sensitive"
        Column of the sensitive attribute.

    Returns
    -------
    Tuple[float, float, float]
        Mean, minimum and maximum of the per-class entropy
        ``-sum(p_i * log(p_i))``; nan values for an empty frame or no QIDs.

    Notes
    -----
    A class with l equally frequent sensitive values has entropy log(l), so
    an l-diverse release in the distinct sense has a minimum of at most log(l).

    References
    ----------
    A. Machanavajjhala, J. Gehrke, D. Kifer, and M. Venkitasubramaniam,
    "L-diversity: privacy beyond k-anonymity," in 22nd International Conference
    on Data Engineering (ICDE'06), Atlanta, GA, USA: IEEE, 2006, pp. 24-24.
    doi: 10.1109/ICDE.2006.1.
    """
    qids = list(qids)
    if len(released_df) == 0 or len(qids) == 0:
        return (NOT_DEFINED_NA, NOT_DEFINED_NA, NOT_DEFINED_NA)

    l_values = []
    for _, block_df in released_df.groupby(qids if len(qids) > 1 else qids[0], dropna=False):
        counts = np.array(list(Counter(block_df[sens_attr_col].tolist()).values()), dtype=np.float64)
        proportions = counts / counts.sum()
        l_values.append(float(-np.sum(proportions * np.log(proportions))))

    if len(l_values) == 0:
        return (NOT_DEFINED_NA, NOT_DEFINED_NA, NOT_DEFINED_NA)

    return float(np.mean(l_values)), float(np.min(l_values)), float(np.max(l_values))
