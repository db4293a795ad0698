"""
Disclosure risk metrics for released streams.

These functions measure a release after the fact, from the DataFrame built
by ``castleguard.pandas_utils.outcomes_to_df``. Records that share the same
rendered generalization form one equivalence class.

1. **P-sensitive k-anonymity**: the smallest equivalence class (k) and the
   smallest number of distinct sensitive values in any class (p).

2. **Entropy l-diversity**: entropy of the sensitive value distribution in
   each equivalence class.

Lower values indicate higher disclosure risk. Bernoulli sampling removes
records after clustering, so measured values over a sampled release are
expected to be lower than the configured k and l.

Functions
---------
compute_entropy_log_l_diversity : Tuple[float, float, float]
    Entropy l-diversity across equivalence classes: mean, min, max.

calculate_p_k : Tuple[Optional[int], Optional[int]]
    p-sensitive k-anonymity of a release.
"""

from .l_diversity import compute_entropy_log_l_diversity
from .p_sensitive_k_anonymity import calculate_p_k

__all__ = [
    "compute_entropy_log_l_diversity",
    "calculate_p_k",
]
