"""
Bernoulli output sampling.

Each generalized record about to leave the engine gets exactly one coin
flip. Heads emits the record unchanged; tails suppresses it for good.
Retrying a suppressed record would leak that it exists, so a decision is
never revisited.
"""

import logging
from typing import Optional

import numpy as np

from castleguard.privacy import minimum_epsilon, privacy_delta
from castleguard.records import Emitted, GeneralizedRecord, Outcome, Suppressed

__all__ = ["BernoulliSampler", "minimum_epsilon", "privacy_delta"]


class BernoulliSampler:
    """
    Emits each record independently with probability ``beta``.

    Parameters
    ----------
    beta : float
        Emission probability in [0, 1].
    seed : int, optional
        Seed for ``numpy.random.default_rng``; equal seeds give equal decisions
        for equal record sequences.
    logger : logging.Logger, optional
        Logger for debug output.
    """

    def __init__(
        self, beta: float, seed: Optional[int] = None, logger: Optional[logging.Logger] = None
    ) -> None:
        if not 0.0 <= beta <= 1.0:
            raise ValueError(f"beta must be in [0, 1], got {beta}")
        self.beta = beta
        self.rng = np.random.default_rng(seed)
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.n_trials = 0
        self.n_emitted = 0

    def sample(self, record: GeneralizedRecord) -> Outcome:
        self.n_trials += 1
        if self.rng.random() < self.beta:
            self.n_emitted += 1
            return Emitted(record)
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug("suppressed tuple %s", record.tuple_id)
        return Suppressed(record.tuple_id)

    @property
    def n_suppressed(self) -> int:
        return self.n_trials - self.n_emitted

    def emission_rate(self) -> float:
        """Realized fraction of records emitted; nan before the first trial."""
        if self.n_trials == 0:
            return np.nan
        return self.n_emitted / self.n_trials
