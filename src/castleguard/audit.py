"""
Audit statistics for a streaming anonymization run.

The engine counts every decision that an external observer may want to
verify: how many tuples were ingested, rejected, emitted or suppressed, how
many releases relaxed k-anonymity or l-diversity to honor the delay bound,
and the information loss of every released cluster. These counters are not
part of the anonymization contract; they exist so the contract can be
audited.
"""

import copy
from collections import deque
from typing import Optional

import numpy as np

from castleguard.constants import INFORMATION_LOSS_SAMPLE_SIZE


class AuditStats:
    """
    Counters describing one engine's lifetime.

    Attributes
    ----------
    ingested : int
        Well-formed tuples accepted into a cluster.
    malformed : int
        Tuples rejected by validation; never clustered.
    emitted, suppressed : int
        Sampler decisions. Every ingested tuple ends up in exactly one of them.
    relaxed : int
        Records released from a cluster that was not k-anonymous and
        l-diverse, whether or not the sampler then emitted them.
    reused : int
        Records released under an earlier cluster's generalization.
    clusters_created, merges, splits : int
        Cluster manager activity.
    forced_merges : int
        Merges performed because a tuple reached its delay bound.
    released_clusters : int
        Clusters released, including relaxed releases.
    information_losses : deque of float
        Information loss of the most recent ``max_samples`` released
        clusters, in release order. Count, sum, min and max cover every
        release; the percentiles of ``information_loss_distribution`` are
        taken over this window.
    """

    def __init__(self, max_samples: int = INFORMATION_LOSS_SAMPLE_SIZE) -> None:
        self.ingested = 0
        self.malformed = 0
        self.emitted = 0
        self.suppressed = 0
        self.relaxed = 0
        self.reused = 0
        self.clusters_created = 0
        self.merges = 0
        self.splits = 0
        self.forced_merges = 0
        self.released_clusters = 0
        self.information_losses: deque[float] = deque(maxlen=max_samples)
        self._loss_sum = 0.0
        self._loss_min = np.inf
        self._loss_max = -np.inf

    @property
    def sampled(self) -> int:
        return self.emitted + self.suppressed

    def emission_rate(self) -> float:
        """Fraction of sampled records that were emitted; nan before any sample."""
        if self.sampled == 0:
            return np.nan
        return self.emitted / self.sampled

    def suppression_rate(self) -> float:
        if self.sampled == 0:
            return np.nan
        return self.suppressed / self.sampled

    def record_release(self, information_loss: float, n_records: int, relaxed: bool) -> None:
        self.released_clusters += 1
        self.information_losses.append(information_loss)
        self._loss_sum += information_loss
        self._loss_min = min(self._loss_min, information_loss)
        self._loss_max = max(self._loss_max, information_loss)
        if relaxed:
            self.relaxed += n_records

    def information_loss_distribution(self) -> dict[str, float]:
        """
        Summary of per-cluster information loss.

        Returns
        -------
        dict
            count, mean, min, p25, p50, p75, max; nan values when nothing has
            been released. The quartiles cover the retained window only.
        """
        losses = np.array(self.information_losses, dtype=np.float64)
        if self.released_clusters == 0 or len(losses) == 0:
            return {
                "count": 0,
                "mean": np.nan,
                "min": np.nan,
                "p25": np.nan,
                "p50": np.nan,
                "p75": np.nan,
                "max": np.nan,
            }
        p25, p50, p75 = np.percentile(losses, [25, 50, 75])
        return {
            "count": self.released_clusters,
            "mean": self._loss_sum / self.released_clusters,
            "min": float(self._loss_min),
            "p25": float(p25),
            "p50": float(p50),
            "p75": float(p75),
            "max": float(self._loss_max),
        }

    def merge(self, other: Optional["AuditStats"]) -> None:
        """Add another run's counters into this one; None is ignored."""
        if other is None:
            return
        self.ingested += other.ingested
        self.malformed += other.malformed
        self.emitted += other.emitted
        self.suppressed += other.suppressed
        self.relaxed += other.relaxed
        self.reused += other.reused
        self.clusters_created += other.clusters_created
        self.merges += other.merges
        self.splits += other.splits
        self.forced_merges += other.forced_merges
        self.released_clusters += other.released_clusters
        self.information_losses.extend(other.information_losses)
        self._loss_sum += other._loss_sum
        self._loss_min = min(self._loss_min, other._loss_min)
        self._loss_max = max(self._loss_max, other._loss_max)

    def copy(self) -> "AuditStats":
        return copy.deepcopy(self)

    def summary(self) -> str:
        """Compact one-line form for log messages."""
        return (
            f"Audit(ingested={self.ingested}, emitted={self.emitted}, suppressed={self.suppressed}, "
            f"relaxed={self.relaxed}, malformed={self.malformed})"
        )

    def __repr__(self) -> str:
        distribution = self.information_loss_distribution()
        result = ["=== Stream Anonymization Audit ==="]
        result.append(f"Ingested:             {self.ingested}")
        result.append(f"Malformed (skipped):  {self.malformed}")
        result.append(f"Emitted:              {self.emitted}")
        result.append(f"Suppressed:           {self.suppressed}")
        result.append(f"Relaxed:              {self.relaxed}")
        result.append(f"Reused:               {self.reused}")
        result.append(f"Emission Rate:        {self.emission_rate() * 100:.1f}%")
        result.append(f"Suppression Rate:     {self.suppression_rate() * 100:.1f}%")
        result.append("")
        result.append("=== Clusters ===")
        result.append(f"Created:              {self.clusters_created}")
        result.append(f"Released:             {self.released_clusters}")
        result.append(f"Merges:               {self.merges}")
        result.append(f"  of which forced:    {self.forced_merges}")
        result.append(f"Splits:               {self.splits}")
        result.append("")
        result.append("=== Information Loss ===")
        for key in ("mean", "min", "p25", "p50", "p75", "max"):
            result.append(f"{key + ':':<22}{distribution[key]:.4f}")
        return "\n".join(result)
