"""
Readiness and delay-bound decisions for clusters.

A cluster is in exactly one of three states at a given logical time:

- READY: at least k members and at least l distinct sensitive values; it is
  released at once.
- AGING: not ready, and its oldest member has waited less than delta.
- EXPIRED: its oldest member has waited delta or longer; progress is forced.

Forcing progress merges the cluster with its nearest neighbors until it is
ready or nothing is left to merge. A cluster that is still not ready is
released anyway and marked relaxed; tuples are never dropped.
"""

import logging
from enum import Enum
from typing import Optional

from castleguard.audit import AuditStats
from castleguard.cluster import Cluster
from castleguard.cluster_manager import ClusterManager
from castleguard.config import PrivacyParameters
from castleguard.records import GeneralizedRecord
from castleguard.tuples import StreamTuple

ClusterState = Enum("ClusterState", ["READY", "AGING", "EXPIRED"])


class ConstraintEvaluator:
    """
    Classifies clusters and requests forced merges from the cluster manager.

    The evaluator never mutates clusters itself.
    """

    def __init__(
        self,
        logger: logging.Logger,
        params: PrivacyParameters,
        manager: ClusterManager,
        stats: AuditStats,
    ) -> None:
        self.logger = logger
        self.params = params
        self.manager = manager
        self.stats = stats

    def is_ready(self, cluster: Cluster) -> bool:
        return len(cluster) >= self.params.k and cluster.diversity >= self.params.l

    def state(self, cluster: Cluster, now: int) -> ClusterState:
        if self.is_ready(cluster):
            return ClusterState.READY
        if cluster.age(now) >= self.params.delta:
            return ClusterState.EXPIRED
        return ClusterState.AGING

    def reusable_release(self, stream_tuple: StreamTuple) -> Optional[GeneralizedRecord]:
        """
        An earlier release whose generalization covers ``stream_tuple``.

        Only consulted when ``reuse_released`` is enabled; returns None otherwise.
        """
        if not self.params.reuse_released:
            return None
        return self.manager.find_reusable(stream_tuple)

    def force_progress(self, cluster_id: int, now: int) -> tuple[int, bool]:
        """
        Merge an expired cluster with its nearest neighbors until it is ready.

        Parameters
        ----------
        cluster_id : int
            The expired cluster.
        now : int
            Current logical time.

        Returns
        -------
        tuple of (int, bool)
            The id of the cluster to release and whether the release is
            relaxed (the cluster is still not k-anonymous and l-diverse).
        """
        current_id = cluster_id
        while not self.is_ready(self.manager.get(current_id)):
            nearest_id = self.manager.find_nearest(current_id)
            if nearest_id is None:
                break
            current_id = self.manager.merge(current_id, nearest_id, now)
            self.stats.forced_merges += 1
        cluster = self.manager.get(current_id)
        relaxed = not self.is_ready(cluster)
        if relaxed:
            self.logger.warning(
                "Releasing cluster %d relaxed: size = %d (k = %d), diversity = %d (l = %d)",
                current_id,
                len(cluster),
                self.params.k,
                cluster.diversity,
                self.params.l,
            )
        return current_id, relaxed
