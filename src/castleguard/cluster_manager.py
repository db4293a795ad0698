"""
Ownership of live clusters and the tuples they hold.

Clusters live in an arena keyed by integer id, and tuple membership is an
index from tuple id to cluster id, so merges and splits only rewrite ids.
The manager is the only component that mutates clusters; the constraint
evaluator and the output scheduler request transitions through it.

Assignment follows CASTLE: a tuple joins the cluster whose generalization it
enlarges least when that enlargement is within the threshold, the larger of
tau (the mean information loss of the most recently released clusters) and a
capacity share that shrinks as the live count nears mu. Otherwise a new
cluster is opened while the live count is under mu, and past that the tuple
joins the best cluster anyway. Equal costs go to the nearest centroid.
"""

import logging
from collections import deque
from typing import Hashable, Iterator, Optional, Sequence

import numpy as np
from first import first

from castleguard.audit import AuditStats
from castleguard.cluster import Cluster
from castleguard.config import PrivacyParameters
from castleguard.constants import MAXIMUM_PRECISION_DIGITS
from castleguard.generalizer import Generalizer, covers
from castleguard.records import GeneralizedRecord
from castleguard.tuples import StreamTuple


class ClusterSet:
    """
    Partition of live cluster ids into big (size >= k) and small (size < k).

    Every live cluster is in exactly one subset; ``update`` must be called
    after any change in a cluster's size.
    """

    def __init__(self, k: int) -> None:
        self.k = k
        self.big: set[int] = set()
        self.small: set[int] = set()

    def __len__(self) -> int:
        return len(self.big) + len(self.small)

    def __contains__(self, cluster_id: int) -> bool:
        return cluster_id in self.big or cluster_id in self.small

    def __iter__(self) -> Iterator[int]:
        """Live cluster ids in increasing order."""
        return iter(sorted(self.big | self.small))

    def update(self, cluster: Cluster) -> None:
        if len(cluster) >= self.k:
            self.small.discard(cluster.cluster_id)
            self.big.add(cluster.cluster_id)
        else:
            self.big.discard(cluster.cluster_id)
            self.small.add(cluster.cluster_id)

    def remove(self, cluster_id: int) -> None:
        self.big.discard(cluster_id)
        self.small.discard(cluster_id)

    def is_consistent(self, clusters: dict[int, Cluster]) -> bool:
        """Whether the partition matches ``clusters`` exactly."""
        if self.big & self.small:
            return False
        if self.big | self.small != set(clusters):
            return False
        return all(
            (len(cluster) >= self.k) == (cluster_id in self.big)
            for cluster_id, cluster in clusters.items()
        )


class ClusterManager:
    """
    Owns the live clusters, the pending tuples and the history of releases.

    Parameters
    ----------
    logger : logging.Logger
        Logger for debug output.
    params : PrivacyParameters
        Engine configuration.
    generalizer : Generalizer
        Costs candidate clusters.
    stats : AuditStats
        Counters for created clusters, merges and splits.

    Attributes
    ----------
    clusters : dict
        Cluster id -> Cluster, for every live cluster.
    cluster_set : ClusterSet
        Big/small partition of ``clusters``.
    released : deque
        One representative record for each of the last ``mu`` released
        clusters; feeds tau and released-generalization reuse.
    """

    def __init__(
        self,
        logger: logging.Logger,
        params: PrivacyParameters,
        generalizer: Generalizer,
        stats: AuditStats,
    ) -> None:
        self.logger = logger
        self.params = params
        self.generalizer = generalizer
        self.stats = stats
        self.clusters: dict[int, Cluster] = {}
        self.cluster_set = ClusterSet(params.k)
        self.tuples: dict[Hashable, StreamTuple] = {}
        self.tuple_cluster: dict[Hashable, int] = {}
        self.released: deque[GeneralizedRecord] = deque(maxlen=params.mu)
        self._next_cluster_id = 0

    def debug_logging_enabled(self) -> bool:
        return self.logger.isEnabledFor(logging.DEBUG)

    def __len__(self) -> int:
        return len(self.clusters)

    def get(self, cluster_id: int) -> Cluster:
        return self.clusters[cluster_id]

    def cluster_of(self, tuple_id: Hashable) -> int:
        return self.tuple_cluster[tuple_id]

    def members(self, cluster_id: int) -> list[StreamTuple]:
        """The cluster's member tuples ordered by arrival."""
        return [self.tuples[tuple_id] for tuple_id in self.clusters[cluster_id].member_ids]

    def tau(self) -> float:
        """Mean information loss of the last ``mu`` released clusters; 0.0 before any release."""
        if not self.released:
            return 0.0
        losses = np.array([record.information_loss for record in self.released], dtype=np.float64)
        return round(float(losses.mean()), MAXIMUM_PRECISION_DIGITS)

    def threshold(self) -> float:
        """
        Largest generalization cost at which a tuple joins an existing cluster.

        The larger of tau and the capacity share ``(mu - n + 1) / (mu * n)``
        of the ``n`` live clusters. A lone cluster accepts any tuple; the
        share falls to ``1 / mu**2`` as the live count reaches mu, so new
        clusters open more readily while capacity remains.
        """
        count = len(self.clusters)
        tau = self.tau()
        if count == 0:
            return tau
        share = (self.params.mu - count + 1) / (self.params.mu * count)
        return round(max(tau, share), MAXIMUM_PRECISION_DIGITS)

    def _create_cluster(self, now: int, created_at: Optional[int] = None) -> Cluster:
        cluster = Cluster(self._next_cluster_id, now if created_at is None else created_at)
        cluster.modified_at = now
        self._next_cluster_id += 1
        self.clusters[cluster.cluster_id] = cluster
        self.stats.clusters_created += 1
        return cluster

    def open_cluster(
        self, members: Sequence[StreamTuple], now: int, created_at: Optional[int] = None
    ) -> Cluster:
        """Create a live cluster holding ``members``, none of which may be assigned yet."""
        if not members:
            raise ValueError("Cannot open a cluster without members")
        for member in members:
            if member.tuple_id in self.tuple_cluster:
                raise ValueError(f"Tuple {member.tuple_id} is already in a cluster")
        cluster = self._create_cluster(now, created_at=created_at)
        for member in members:
            self._add_to_cluster(cluster, member, now)
        return cluster

    def _destroy_cluster(self, cluster_id: int) -> None:
        cluster = self.clusters.pop(cluster_id)
        assert len(cluster) == 0, f"Destroying non-empty cluster {cluster_id}"
        self.cluster_set.remove(cluster_id)

    def _add_to_cluster(self, cluster: Cluster, stream_tuple: StreamTuple, now: int) -> None:
        cluster.add(stream_tuple, self.generalizer.domains, now)
        self.tuples[stream_tuple.tuple_id] = stream_tuple
        self.tuple_cluster[stream_tuple.tuple_id] = cluster.cluster_id
        self.cluster_set.update(cluster)

    def assign(self, stream_tuple: StreamTuple, now: int) -> int:
        """
        Place ``stream_tuple`` in a cluster.

        Parameters
        ----------
        stream_tuple : StreamTuple
            A validated tuple that is not yet a member of any cluster.
        now : int
            Current logical time.

        Returns
        -------
        int
            Id of the cluster that now holds the tuple.

        Raises
        ------
        ValueError
            If the tuple is already a member of a cluster.
        """
        if stream_tuple.tuple_id in self.tuple_cluster:
            raise ValueError(f"Tuple {stream_tuple.tuple_id} is already in a cluster")
        best: Optional[Cluster] = None
        best_cost = np.inf
        if self.clusters:
            costs = {
                cluster_id: self.generalizer.generalization_cost(cluster, stream_tuple)
                for cluster_id, cluster in self.clusters.items()
            }
            best_cost = min(costs.values())
            tied = sorted(cluster_id for cluster_id, cost in costs.items() if cost == best_cost)
            best = self.clusters[self._nearest_centroid(tied, stream_tuple)]
        threshold = self.threshold()
        if best is not None and best_cost <= threshold:
            target = best
            reason = "within threshold"
        elif len(self.clusters) < self.params.mu or best is None:
            target = self.open_cluster([stream_tuple], now)
            reason = "new cluster"
        else:
            target = best
            reason = "at capacity"
        if target is best:
            self._add_to_cluster(target, stream_tuple, now)
        if self.debug_logging_enabled():
            self.logger.debug(
                "assign tuple %s -> cluster %d (%s, cost = %s, threshold = %s)",
                stream_tuple.tuple_id,
                target.cluster_id,
                reason,
                best_cost,
                threshold,
            )
        return target.cluster_id

    def _nearest_centroid(self, cluster_ids: list[int], stream_tuple: StreamTuple) -> int:
        """The cluster whose centroid is closest to ``stream_tuple``; lowest id on ties."""
        if len(cluster_ids) == 1:
            return cluster_ids[0]
        return min(
            cluster_ids,
            key=lambda cluster_id: (
                self.generalizer.centroid_distance(
                    self.clusters[cluster_id].centroid(
                        self.members(cluster_id), self.generalizer.domains
                    ),
                    stream_tuple,
                ),
                cluster_id,
            ),
        )

    def _bisect(self, members: list[StreamTuple]) -> list[list[StreamTuple]]:
        if len(members) <= self.params.split_threshold:
            return [members]
        ranges = [
            domain.from_values(member.qi[i] for member in members)
            for i, domain in enumerate(self.generalizer.domains)
        ]
        attribute = self.generalizer.widest_attribute(ranges)
        domain = self.generalizer.domains[attribute]
        ordered = sorted(
            members,
            key=lambda member: (domain.sort_key(member.qi[attribute]), member.arrival_index),
        )
        middle = len(ordered) // 2
        return self._bisect(ordered[:middle]) + self._bisect(ordered[middle:])

    def split(self, cluster_id: int, now: int) -> list[int]:
        """
        Split a cluster holding more than 2k members.

        Members are recursively bisected at the median of the attribute with
        the widest normalized range until no part exceeds 2k. The original
        cluster is destroyed and each part becomes a new live cluster that
        keeps the original's creation time.

        Returns
        -------
        list of int
            Ids of the new clusters, or ``[cluster_id]`` when no split is needed.
        """
        cluster = self.clusters[cluster_id]
        if len(cluster) <= self.params.split_threshold:
            return [cluster_id]
        parts = self._bisect(self.members(cluster_id))
        for member in self.members(cluster_id):
            cluster.discard(member)
            del self.tuple_cluster[member.tuple_id]
        self._destroy_cluster(cluster_id)
        new_ids = []
        for part in parts:
            new_cluster = self.open_cluster(part, now, created_at=cluster.created_at)
            new_ids.append(new_cluster.cluster_id)
        self.stats.splits += 1
        if self.debug_logging_enabled():
            self.logger.debug(
                "split cluster %d -> %s sizes = %s",
                cluster_id,
                new_ids,
                [len(part) for part in parts],
            )
        return new_ids

    def merge(self, source_id: int, target_id: int, now: int) -> int:
        """
        Move every member of ``source_id`` into ``target_id`` and destroy the source.

        Returns
        -------
        int
            ``target_id``.
        """
        if source_id == target_id:
            raise ValueError(f"Cannot merge cluster {source_id} into itself")
        source = self.clusters[source_id]
        target = self.clusters[target_id]
        for tuple_id in source.member_arrivals:
            self.tuple_cluster[tuple_id] = target_id
        target.absorb(source, now)
        self._destroy_cluster(source_id)
        self.cluster_set.update(target)
        self.stats.merges += 1
        if self.debug_logging_enabled():
            self.logger.debug(
                "merge cluster %d -> %d size = %d diversity = %d",
                source_id,
                target_id,
                len(target),
                target.diversity,
            )
        return target_id

    def find_nearest(self, cluster_id: int) -> Optional[int]:
        """
        The other live cluster that is cheapest to merge with ``cluster_id``.

        Ties are broken by the lower information loss of the merged cluster,
        then by the lower cluster id. Returns None when ``cluster_id`` is the
        only live cluster.
        """
        cluster = self.clusters[cluster_id]
        candidates = [
            (
                self.generalizer.merge_cost(cluster, other),
                self.generalizer.combined_loss(cluster, other),
                other_id,
            )
            for other_id, other in self.clusters.items()
            if other_id != cluster_id
        ]
        if not candidates:
            return None
        return min(candidates)[2]

    def housekeep(self, now: int) -> list[int]:
        """
        Merge old clusters while the live count exceeds mu.

        The oldest small cluster (oldest member first, then lowest id) is
        merged into its nearest neighbor; when no small cluster exists the
        oldest cluster is used.

        Returns
        -------
        list of int
            Ids of merge targets, which may have become ready.
        """
        targets = []
        while len(self.clusters) > self.params.mu:
            pool = self.cluster_set.small or set(self.clusters)
            source_id = self.oldest_first(list(pool))[0]
            target_id = self.find_nearest(source_id)
            if target_id is None:
                break
            self.merge(source_id, target_id, now)
            targets = [cid for cid in targets if cid != source_id]
            if target_id not in targets:
                targets.append(target_id)
        return targets

    def remove_tuple(self, tuple_id: Hashable) -> StreamTuple:
        """Take a tuple out of its cluster; the cluster's ranges are left stale."""
        stream_tuple = self.tuples.pop(tuple_id)
        cluster_id = self.tuple_cluster.pop(tuple_id)
        self.clusters[cluster_id].discard(stream_tuple)
        return stream_tuple

    def release_cluster(self, cluster_id: int, record: Optional[GeneralizedRecord]) -> None:
        """
        Record a released cluster and destroy it.

        Every member must already have been removed with ``remove_tuple``.
        """
        if record is not None:
            self.released.append(record)
        self._destroy_cluster(cluster_id)

    def release_tuple(self, tuple_id: Hashable, now: int) -> StreamTuple:
        """Remove one tuple that is released on its own and tidy its cluster."""
        cluster_id = self.tuple_cluster[tuple_id]
        stream_tuple = self.remove_tuple(tuple_id)
        cluster = self.clusters[cluster_id]
        if len(cluster) == 0:
            self._destroy_cluster(cluster_id)
        else:
            cluster.recompute(self.members(cluster_id), self.generalizer.domains, now)
            self.cluster_set.update(cluster)
        return stream_tuple

    def find_reusable(self, stream_tuple: StreamTuple) -> Optional[GeneralizedRecord]:
        """
        A recently released, non-relaxed generalization covering ``stream_tuple``.

        Among covering releases the one with the lowest information loss,
        then the lowest cluster id, is returned.
        """
        candidates = sorted(
            (record for record in self.released if not record.relaxed),
            key=lambda record: (record.information_loss, record.cluster_id),
        )
        return first(candidates, key=lambda record: covers(record, stream_tuple))

    def check_consistency(self) -> bool:
        """Whether the indexes, clusters and big/small partition agree."""
        if not self.cluster_set.is_consistent(self.clusters):
            return False
        owned: dict[Hashable, int] = {}
        for cluster_id, cluster in self.clusters.items():
            for tuple_id in cluster.member_arrivals:
                if tuple_id in owned:
                    return False
                owned[tuple_id] = cluster_id
        return owned == self.tuple_cluster and set(owned) == set(self.tuples)

    def oldest_first(self, cluster_ids: Sequence[int]) -> list[int]:
        return sorted(cluster_ids, key=lambda cid: (self.clusters[cid].oldest_arrival, cid))
