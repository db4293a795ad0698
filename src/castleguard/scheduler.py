"""
Delay-bounded output scheduling.

Every accepted tuple waits in the PendingQueue, ordered by the logical time
it was enqueued, until its cluster is released. On each arrival and each
clock advance the scheduler:

1. releases clusters that became ready,
2. lets the cluster manager merge clusters while the live count exceeds mu,
3. forces out every tuple at the head of the queue that has waited delta.

Releasing a cluster generalizes it, passes each member's record through the
sampler in enqueue order, and removes the members from the queue and from
the cluster, which is then destroyed.
"""

import logging
from collections import OrderedDict
from typing import Hashable, Iterable, Iterator, Optional

from castleguard.audit import AuditStats
from castleguard.cluster_manager import ClusterManager
from castleguard.config import PrivacyParameters
from castleguard.constraints import ConstraintEvaluator
from castleguard.generalizer import Generalizer
from castleguard.records import Emitted, GeneralizedRecord, Outcome
from castleguard.sampler import BernoulliSampler
from castleguard.tuples import StreamTuple


class PendingQueue:
    """
    Tuples awaiting release, oldest first.

    Entries map tuple id to enqueue time; the owning cluster is looked up in
    the cluster manager's index so merges and splits never touch the queue.
    """

    def __init__(self) -> None:
        self._entries: OrderedDict[Hashable, int] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, tuple_id: Hashable) -> bool:
        return tuple_id in self._entries

    def __iter__(self) -> Iterator[tuple[Hashable, int]]:
        return iter(self._entries.items())

    def push(self, tuple_id: Hashable, enqueued_at: int) -> None:
        if tuple_id in self._entries:
            raise ValueError(f"Tuple {tuple_id} is already pending")
        if self._entries:
            _, last = next(reversed(self._entries.items()))
            if enqueued_at < last:
                raise ValueError(
                    f"Tuple {tuple_id} enqueued at {enqueued_at}, before the last entry at {last}"
                )
        self._entries[tuple_id] = enqueued_at

    def remove(self, tuple_id: Hashable) -> int:
        return self._entries.pop(tuple_id)

    def head(self) -> Optional[tuple[Hashable, int]]:
        """The oldest entry as ``(tuple_id, enqueued_at)``, or None when empty."""
        if not self._entries:
            return None
        return next(iter(self._entries.items()))

    def enqueued_at(self, tuple_id: Hashable) -> int:
        return self._entries[tuple_id]


class OutputScheduler:
    """
    Moves released tuples from the PendingQueue through the sampler.

    Parameters
    ----------
    logger : logging.Logger
        Logger for debug and relaxation output.
    params : PrivacyParameters
        Engine configuration.
    manager : ClusterManager
        Owner of the clusters being released.
    evaluator : ConstraintEvaluator
        Decides readiness and forces progress on expired tuples.
    generalizer : Generalizer
        Produces the released records.
    sampler : BernoulliSampler
        Decides emit or suppress for each record.
    stats : AuditStats
        Release counters.
    """

    def __init__(
        self,
        logger: logging.Logger,
        params: PrivacyParameters,
        manager: ClusterManager,
        evaluator: ConstraintEvaluator,
        generalizer: Generalizer,
        sampler: BernoulliSampler,
        stats: AuditStats,
    ) -> None:
        self.logger = logger
        self.params = params
        self.manager = manager
        self.evaluator = evaluator
        self.generalizer = generalizer
        self.sampler = sampler
        self.stats = stats
        self.queue = PendingQueue()

    @property
    def queue_depth(self) -> int:
        return len(self.queue)

    def enqueue(self, stream_tuple: StreamTuple) -> None:
        self.queue.push(stream_tuple.tuple_id, stream_tuple.arrival_index)

    def _sample(self, record: GeneralizedRecord) -> Outcome:
        outcome = self.sampler.sample(record)
        if isinstance(outcome, Emitted):
            self.stats.emitted += 1
        else:
            self.stats.suppressed += 1
        return outcome

    def flush(self, cluster_id: int, now: int, relaxed: bool = False) -> list[Outcome]:
        """
        Release every member of ``cluster_id`` and destroy the cluster.

        Records are sampled in enqueue order.
        """
        cluster = self.manager.get(cluster_id)
        members = sorted(
            self.manager.members(cluster_id),
            key=lambda member: self.queue.enqueued_at(member.tuple_id),
        )
        records = self.generalizer.generalize(cluster, members, now, relaxed=relaxed)
        for member in members:
            self.manager.remove_tuple(member.tuple_id)
            self.queue.remove(member.tuple_id)
        self.manager.release_cluster(cluster_id, records[0] if records else None)
        if records:
            self.stats.record_release(records[0].information_loss, len(records), relaxed)
        return [self._sample(record) for record in records]

    def release_ready(self, cluster_ids: Iterable[int], now: int) -> list[Outcome]:
        """Flush the ready clusters among ``cluster_ids``, oldest pending tuple first."""
        ready = [
            cluster_id
            for cluster_id in dict.fromkeys(cluster_ids)
            if cluster_id in self.manager.clusters
            and self.evaluator.is_ready(self.manager.get(cluster_id))
        ]
        outcomes: list[Outcome] = []
        for cluster_id in self.manager.oldest_first(ready):
            outcomes.extend(self.flush(cluster_id, now))
        return outcomes

    def expire_head(self, now: int) -> list[Outcome]:
        """Force out the tuple at the head of the queue through the expired path."""
        head = self.queue.head()
        assert head is not None, "expire_head on an empty queue"
        tuple_id, _ = head
        stream_tuple = self.manager.tuples[tuple_id]
        reusable = self.evaluator.reusable_release(stream_tuple)
        if reusable is not None:
            self.manager.release_tuple(tuple_id, now)
            self.queue.remove(tuple_id)
            self.stats.reused += 1
            if self.logger.isEnabledFor(logging.DEBUG):
                self.logger.debug(
                    "tuple %s released under cluster %d generalization",
                    tuple_id,
                    reusable.cluster_id,
                )
            return [self._sample(self.generalizer.reuse(stream_tuple, reusable, now))]
        cluster_id, relaxed = self.evaluator.force_progress(self.manager.cluster_of(tuple_id), now)
        return self.flush(cluster_id, now, relaxed=relaxed)

    def tick(self, now: int, touched: Iterable[int] = ()) -> list[Outcome]:
        """
        Run one scheduling pass at logical time ``now``.

        Parameters
        ----------
        now : int
            Current logical time.
        touched : Iterable[int]
            Clusters changed since the last pass; only these can have become ready.

        Returns
        -------
        list of Outcome
            Sampler decisions for every tuple released in this pass.
        """
        outcomes = self.release_ready(touched, now)
        outcomes.extend(self.release_ready(self.manager.housekeep(now), now))
        while True:
            head = self.queue.head()
            if head is None or now - head[1] < self.params.delta:
                break
            outcomes.extend(self.expire_head(now))
        return outcomes

    def drain(self, now: int) -> list[Outcome]:
        """Force every pending tuple out through the expired path, oldest first."""
        outcomes: list[Outcome] = []
        while self.queue_depth > 0:
            outcomes.extend(self.expire_head(now))
        return outcomes
