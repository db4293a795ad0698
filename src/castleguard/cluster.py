"""
Clusters: mutable groups of tuples sharing one generalization.

A cluster owns tuple identifiers, not tuples; the cluster manager keeps the
tuples themselves and the tuple-to-cluster index. Ranges are always tight:
extended on insert, rebuilt from the members when members leave.
"""

from collections import Counter
from typing import Any, Hashable, Iterable, Optional, Sequence

import numpy as np

from castleguard.ranges import Domain, Range
from castleguard.tuples import StreamTuple
from castleguard.utils import mode


class Cluster:
    """
    A group of tuples generalized together.

    Parameters
    ----------
    cluster_id : int
        Unique, never reused identifier.
    created_at : int
        Logical time of creation.

    Attributes
    ----------
    member_arrivals : dict
        Member tuple id -> arrival index, in insertion order.
    ranges : list
        One NumericRange or CategoricalSet per QI attribute; empty while the
        cluster has no members.
    sensitive_counts : Counter
        Multiset of the members' sensitive values.
    modified_at : int
        Logical time of the last membership change.
    """

    def __init__(self, cluster_id: int, created_at: int) -> None:
        self.cluster_id = cluster_id
        self.created_at = created_at
        self.modified_at = created_at
        self.member_arrivals: dict[Hashable, int] = {}
        self.ranges: list[Range] = []
        self.sensitive_counts: Counter = Counter()
        self.oldest_arrival: Optional[int] = None

    def __len__(self) -> int:
        return len(self.member_arrivals)

    def __contains__(self, tuple_id: Hashable) -> bool:
        return tuple_id in self.member_arrivals

    def __repr__(self) -> str:
        return (
            f"Cluster({self.cluster_id}, size={len(self)}, diversity={self.diversity}, "
            f"ranges={self.ranges})"
        )

    @property
    def member_ids(self) -> list[Hashable]:
        """Member tuple ids ordered by arrival."""
        return sorted(self.member_arrivals, key=self.member_arrivals.__getitem__)

    @property
    def diversity(self) -> int:
        return len(self.sensitive_counts)

    def age(self, now: int) -> int:
        """Age of the oldest member; 0 for an empty cluster."""
        if self.oldest_arrival is None:
            return 0
        return now - self.oldest_arrival

    def ranges_with(self, stream_tuple: StreamTuple, domains: Sequence[Domain]) -> list[Range]:
        """Ranges the cluster would have if ``stream_tuple`` joined it."""
        if not self.ranges:
            return [domain.singleton(value) for domain, value in zip(domains, stream_tuple.qi)]
        return [rng.extended(value) for rng, value in zip(self.ranges, stream_tuple.qi)]

    def ranges_union(self, other: "Cluster") -> list[Range]:
        if not self.ranges:
            return list(other.ranges)
        if not other.ranges:
            return list(self.ranges)
        return [mine.union(theirs) for mine, theirs in zip(self.ranges, other.ranges)]  # type: ignore[arg-type]

    def add(self, stream_tuple: StreamTuple, domains: Sequence[Domain], now: int) -> None:
        assert stream_tuple.tuple_id not in self.member_arrivals, "tuple already a member"
        self.ranges = self.ranges_with(stream_tuple, domains)
        self.member_arrivals[stream_tuple.tuple_id] = stream_tuple.arrival_index
        self.sensitive_counts[stream_tuple.sensitive] += 1
        if self.oldest_arrival is None or stream_tuple.arrival_index < self.oldest_arrival:
            self.oldest_arrival = stream_tuple.arrival_index
        self.modified_at = now

    def absorb(self, other: "Cluster", now: int) -> None:
        """Take over every member of ``other``; ``other`` is left empty."""
        self.ranges = self.ranges_union(other)
        self.member_arrivals.update(other.member_arrivals)
        self.sensitive_counts.update(other.sensitive_counts)
        if other.oldest_arrival is not None and (
            self.oldest_arrival is None or other.oldest_arrival < self.oldest_arrival
        ):
            self.oldest_arrival = other.oldest_arrival
        self.modified_at = now
        other.member_arrivals = {}
        other.ranges = []
        other.sensitive_counts = Counter()
        other.oldest_arrival = None

    def discard(self, stream_tuple: StreamTuple) -> None:
        """
        Remove one member without touching the ranges.

        Callers either drop the whole cluster afterwards or call ``recompute``.
        """
        del self.member_arrivals[stream_tuple.tuple_id]
        self.sensitive_counts[stream_tuple.sensitive] -= 1
        if self.sensitive_counts[stream_tuple.sensitive] <= 0:
            del self.sensitive_counts[stream_tuple.sensitive]

    def recompute(self, members: Sequence[StreamTuple], domains: Sequence[Domain], now: int) -> None:
        """Rebuild ranges, counts and age from ``members``, which must be the full membership."""
        assert {m.tuple_id for m in members} == set(self.member_arrivals), "members do not match"
        self.sensitive_counts = Counter(member.sensitive for member in members)
        self.oldest_arrival = min((m.arrival_index for m in members), default=None)
        if members:
            self.ranges = [
                domain.from_values(member.qi[i] for member in members)
                for i, domain in enumerate(domains)
            ]
        else:
            self.ranges = []
        self.modified_at = now

    def centroid(self, members: Iterable[StreamTuple], domains: Sequence[Domain]) -> tuple[Any, ...]:
        """Per attribute mean (numeric) or mode (categorical) of the members' values."""
        members = list(members)
        if not members:
            return ()
        centroid: list[Any] = []
        for i, domain in enumerate(domains):
            values = [member.qi[i] for member in members]
            if domain.spec.is_categorical:
                centroid.append(mode(values))
            else:
                centroid.append(float(np.mean(values)))
        return tuple(centroid)
