"""
Outcome types handed to the downstream consumer.

Every well-formed tuple produces exactly one outcome: Emitted, carrying its
generalized record, or Suppressed, carrying only the tuple identifier.
"""

from dataclasses import dataclass
from typing import Any, Hashable, Sequence, Union

from castleguard.ranges import Range


@dataclass(frozen=True)
class GeneralizedRecord:
    """
    A tuple as released: generalized QI values plus its sensitive value.

    Attributes
    ----------
    tuple_id : Hashable
        Identifier of the original tuple.
    arrival_index : int
        Logical time the tuple arrived.
    released_at : int
        Logical time the tuple's cluster was released.
    cluster_id : int
        Cluster whose generalization the record carries.
    qi : tuple of NumericRange or CategoricalSet
        Generalized QI values, identical for every record of the release.
    sensitive : Hashable
        Sensitive attribute value, unchanged.
    cluster_size : int
        Number of members in the cluster at release time.
    diversity : int
        Number of distinct sensitive values in the cluster at release time.
    information_loss : float
        Information loss of the generalization, in [0, 1].
    relaxed : bool
        True when the delay bound forced release before k-anonymity or
        l-diversity could be reached.
    reused : bool
        True when the tuple was released under a previously released cluster's
        generalization.
    """

    tuple_id: Hashable
    arrival_index: int
    released_at: int
    cluster_id: int
    qi: tuple[Range, ...]
    sensitive: Hashable
    cluster_size: int
    diversity: int
    information_loss: float
    relaxed: bool = False
    reused: bool = False

    @property
    def delay(self) -> int:
        return self.released_at - self.arrival_index

    def contains(self, qi: Sequence[Any]) -> bool:
        """Whether every generalized value contains the corresponding original value."""
        return all(rng.contains(value) for rng, value in zip(self.qi, qi))

    def as_dict(self, attribute_names: Sequence[str]) -> dict[str, Any]:
        row: dict[str, Any] = {
            "tuple_id": self.tuple_id,
            "arrival_index": self.arrival_index,
            "released_at": self.released_at,
            "cluster_id": self.cluster_id,
        }
        for name, rng in zip(attribute_names, self.qi):
            row[name] = rng.render()
        row["sensitive"] = self.sensitive
        row["cluster_size"] = self.cluster_size
        row["diversity"] = self.diversity
        row["information_loss"] = self.information_loss
        row["relaxed"] = self.relaxed
        row["reused"] = self.reused
        return row


@dataclass(frozen=True)
class Emitted:
    """The record passed the Bernoulli trial and is released."""

    record: GeneralizedRecord

    @property
    def tuple_id(self) -> Hashable:
        return self.record.tuple_id

    @property
    def relaxed(self) -> bool:
        return self.record.relaxed


@dataclass(frozen=True)
class Suppressed:
    """The record failed the Bernoulli trial; it is never retried."""

    tuple_id: Hashable


Outcome = Union[Emitted, Suppressed]
