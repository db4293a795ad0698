"""
Generalization cost and information loss.

Every QI attribute contributes its range's width normalized against the
attribute's global domain; a cluster's information loss is the weighted
average of those normalized widths, so it always lies in [0, 1]. The
generalization cost of a tuple is the increase in that loss if the tuple
joined the cluster, which is how CASTLE picks the cluster that "enlarges
least".
"""

import logging
from typing import Any, Sequence

import numpy as np

from castleguard.cluster import Cluster
from castleguard.config import PrivacyParameters
from castleguard.constants import MAXIMUM_PRECISION_DIGITS
from castleguard.ranges import Domain, Range, make_domain
from castleguard.records import GeneralizedRecord
from castleguard.tuples import StreamTuple


class Generalizer:
    """
    Costs candidate clusters and produces the released generalization.

    Parameters
    ----------
    logger : logging.Logger
        Logger for debug output.
    params : PrivacyParameters
        Supplies the QI attributes and their weights.

    Attributes
    ----------
    domains : list
        One NumericDomain or CategoricalDomain per QI attribute, in
        configuration order.
    """

    def __init__(self, logger: logging.Logger, params: PrivacyParameters) -> None:
        self.logger = logger
        self.params = params
        self.domains: list[Domain] = [make_domain(spec) for spec in params.attributes]
        weights = np.array([spec.weight for spec in params.attributes], dtype=np.float64)
        self.weights = weights / weights.sum()

    def observe(self, stream_tuple: StreamTuple) -> None:
        """Widen observed domains to include ``stream_tuple``'s QI values."""
        for domain, value in zip(self.domains, stream_tuple.qi):
            domain.observe(value)

    def normalized_widths(self, ranges: Sequence[Range]) -> np.ndarray:
        return np.array(
            [rng.normalized_width(domain) for rng, domain in zip(ranges, self.domains)],  # type: ignore[arg-type]
            dtype=np.float64,
        )

    def ranges_loss(self, ranges: Sequence[Range]) -> float:
        """Weighted average normalized width of ``ranges``; 0.0 for no ranges."""
        if not ranges:
            return 0.0
        loss = float(np.dot(self.weights, self.normalized_widths(ranges)))
        return round(loss, MAXIMUM_PRECISION_DIGITS)

    def information_loss(self, cluster: Cluster) -> float:
        return self.ranges_loss(cluster.ranges)

    def generalization_cost(self, cluster: Cluster, stream_tuple: StreamTuple) -> float:
        """
        Increase in ``cluster``'s information loss if ``stream_tuple`` joined it.

        Side-effect free. Costs are rounded so ties compare equal and are
        broken by cluster id by the caller.
        """
        extended = self.ranges_loss(cluster.ranges_with(stream_tuple, self.domains))
        cost = extended - self.information_loss(cluster)
        return round(max(cost, 0.0), MAXIMUM_PRECISION_DIGITS)

    def combined_loss(self, a: Cluster, b: Cluster) -> float:
        """Information loss of the union of ``a`` and ``b``."""
        return self.ranges_loss(a.ranges_union(b))

    def merge_cost(self, a: Cluster, b: Cluster) -> float:
        """
        Increase in total information loss, weighted by cluster size, if ``a``
        and ``b`` were merged.

        Weighting by size makes a large, tight cluster expensive to widen, so
        small clusters are drawn to each other before spoiling a big one.
        """
        combined = self.combined_loss(a, b)
        cost = (
            combined * (len(a) + len(b))
            - self.information_loss(a) * len(a)
            - self.information_loss(b) * len(b)
        )
        return round(max(cost, 0.0), MAXIMUM_PRECISION_DIGITS)

    def widest_attribute(self, ranges: Sequence[Range]) -> int:
        """Index of the attribute with the largest normalized width; lowest index on ties."""
        widths = np.round(self.normalized_widths(ranges), MAXIMUM_PRECISION_DIGITS)
        return int(np.argmax(widths))

    def centroid_distance(self, centroid: Sequence[Any], stream_tuple: StreamTuple) -> float:
        """
        Weighted distance from a cluster centroid to ``stream_tuple``.

        Numeric attributes contribute the gap normalized by the domain width,
        categorical attributes 0 when the value is the centroid's mode and 1
        otherwise.
        """
        distances = []
        for domain, center, value in zip(self.domains, centroid, stream_tuple.qi):
            if domain.spec.is_categorical:
                distances.append(0.0 if value == center else 1.0)
            elif domain.width > 0:
                distances.append(abs(float(value) - center) / domain.width)  # type: ignore[union-attr]
            else:
                distances.append(0.0)
        return round(float(np.dot(self.weights, distances)), MAXIMUM_PRECISION_DIGITS)

    def generalized_ranges(self, cluster: Cluster) -> tuple[Range, ...]:
        return tuple(
            domain.generalize(rng) for domain, rng in zip(self.domains, cluster.ranges)  # type: ignore[arg-type]
        )

    def generalize(
        self,
        cluster: Cluster,
        members: Sequence[StreamTuple],
        released_at: int,
        relaxed: bool = False,
    ) -> list[GeneralizedRecord]:
        """
        Build the released record of every member of ``cluster``.

        Parameters
        ----------
        cluster : Cluster
            The cluster being released.
        members : Sequence[StreamTuple]
            The cluster's member tuples, in the order records should be produced.
        released_at : int
            Current logical time.
        relaxed : bool, default False
            Whether the release is forced before the cluster is ready.

        Returns
        -------
        list of GeneralizedRecord
            One record per member, all carrying identical QI ranges.
        """
        qi = self.generalized_ranges(cluster)
        loss = self.ranges_loss(qi)
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(
                "generalize cluster %d size = %d loss = %.4f relaxed = %s",
                cluster.cluster_id,
                len(cluster),
                loss,
                relaxed,
            )
        return [
            GeneralizedRecord(
                tuple_id=member.tuple_id,
                arrival_index=member.arrival_index,
                released_at=released_at,
                cluster_id=cluster.cluster_id,
                qi=qi,
                sensitive=member.sensitive,
                cluster_size=len(cluster),
                diversity=cluster.diversity,
                information_loss=loss,
                relaxed=relaxed,
            )
            for member in members
        ]

    def reuse(
        self,
        stream_tuple: StreamTuple,
        released: GeneralizedRecord,
        released_at: int,
    ) -> GeneralizedRecord:
        """Release ``stream_tuple`` under the generalization carried by ``released``."""
        return GeneralizedRecord(
            tuple_id=stream_tuple.tuple_id,
            arrival_index=stream_tuple.arrival_index,
            released_at=released_at,
            cluster_id=released.cluster_id,
            qi=released.qi,
            sensitive=stream_tuple.sensitive,
            cluster_size=released.cluster_size,
            diversity=released.diversity,
            information_loss=released.information_loss,
            reused=True,
        )


def covers(released: GeneralizedRecord, stream_tuple: StreamTuple) -> bool:
    """Whether a released generalization contains every QI value of ``stream_tuple``."""
    return released.contains(stream_tuple.qi)

