"""
Tests for the cluster and the generalizer
"""

import logging

import pytest

from castleguard.cluster import Cluster
from castleguard.config import AttributeSpec, PrivacyParameters
from castleguard.generalizer import Generalizer
from castleguard.gtrees import make_flat_default_gtree
from castleguard.tuples import StreamTuple

_LOGGER = logging.getLogger(__name__)


def _generalizer(*attributes):
    params = PrivacyParameters(k=2, l=1, attributes=list(attributes))
    return Generalizer(_LOGGER, params)


def _cluster(generalizer, cluster_id, tuples, now=0):
    cluster = Cluster(cluster_id, now)
    for t in tuples:
        generalizer.observe(t)
        cluster.add(t, generalizer.domains, now)
    return cluster


def _t(tuple_id, *qi, sensitive="A"):
    return StreamTuple(tuple_id, tuple_id, tuple(qi), sensitive)


class TestCluster:
    """
    Tests for Cluster bookkeeping.
    """

    def test_add_tracks_ranges_and_sensitive(self):
        generalizer = _generalizer(AttributeSpec("x", domain=(0, 10)))
        cluster = _cluster(
            generalizer, 0, [_t(1, 3.0, sensitive="A"), _t(2, 1.0, sensitive="B"), _t(3, 2.0)]
        )
        assert len(cluster) == 3
        assert cluster.diversity == 2
        assert cluster.sensitive_counts == {"A": 2, "B": 1}
        assert cluster.ranges[0].lo == 1.0 and cluster.ranges[0].hi == 3.0
        assert cluster.oldest_arrival == 1
        assert cluster.age(6) == 5
        assert cluster.member_ids == [1, 2, 3]
        assert 2 in cluster

    def test_absorb(self):
        generalizer = _generalizer(AttributeSpec("x", domain=(0, 10)))
        a = _cluster(generalizer, 0, [_t(4, 9.0)])
        b = _cluster(generalizer, 1, [_t(1, 1.0, sensitive="B")])
        a.absorb(b, now=5)
        assert len(a) == 2 and len(b) == 0
        assert a.oldest_arrival == 1
        assert a.ranges[0].lo == 1.0 and a.ranges[0].hi == 9.0
        assert a.diversity == 2
        assert a.modified_at == 5

    def test_recompute_after_discard(self):
        generalizer = _generalizer(AttributeSpec("x", domain=(0, 10)))
        tuples = [_t(1, 1.0), _t(2, 5.0, sensitive="B"), _t(3, 9.0)]
        cluster = _cluster(generalizer, 0, tuples)
        cluster.discard(tuples[2])
        cluster.recompute(tuples[:2], generalizer.domains, now=4)
        assert cluster.ranges[0].hi == 5.0
        cluster.discard(tuples[1])
        cluster.recompute(tuples[:1], generalizer.domains, now=4)
        assert cluster.diversity == 1
        assert cluster.ranges[0].hi == 1.0

    def test_centroid(self):
        generalizer = _generalizer(
            AttributeSpec("x", domain=(0, 10)), AttributeSpec("c", kind="categorical")
        )
        tuples = [_t(1, 1.0, "a"), _t(2, 3.0, "b"), _t(3, 5.0, "b")]
        cluster = _cluster(generalizer, 0, tuples)
        assert cluster.centroid(tuples, generalizer.domains) == (3.0, "b")


class TestGeneralizer:
    """
    Tests for generalization cost and information loss.
    """

    def test_information_loss(self):
        generalizer = _generalizer(AttributeSpec("x", domain=(0, 10)))
        cluster = _cluster(generalizer, 0, [_t(1, 1.0), _t(2, 3.0)])
        assert generalizer.information_loss(cluster) == pytest.approx(0.2)
        assert generalizer.information_loss(Cluster(9, 0)) == 0.0

    def test_generalization_cost(self):
        generalizer = _generalizer(AttributeSpec("x", domain=(0, 10)))
        cluster = _cluster(generalizer, 0, [_t(1, 1.0), _t(2, 3.0)])
        assert generalizer.generalization_cost(cluster, _t(3, 2.0)) == 0.0
        assert generalizer.generalization_cost(cluster, _t(3, 5.0)) == pytest.approx(0.2)
        # side-effect free
        assert len(cluster) == 2
        assert cluster.ranges[0].hi == 3.0

    def test_weights(self):
        generalizer = _generalizer(
            AttributeSpec("x", weight=3.0, domain=(0, 10)),
            AttributeSpec("y", weight=1.0, domain=(0, 10)),
        )
        cluster = _cluster(generalizer, 0, [_t(1, 0.0, 0.0)])
        assert generalizer.generalization_cost(cluster, _t(2, 10.0, 0.0)) == pytest.approx(0.75)
        assert generalizer.generalization_cost(cluster, _t(2, 0.0, 10.0)) == pytest.approx(0.25)

    def test_categorical_cost(self):
        generalizer = _generalizer(
            AttributeSpec("c", kind="categorical", domain=["a", "b", "c", "d", "e"])
        )
        cluster = _cluster(generalizer, 0, [_t(1, "a")])
        assert generalizer.generalization_cost(cluster, _t(2, "a")) == 0.0
        assert generalizer.generalization_cost(cluster, _t(2, "b")) == pytest.approx(0.25)

    def test_merge_cost(self):
        generalizer = _generalizer(AttributeSpec("x", domain=(0, 10)))
        a = _cluster(generalizer, 0, [_t(1, 1.0), _t(2, 3.0)])
        b = _cluster(generalizer, 1, [_t(3, 9.0)])
        c = _cluster(generalizer, 2, [_t(4, 4.0)])
        assert generalizer.combined_loss(a, b) == pytest.approx(0.8)
        assert generalizer.merge_cost(a, b) == pytest.approx(2.0)
        assert generalizer.merge_cost(a, c) == pytest.approx(0.3 * 3 - 0.2 * 2)

    def test_widest_attribute(self):
        generalizer = _generalizer(
            AttributeSpec("x", domain=(0, 10)), AttributeSpec("y", domain=(0, 100))
        )
        cluster = _cluster(generalizer, 0, [_t(1, 1.0, 10.0), _t(2, 3.0, 50.0)])
        assert generalizer.widest_attribute(cluster.ranges) == 1
        cluster = _cluster(generalizer, 1, [_t(1, 1.0, 10.0), _t(2, 3.0, 30.0)])
        # tie goes to the first attribute
        assert generalizer.widest_attribute(cluster.ranges) == 0

    def test_centroid_distance(self):
        generalizer = _generalizer(
            AttributeSpec("x", domain=(0, 10)), AttributeSpec("c", kind="categorical")
        )
        assert generalizer.centroid_distance((3.0, "b"), _t(1, 3.0, "b")) == 0.0
        assert generalizer.centroid_distance((3.0, "b"), _t(2, 5.0, "b")) == pytest.approx(0.1)
        assert generalizer.centroid_distance((3.0, "b"), _t(3, 3.0, "a")) == pytest.approx(0.5)

    def test_generalize_contains_members(self):
        generalizer = _generalizer(
            AttributeSpec("x", domain=(0, 10)), AttributeSpec("c", kind="categorical")
        )
        tuples = [_t(1, 1.0, "a", sensitive="A"), _t(2, 4.0, "b", sensitive="B")]
        cluster = _cluster(generalizer, 3, tuples)
        records = generalizer.generalize(cluster, tuples, released_at=7)
        assert [record.tuple_id for record in records] == [1, 2]
        assert records[0].qi == records[1].qi
        for record, t in zip(records, tuples):
            assert record.contains(t.qi)
            assert record.sensitive == t.sensitive
            assert record.cluster_id == 3
            assert record.cluster_size == 2
            assert record.diversity == 2
            assert not record.relaxed
        assert records[0].delay == 6
        assert records[0].as_dict(["x", "c"])["x"] == "[1, 4]"
        assert records[0].as_dict(["x", "c"])["c"] == "{a, b}"

    def test_generalize_gtree_label(self):
        generalizer = _generalizer(
            AttributeSpec("c", kind="categorical", gtree=make_flat_default_gtree(["a", "b", "c"]))
        )
        tuples = [_t(1, "a"), _t(2, "b")]
        cluster = _cluster(generalizer, 0, tuples)
        (record, _) = generalizer.generalize(cluster, tuples, released_at=2, relaxed=True)
        assert record.qi[0].render() == "*"
        assert record.qi[0].values == frozenset({"a", "b", "c"})
        assert record.information_loss == 1.0
        assert record.relaxed

    def test_reuse(self):
        generalizer = _generalizer(AttributeSpec("x", domain=(0, 10)))
        tuples = [_t(1, 1.0), _t(2, 4.0)]
        cluster = _cluster(generalizer, 0, tuples)
        released = generalizer.generalize(cluster, tuples, released_at=2)[0]
        record = generalizer.reuse(_t(5, 3.0, sensitive="Z"), released, released_at=9)
        assert record.reused and not record.relaxed
        assert record.qi == released.qi
        assert record.tuple_id == 5 and record.sensitive == "Z"
        assert record.delay == 4
