"""
Tests for the CastleGuard engine
"""

import logging

import numpy as np
import pytest

from castleguard import (
    AttributeSpec,
    CastleGuard,
    Emitted,
    OutOfOrderArrivalError,
    PrivacyParameters,
    StreamTuple,
    Suppressed,
    privacy_delta,
)
from castleguard.constants import INFORMATION_LOSS_SAMPLE_SIZE
from castleguard.constraints import ClusterState

_LOGGER = logging.getLogger(__name__)

SCENARIO_VALUES = [1, 2, 3, 9, 10, 11]
SCENARIO_SENSITIVE = ["A", "B", "A", "B", "A", "B"]


def _scenario_tuples():
    return [
        (f"t{i}", i, [value], sensitive)
        for i, (value, sensitive) in enumerate(zip(SCENARIO_VALUES, SCENARIO_SENSITIVE))
    ]


def _engine(**kwargs):
    kwargs.setdefault("attributes", [AttributeSpec("x")])
    return CastleGuard(_LOGGER, PrivacyParameters(**kwargs))


def _random_stream(n, seed=0):
    rng = np.random.default_rng(seed)
    colors = ["red", "green", "blue", "black"]
    return [
        (
            i,
            i,
            [int(rng.integers(18, 90)), colors[int(rng.integers(0, len(colors)))]],
            ["A", "B", "C"][int(rng.integers(0, 3))],
        )
        for i in range(n)
    ]


def _two_attributes():
    return [AttributeSpec("age"), AttributeSpec("color", kind="categorical")]


class TestScenarios:
    """
    End to end runs over small hand-checked streams.
    """

    def test_two_clusters_emit(self):
        engine = _engine(k=3, l=2, delta=5, beta=1.0)
        outcomes = list(engine.run(_scenario_tuples()))
        assert len(outcomes) == 6
        assert all(isinstance(outcome, Emitted) for outcome in outcomes)
        ranges = {outcome.tuple_id: outcome.record.qi[0].render() for outcome in outcomes}
        assert ranges == {
            "t0": "[1, 3]",
            "t1": "[1, 3]",
            "t2": "[1, 3]",
            "t3": "[9, 11]",
            "t4": "[9, 11]",
            "t5": "[9, 11]",
        }
        for outcome in outcomes:
            assert not outcome.relaxed
            assert outcome.record.cluster_size == 3
            assert outcome.record.diversity == 2
        assert engine.stats.emitted == 6
        assert engine.stats.suppressed == 0
        assert engine.stats.relaxed == 0
        assert engine.stats.released_clusters == 2

    def test_clusters_released_when_ready(self):
        engine = _engine(k=3, l=2, delta=5)
        released = []
        for raw in _scenario_tuples():
            outcomes = engine.ingest(*raw)
            assert all(outcome.record.released_at == raw[1] for outcome in outcomes)
            released.append(sorted(outcome.tuple_id for outcome in outcomes))
        assert released == [[], [], ["t0", "t1", "t2"], [], [], ["t3", "t4", "t5"]]
        assert engine.queue_depth == 0
        assert engine.cluster_count == 0
        assert engine.stats.forced_merges == 0
        assert engine.stats.relaxed == 0
        assert engine.stats.clusters_created == 2
        assert engine.shutdown() == []

    def test_all_suppressed(self):
        with pytest.warns(UserWarning):
            engine = _engine(k=3, l=2, delta=5, beta=0.0)
        outcomes = list(engine.run(_scenario_tuples()))
        assert sorted(outcome.tuple_id for outcome in outcomes) == [f"t{i}" for i in range(6)]
        assert all(isinstance(outcome, Suppressed) for outcome in outcomes)
        assert engine.stats.suppressed == 6
        assert engine.stats.emitted == 0
        assert engine.stats.released_clusters == 2

    def test_relaxed_rather_than_dropped(self):
        engine = _engine(k=4, l=3, delta=2)
        outcomes = engine.ingest("a", 0, [1], "A")
        outcomes += engine.ingest("b", 1, [2], "B")
        assert outcomes == []
        outcomes += engine.ingest("c", 2, [3], "C")
        assert sorted(outcome.tuple_id for outcome in outcomes) == ["a", "b", "c"]
        assert all(isinstance(outcome, Emitted) and outcome.relaxed for outcome in outcomes)
        assert outcomes[0].record.cluster_size == 3
        assert engine.stats.relaxed == 3
        assert engine.shutdown() == []


class TestGuarantees:
    """
    Properties that hold for every run.
    """

    @pytest.fixture
    def run(self):
        params = PrivacyParameters(k=3, l=2, delta=10, mu=8, attributes=_two_attributes())
        engine = CastleGuard(_LOGGER, params)
        stream = _random_stream(300)
        outcomes = []
        cluster_counts = []
        for raw in stream:
            outcomes.extend(engine.ingest(*raw))
            cluster_counts.append(engine.cluster_count)
        outcomes.extend(engine.shutdown())
        return engine, stream, outcomes, cluster_counts

    def test_exactly_one_outcome_per_tuple(self, run):
        engine, stream, outcomes, _ = run
        assert sorted(outcome.tuple_id for outcome in outcomes) == list(range(len(stream)))
        assert engine.stats.ingested == len(stream)
        assert engine.stats.emitted == len(stream)
        assert engine.queue_depth == 0
        assert engine.cluster_count == 0

    def test_k_anonymous_and_l_diverse(self, run):
        engine, _, outcomes, _ = run
        released = {}
        for outcome in outcomes:
            record = outcome.record
            if not record.relaxed:
                assert record.cluster_size >= 3
                assert record.diversity >= 2
            released.setdefault((record.released_at, record.cluster_id), []).append(record)
        for records in released.values():
            assert len({record.qi for record in records}) == 1
            assert len(records) == records[0].cluster_size
            assert len({record.sensitive for record in records}) == records[0].diversity

    def test_generalizations_contain_originals(self, run):
        _, stream, outcomes, _ = run
        by_id = {raw[0]: raw for raw in stream}
        for outcome in outcomes:
            _, _, qi, sensitive = by_id[outcome.tuple_id]
            assert outcome.record.contains(qi)
            assert outcome.record.sensitive == sensitive

    def test_bounded_delay(self, run):
        _, _, outcomes, _ = run
        assert max(outcome.record.delay for outcome in outcomes) <= 10
        assert min(outcome.record.delay for outcome in outcomes) >= 0

    def test_live_clusters_within_capacity(self, run):
        _, _, _, cluster_counts = run
        assert max(cluster_counts) <= 8

    def test_deterministic(self):
        def outcomes(seed):
            params = PrivacyParameters(
                k=3, l=2, delta=10, beta=0.5, seed=seed, attributes=_two_attributes()
            )
            return list(CastleGuard(_LOGGER, params).run(_random_stream(200, seed=3)))

        first_run = outcomes(11)
        assert first_run == outcomes(11)
        assert any(isinstance(outcome, Suppressed) for outcome in first_run)
        assert any(isinstance(outcome, Emitted) for outcome in first_run)


class TestClusterLifecycle:
    """
    Tests for splits and cluster states seen through the engine.
    """

    def test_split_above_two_k(self):
        engine = _engine(k=2, l=2, delta=100)
        for i in range(5):
            assert engine.ingest(i, i, [5], "A") == []
        assert engine.stats.splits == 1
        assert engine.cluster_count == 2
        assert all(len(engine.manager.get(cid)) <= 4 for cid in engine.manager.cluster_set)
        assert engine.manager.check_consistency()

    def test_cluster_states(self):
        engine = _engine(k=3, delta=3)
        engine.ingest("a", 0, [1], "A")
        engine.ingest("b", 1, [50], "A")
        assert set(engine.cluster_states().values()) == {ClusterState.AGING}
        # a lone cluster takes any tuple
        assert engine.cluster_count == 1

    def test_reuse_released(self):
        engine = _engine(
            k=2, delta=2, reuse_released=True, attributes=[AttributeSpec("x", domain=(0, 100))]
        )
        outcomes = engine.ingest("a", 0, [10], "A")
        outcomes += engine.ingest("b", 1, [30], "B")
        outcomes += engine.advance(2)
        assert sorted(outcome.tuple_id for outcome in outcomes) == ["a", "b"]
        engine.ingest("c", 3, [20], "C")
        (outcome,) = engine.advance(5)
        assert outcome.tuple_id == "c"
        assert outcome.record.reused
        assert engine.stats.reused == 1


class TestStreamErrors:
    """
    Tests for out-of-order, malformed and post-shutdown input.
    """

    def test_out_of_order(self):
        engine = _engine(k=2)
        engine.ingest("a", 5, [1], "A")
        with pytest.raises(OutOfOrderArrivalError) as excinfo:
            engine.ingest("b", 5, [1], "A")
        assert excinfo.value.arrival_index == 5
        assert excinfo.value.last_arrival_index == 5
        with pytest.raises(OutOfOrderArrivalError):
            engine.process(StreamTuple("c", 3, (1.0,), "A"))
        assert engine.stats.ingested == 1
        assert engine.queue_depth == 1

    def test_malformed_skipped(self, caplog):
        engine = _engine(k=2)
        with caplog.at_level(logging.WARNING):
            assert engine.ingest("bad", 0, [None], "A") == []
            assert engine.process(StreamTuple("worse", 0, ("x",), "A")) == []
        assert "Skipping malformed tuple bad" in caplog.text
        assert engine.stats.malformed == 2
        assert engine.clock is None
        # a malformed tuple does not consume its arrival index
        engine.ingest("good", 0, [1], "A")
        assert engine.stats.ingested == 1

    def test_unhashable_id_skipped(self):
        engine = _engine(k=2)
        assert engine.ingest(["not", "hashable"], 0, [1], "A") == []
        assert engine.process(StreamTuple({"id": 1}, 0, (1.0,), "A")) == []
        assert engine.stats.malformed == 2
        assert engine.queue_depth == 0
        assert engine.ingest("good", 0, [1], "A") == []
        assert engine.queue_depth == 1

    def test_duplicate_pending_id(self):
        engine = _engine(k=3)
        engine.ingest("a", 0, [1], "A")
        assert engine.ingest("a", 1, [2], "A") == []
        assert engine.stats.malformed == 1
        assert engine.queue_depth == 1

    def test_advance(self):
        engine = _engine(k=3, delta=5)
        engine.ingest("a", 0, [1], "A")
        engine.ingest("b", 1, [2], "B")
        assert engine.advance(4) == []
        outcomes = engine.advance(5)
        assert sorted(outcome.tuple_id for outcome in outcomes) == ["a", "b"]
        assert all(outcome.relaxed for outcome in outcomes)
        assert engine.clock == 5
        with pytest.raises(OutOfOrderArrivalError):
            engine.advance(4)
        with pytest.raises(OutOfOrderArrivalError):
            engine.ingest("c", 4, [3], "A")
        assert engine.ingest("c", 5, [3], "A") == []

    def test_shutdown(self, caplog):
        engine = _engine(k=3, delta=5)
        engine.ingest("a", 0, [1], "A")
        with caplog.at_level(logging.INFO):
            outcomes = engine.shutdown()
        assert [outcome.tuple_id for outcome in outcomes] == ["a"]
        assert outcomes[0].relaxed
        assert "CastleGuard shut down" in caplog.text
        assert "released without k-anonymity" in caplog.text
        assert engine.closed
        assert engine.shutdown() == []
        with pytest.raises(RuntimeError):
            engine.ingest("b", 1, [1], "A")
        with pytest.raises(RuntimeError):
            engine.process(StreamTuple("b", 1, (1.0,), "A"))
        with pytest.raises(RuntimeError):
            engine.advance(2)

    def test_shutdown_empty(self):
        engine = _engine(k=3)
        assert engine.shutdown() == []
        assert engine.stats.ingested == 0


class TestEngineSurface:
    """
    Tests for run, privacy_report and logging setup.
    """

    def test_run_accepts_stream_tuples(self):
        engine = _engine(k=3, l=2, delta=5)
        tuples = [StreamTuple(tid, i, tuple(qi), s) for tid, i, qi, s in _scenario_tuples()]
        outcomes = list(engine.run(tuples))
        assert len(outcomes) == 6
        assert engine.closed

    def test_independent_engines(self):
        a = _engine(k=3, l=2, delta=5)
        b = _engine(k=3, l=2, delta=5)
        a.ingest("x", 0, [1], "A")
        assert b.queue_depth == 0 and b.clock is None

    def test_audit_history_bounded(self):
        engine = _engine(k=1, delta=5)
        for i in range(50):
            assert len(engine.ingest(i, i, [i], "A")) == 1
        assert engine.stats.information_losses.maxlen == INFORMATION_LOSS_SAMPLE_SIZE
        assert len(engine.stats.information_losses) == 50
        assert engine.stats.information_loss_distribution()["count"] == 50

    def test_privacy_report(self):
        engine = _engine(k=10, beta=0.5)
        report = engine.privacy_report()
        assert report["beta"] == 0.5
        assert report["epsilon"] == pytest.approx(np.log(2))
        assert report["delta"] == privacy_delta(10, 0.5)
        assert np.isnan(report["emission_rate"])

    def test_debug_logging_warns(self):
        logger = logging.getLogger(f"{__name__}.debug")
        logger.setLevel(logging.DEBUG)
        try:
            with pytest.warns(UserWarning, match="DEBUG logging is enabled"):
                engine = CastleGuard(logger, PrivacyParameters(k=2, attributes=[AttributeSpec("x")]))
            assert len(list(engine.run(_scenario_tuples()))) == 6
        finally:
            logger.setLevel(logging.NOTSET)
