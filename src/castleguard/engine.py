"""
The CASTLEGUARD streaming anonymization engine.

CastleGuard ties the components together into a single-threaded stream
loop. Each tuple is validated, assigned to a cluster, and queued; the
scheduler then releases whatever became ready or hit the delay bound. The
arrival index is the only clock, so replaying the same input with the same
seed reproduces the same outcomes exactly.

Example::

    params = PrivacyParameters(k=3, l=2, delta=5, seed=0, attributes=[AttributeSpec("age")])
    engine = CastleGuard(logging.getLogger(__name__), params)
    for outcome in engine.run(raw_tuples):
        ...
"""

import logging
import warnings
from typing import Any, Hashable, Iterable, Iterator, Mapping, Optional, Sequence, Union

from castleguard.audit import AuditStats
from castleguard.cluster_manager import ClusterManager
from castleguard.config import PrivacyParameters
from castleguard.constraints import ClusterState, ConstraintEvaluator
from castleguard.errors import MalformedTupleError, OutOfOrderArrivalError
from castleguard.generalizer import Generalizer
from castleguard.privacy import privacy_delta
from castleguard.records import Outcome
from castleguard.sampler import BernoulliSampler
from castleguard.scheduler import OutputScheduler
from castleguard.tuples import StreamTuple, make_tuple, validate_tuple

RawTuple = tuple[Hashable, int, Union[Sequence[Any], Mapping[str, Any]], Hashable]


class CastleGuard:
    """
    Anonymizes a stream of tuples with k-anonymity, l-diversity, a delay
    bound and Bernoulli output sampling.

    Parameters
    ----------
    logger : logging.Logger
        Logger shared by every component of this engine.
    params : PrivacyParameters
        Immutable configuration; independent engines never share state.

    Notes
    -----
    Every well-formed tuple produces exactly one outcome, Emitted or
    Suppressed, returned from the ``process``, ``advance`` or ``shutdown``
    call during which its cluster was released. Outcomes are not returned in
    arrival order: a call returns the outcomes of every tuple it released.
    """

    def __init__(self, logger: logging.Logger, params: PrivacyParameters) -> None:
        self.logger = logger
        self.params = params
        self._stats = AuditStats()
        self.generalizer = Generalizer(logger, params)
        self.manager = ClusterManager(logger, params, self.generalizer, self._stats)
        self.evaluator = ConstraintEvaluator(logger, params, self.manager, self._stats)
        self.sampler = BernoulliSampler(params.beta, seed=params.seed, logger=logger)
        self.scheduler = OutputScheduler(
            logger,
            params,
            self.manager,
            self.evaluator,
            self.generalizer,
            self.sampler,
            self._stats,
        )
        self._clock: Optional[int] = None
        self._last_arrival_index: Optional[int] = None
        self._closed = False

        if self.debug_logging_enabled():
            warnings.warn(
                "DEBUG logging is enabled for CastleGuard, this WILL adversely impact performance."
            )
        self.logger.info(
            "CastleGuard started k = %d, l = %d, delta = %d, beta = %s, mu = %d, attributes = %s",
            params.k,
            params.l,
            params.delta,
            params.beta,
            params.mu,
            params.attribute_names,
        )

    def debug_logging_enabled(self) -> bool:
        return self.logger.isEnabledFor(logging.DEBUG)

    @property
    def clock(self) -> Optional[int]:
        """Current logical time; None before the first tuple or advance."""
        return self._clock

    @property
    def queue_depth(self) -> int:
        """Number of tuples awaiting release; the backpressure signal for ingestion."""
        return self.scheduler.queue_depth

    @property
    def cluster_count(self) -> int:
        return len(self.manager)

    @property
    def stats(self) -> AuditStats:
        return self._stats

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("CastleGuard has been shut down")

    def cluster_states(self) -> dict[int, ClusterState]:
        """State of every live cluster at the current logical time."""
        now = self._clock if self._clock is not None else 0
        return {
            cluster_id: self.evaluator.state(self.manager.get(cluster_id), now)
            for cluster_id in self.manager.cluster_set
        }

    def ingest(
        self,
        tuple_id: Hashable,
        arrival_index: int,
        qi: Union[Sequence[Any], Mapping[str, Any]],
        sensitive: Hashable,
    ) -> list[Outcome]:
        """
        Validate raw values and process them as one tuple.

        Malformed input is logged, counted and skipped; see ``process``.
        """
        self._check_open()
        try:
            stream_tuple = make_tuple(self.params, tuple_id, arrival_index, qi, sensitive)
        except MalformedTupleError as e:
            self._reject(e)
            return []
        return self._process_valid(stream_tuple)

    def process(self, stream_tuple: StreamTuple) -> list[Outcome]:
        """
        Process one tuple and run a scheduling pass at its arrival time.

        Parameters
        ----------
        stream_tuple : StreamTuple
            The next tuple of the stream.

        Returns
        -------
        list of Outcome
            Outcomes of every tuple released by this call; often empty.

        Raises
        ------
        OutOfOrderArrivalError
            If the arrival index is not greater than the previous tuple's, or
            is earlier than the clock.
        RuntimeError
            If the engine has been shut down.
        """
        self._check_open()
        try:
            stream_tuple = validate_tuple(self.params, stream_tuple)
        except MalformedTupleError as e:
            self._reject(e)
            return []
        return self._process_valid(stream_tuple)

    def _reject(self, error: MalformedTupleError) -> None:
        self._stats.malformed += 1
        self.logger.warning("Skipping malformed tuple %s: %s", error.tuple_id, error)

    def _process_valid(self, stream_tuple: StreamTuple) -> list[Outcome]:
        arrival_index = stream_tuple.arrival_index
        if (self._last_arrival_index is not None and arrival_index <= self._last_arrival_index) or (
            self._clock is not None and arrival_index < self._clock
        ):
            raise OutOfOrderArrivalError(
                f"Tuple {stream_tuple.tuple_id} arrived at {arrival_index}, "
                f"after {self._last_arrival_index} with clock at {self._clock}",
                tuple_id=stream_tuple.tuple_id,
                arrival_index=arrival_index,
                last_arrival_index=self._last_arrival_index,
            )
        if stream_tuple.tuple_id in self.scheduler.queue:
            self._reject(
                MalformedTupleError(
                    f"Duplicate tuple_id {stream_tuple.tuple_id} is still pending",
                    tuple_id=stream_tuple.tuple_id,
                )
            )
            return []

        self._last_arrival_index = arrival_index
        self._clock = arrival_index
        now = arrival_index
        self._stats.ingested += 1

        self.generalizer.observe(stream_tuple)
        cluster_id = self.manager.assign(stream_tuple, now)
        self.scheduler.enqueue(stream_tuple)
        touched = [cluster_id]
        if len(self.manager.get(cluster_id)) > self.params.split_threshold:
            touched = self.manager.split(cluster_id, now)
        return self.scheduler.tick(now, touched)

    def advance(self, now: int) -> list[Outcome]:
        """
        Move the clock to ``now`` without a tuple and run a scheduling pass.

        Tuples arriving later must have an arrival index of at least ``now``.

        Raises
        ------
        OutOfOrderArrivalError
            If ``now`` is earlier than the clock.
        """
        self._check_open()
        if self._clock is not None and now < self._clock:
            raise OutOfOrderArrivalError(
                f"Cannot move the clock back from {self._clock} to {now}",
                arrival_index=now,
                last_arrival_index=self._last_arrival_index,
            )
        self._clock = now
        return self.scheduler.tick(now)

    def shutdown(self) -> list[Outcome]:
        """
        Force every pending tuple out through the expired path and close the engine.

        Clusters are forced out oldest first at the current clock. The final
        audit report is logged and stays available as ``stats``. Calling
        shutdown again returns an empty list.

        Returns
        -------
        list of Outcome
            Outcomes of the tuples still pending at shutdown.
        """
        if self._closed:
            return []
        now = self._clock if self._clock is not None else 0
        outcomes = self.scheduler.drain(now)
        self._closed = True
        self.logger.info("CastleGuard shut down: %s", self._stats.summary())
        if self._stats.relaxed > 0:
            self.logger.warning(
                "%d records were released without k-anonymity or l-diversity to honor delta = %d",
                self._stats.relaxed,
                self.params.delta,
            )
        if self.debug_logging_enabled():
            self.logger.debug("final audit =\n%s", self._stats)
        return outcomes

    def run(self, tuples: Iterable[Union[StreamTuple, RawTuple]]) -> Iterator[Outcome]:
        """
        Anonymize a whole stream, yielding outcomes as tuples are released.

        Parameters
        ----------
        tuples : Iterable
            StreamTuples, or raw ``(tuple_id, arrival_index, qi, sensitive)`` tuples.

        Yields
        ------
        Outcome
            One outcome per well-formed input tuple; ``shutdown`` is called
            once the input is exhausted.
        """
        for item in tuples:
            if isinstance(item, StreamTuple):
                yield from self.process(item)
            else:
                yield from self.ingest(*item)
        yield from self.shutdown()

    def privacy_report(self) -> dict[str, float]:
        """
        The configured privacy guarantee and the realized emission rate.

        Returns
        -------
        dict
            beta, epsilon, delta of the (epsilon, delta)-DP guarantee, and the
            emission rate realized so far (nan before any release).
        """
        epsilon = self.params.effective_epsilon()
        return {
            "beta": self.params.beta,
            "epsilon": epsilon,
            "delta": privacy_delta(self.params.k, self.params.beta, epsilon),
            "emission_rate": self._stats.emission_rate(),
        }
