"""
Exception taxonomy for the streaming anonymization engine.

Tuple errors are raised per tuple: malformed tuples are recovered locally by
the engine (skipped and counted) while out-of-order arrivals are fatal to the
stream's determinism guarantee and are surfaced to the caller. Configuration
errors fail fast at startup.

All exceptions subclass ValueError, so callers that already handle bad input
as ValueError keep working.
"""

from typing import Any, Optional


class TupleError(ValueError):
    """Base class for problems with an individual stream tuple."""

    def __init__(self, message: str, tuple_id: Optional[Any] = None) -> None:
        super().__init__(message)
        self.tuple_id = tuple_id


class MalformedTupleError(TupleError):
    """A tuple has a missing or invalid QI or sensitive attribute value."""


class OutOfOrderArrivalError(TupleError):
    """
    A tuple's arrival index is not strictly greater than the previous one.

    Parameters
    ----------
    message : str
        Human readable description.
    tuple_id : Any, optional
        Identifier of the offending tuple.
    arrival_index : int, optional
        Arrival index of the offending tuple.
    last_arrival_index : int, optional
        Arrival index of the last accepted tuple.
    """

    def __init__(
        self,
        message: str,
        tuple_id: Optional[Any] = None,
        arrival_index: Optional[int] = None,
        last_arrival_index: Optional[int] = None,
    ) -> None:
        super().__init__(message, tuple_id=tuple_id)
        self.arrival_index = arrival_index
        self.last_arrival_index = last_arrival_index


class ConfigError(ValueError):
    """Base class for configuration problems."""


class InvalidParametersError(ConfigError):
    """The privacy parameters are invalid or inconsistent; never recovered."""
