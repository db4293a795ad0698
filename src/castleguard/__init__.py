"""
CASTLEGUARD - Streaming anonymization with k-anonymity, l-diversity and
differentially private output sampling.

This package clusters a stream of tuples online, releases each cluster's
generalization once it is k-anonymous and l-diverse or once its oldest tuple
reaches the delay bound, and Bernoulli-samples every released record.
"""

from castleguard._version import __version__
from castleguard.audit import AuditStats
from castleguard.config import AttributeSpec, PrivacyParameters
from castleguard.engine import CastleGuard
from castleguard.errors import (
    ConfigError,
    InvalidParametersError,
    MalformedTupleError,
    OutOfOrderArrivalError,
    TupleError,
)
from castleguard.privacy import minimum_epsilon, privacy_delta
from castleguard.records import Emitted, GeneralizedRecord, Outcome, Suppressed
from castleguard.tuples import StreamTuple, make_tuple

__all__ = [
    "__version__",
    "CastleGuard",
    "PrivacyParameters",
    "AttributeSpec",
    "StreamTuple",
    "make_tuple",
    "Emitted",
    "Suppressed",
    "Outcome",
    "GeneralizedRecord",
    "AuditStats",
    "minimum_epsilon",
    "privacy_delta",
    "TupleError",
    "MalformedTupleError",
    "OutOfOrderArrivalError",
    "ConfigError",
    "InvalidParametersError",
]
