"""
Stream tuples and their validation.

A StreamTuple is immutable: a unique identifier, a strictly increasing
arrival index (the engine's logical clock), one value per configured QI
attribute, and one sensitive value. ``make_tuple`` is the only place raw
input is checked; anything it rejects raises MalformedTupleError and never
reaches a cluster.
"""

import math
from dataclasses import dataclass
from numbers import Integral, Real
from typing import Any, Hashable, Mapping, Sequence, Union

from castleguard.config import AttributeSpec, PrivacyParameters
from castleguard.errors import MalformedTupleError


@dataclass(frozen=True)
class StreamTuple:
    """
    One record of the input stream.

    Attributes
    ----------
    tuple_id : Hashable
        Unique identifier of the record.
    arrival_index : int
        Logical arrival time; strictly increasing over the stream.
    qi : tuple
        QI attribute values, in configuration order.
    sensitive : Hashable
        Sensitive attribute value, counted for l-diversity.
    """

    tuple_id: Hashable
    arrival_index: int
    qi: tuple[Any, ...]
    sensitive: Hashable


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(value != value)  # NaN, including numpy and pandas NA-like floats
    except (TypeError, ValueError):
        # pandas.NA raises on bool()
        return True


def _validate_qi_value(attribute: AttributeSpec, value: Any, tuple_id: Hashable) -> Any:
    if _is_missing(value):
        raise MalformedTupleError(f"QI {attribute.name} is missing", tuple_id=tuple_id)
    if not attribute.is_categorical:
        if isinstance(value, bool) or not isinstance(value, Real):
            raise MalformedTupleError(
                f"QI {attribute.name} must be numeric, got {value!r}", tuple_id=tuple_id
            )
        value = float(value)
        if not math.isfinite(value):
            raise MalformedTupleError(
                f"QI {attribute.name} must be finite, got {value!r}", tuple_id=tuple_id
            )
        if attribute.domain is not None:
            lo, hi = attribute.domain
            if not lo <= value <= hi:
                raise MalformedTupleError(
                    f"QI {attribute.name} value {value} outside domain [{lo}, {hi}]",
                    tuple_id=tuple_id,
                )
        return value
    try:
        hash(value)
    except TypeError:
        raise MalformedTupleError(
            f"QI {attribute.name} value {value!r} is not hashable", tuple_id=tuple_id
        ) from None
    if attribute.gtree is not None and not attribute.gtree.has_leaf_value(value):
        raise MalformedTupleError(
            f"QI {attribute.name} value {value!r} is not a leaf of its generalization tree",
            tuple_id=tuple_id,
        )
    if attribute.domain is not None and value not in attribute.domain:
        raise MalformedTupleError(
            f"QI {attribute.name} value {value!r} outside domain", tuple_id=tuple_id
        )
    return value


def make_tuple(
    params: PrivacyParameters,
    tuple_id: Hashable,
    arrival_index: int,
    qi: Union[Sequence[Any], Mapping[str, Any]],
    sensitive: Hashable,
) -> StreamTuple:
    """
    Validate raw values and build a StreamTuple.

    Parameters
    ----------
    params : PrivacyParameters
        Engine configuration; supplies the QI attributes.
    tuple_id : Hashable
        Unique identifier of the record.
    arrival_index : int
        Logical arrival time.
    qi : Sequence or Mapping
        QI values, either in configuration order or keyed by attribute name.
    sensitive : Hashable
        Sensitive attribute value.

    Returns
    -------
    StreamTuple
        The validated tuple; numeric QI values are converted to float.

    Raises
    ------
    MalformedTupleError
        If any value is missing, of the wrong type, outside its fixed domain,
        or the number of QI values does not match the configuration.
    """
    if _is_missing(tuple_id):
        raise MalformedTupleError("tuple_id is missing")
    try:
        hash(tuple_id)
    except TypeError:
        raise MalformedTupleError(
            f"tuple_id {tuple_id!r} is not hashable", tuple_id=tuple_id
        ) from None
    if isinstance(arrival_index, bool) or not isinstance(arrival_index, Integral):
        raise MalformedTupleError(
            f"arrival_index must be an int, got {arrival_index!r}", tuple_id=tuple_id
        )
    if isinstance(qi, Mapping):
        missing = [name for name in params.attribute_names if name not in qi]
        if missing:
            raise MalformedTupleError(f"QI values missing for {missing}", tuple_id=tuple_id)
        qi = [qi[name] for name in params.attribute_names]
    elif isinstance(qi, (str, bytes)) or not isinstance(qi, Sequence):
        raise MalformedTupleError(
            f"QI values must be a sequence or mapping, got {type(qi).__name__}", tuple_id=tuple_id
        )
    if len(qi) != len(params.attributes):
        raise MalformedTupleError(
            f"Expected {len(params.attributes)} QI values, got {len(qi)}", tuple_id=tuple_id
        )
    if _is_missing(sensitive):
        raise MalformedTupleError("Sensitive value is missing", tuple_id=tuple_id)
    try:
        hash(sensitive)
    except TypeError:
        raise MalformedTupleError(
            f"Sensitive value {sensitive!r} is not hashable", tuple_id=tuple_id
        ) from None
    values = tuple(
        _validate_qi_value(attribute, value, tuple_id)
        for attribute, value in zip(params.attributes, qi)
    )
    return StreamTuple(
        tuple_id=tuple_id,
        arrival_index=int(arrival_index),
        qi=values,
        sensitive=sensitive,
    )


def validate_tuple(params: PrivacyParameters, stream_tuple: StreamTuple) -> StreamTuple:
    """Re-run ``make_tuple``'s checks on an already built StreamTuple."""
    return make_tuple(
        params,
        stream_tuple.tuple_id,
        stream_tuple.arrival_index,
        stream_tuple.qi,
        stream_tuple.sensitive,
    )
