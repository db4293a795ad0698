"""
Generalization ranges and attribute domains.

A cluster generalizes each QI attribute with one of two range types:

- NumericRange: the tight ``[lo, hi]`` interval over the members' values.
- CategoricalSet: the set of the members' values, optionally labelled with
  the generalization-hierarchy node that covers them.

Both implement the same contract (extend, union, contain, normalized width
against a global domain, render), so the generalizer treats attributes
uniformly without inspecting their types.

Domains hold the global extent of each attribute. A domain is either fixed by
configuration or grows as the stream is observed, the way CASTLE tracks the
global range of every attribute from the tuples it has seen.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from castleguard.config import AttributeSpec
from castleguard.gtrees import GTree
from castleguard.utils import as_float_array, min_max


@dataclass(frozen=True)
class NumericRange:
    """Closed interval ``[lo, hi]`` generalizing a numeric attribute."""

    lo: float
    hi: float

    @classmethod
    def of(cls, value: Any) -> "NumericRange":
        return cls(float(value), float(value))

    @classmethod
    def from_values(cls, values: Iterable[Any]) -> "NumericRange":
        """Tight range over ``values``; raises ValueError when empty."""
        lo, hi = min_max(as_float_array(values))
        if lo != lo:  # nan: no values
            raise ValueError("Cannot build a range from no values")
        return cls(float(lo), float(hi))

    @property
    def width(self) -> float:
        return self.hi - self.lo

    def extended(self, value: Any) -> "NumericRange":
        value = float(value)
        if self.lo <= value <= self.hi:
            return self
        return NumericRange(min(self.lo, value), max(self.hi, value))

    def union(self, other: "NumericRange") -> "NumericRange":
        return NumericRange(min(self.lo, other.lo), max(self.hi, other.hi))

    def contains(self, value: Any) -> bool:
        return self.lo <= float(value) <= self.hi

    def normalized_width(self, domain: "NumericDomain") -> float:
        domain_width = domain.width
        if domain_width <= 0:
            return 0.0
        return self.width / domain_width

    def render(self) -> str:
        return f"[{self.lo:g}, {self.hi:g}]"

    def __repr__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class CategoricalSet:
    """Set of values generalizing a categorical attribute."""

    values: frozenset
    label: Optional[Any] = None

    @classmethod
    def of(cls, value: Any) -> "CategoricalSet":
        return cls(frozenset([value]))

    @classmethod
    def from_values(cls, values: Iterable[Any]) -> "CategoricalSet":
        values = frozenset(values)
        if not values:
            raise ValueError("Cannot build a value set from no values")
        return cls(values)

    @property
    def width(self) -> int:
        return len(self.values)

    def extended(self, value: Any) -> "CategoricalSet":
        if value in self.values:
            return self
        return CategoricalSet(self.values | {value})

    def union(self, other: "CategoricalSet") -> "CategoricalSet":
        return CategoricalSet(self.values | other.values)

    def contains(self, value: Any) -> bool:
        return value in self.values

    def normalized_width(self, domain: "CategoricalDomain") -> float:
        if domain.gtree is not None:
            return domain.gtree.relative_geometric_size(self.values)
        domain_size = domain.size
        if domain_size <= 1:
            return 0.0
        return (len(self.values) - 1) / (domain_size - 1)

    def render(self) -> str:
        if self.label is not None:
            return str(self.label)
        return "{" + ", ".join(sorted(str(value) for value in self.values)) + "}"

    def __repr__(self) -> str:
        return self.render()


Range = Union[NumericRange, CategoricalSet]


class NumericDomain:
    """Global ``[lo, hi]`` extent of a numeric attribute."""

    def __init__(self, spec: AttributeSpec) -> None:
        self.spec = spec
        self.fixed = spec.domain is not None
        self.lo: Optional[float] = None
        self.hi: Optional[float] = None
        if spec.domain is not None:
            self.lo, self.hi = spec.domain

    def observe(self, value: Any) -> None:
        if self.fixed:
            return
        value = float(value)
        if self.lo is None or value < self.lo:
            self.lo = value
        if self.hi is None or value > self.hi:
            self.hi = value

    @property
    def width(self) -> float:
        if self.lo is None or self.hi is None:
            return 0.0
        return self.hi - self.lo

    def singleton(self, value: Any) -> NumericRange:
        return NumericRange.of(value)

    def from_values(self, values: Iterable[Any]) -> NumericRange:
        return NumericRange.from_values(values)

    def generalize(self, rng: NumericRange) -> NumericRange:
        return rng

    def sort_key(self, value: Any) -> float:
        return float(value)


class CategoricalDomain:
    """Global value universe of a categorical attribute."""

    def __init__(self, spec: AttributeSpec) -> None:
        self.spec = spec
        self.gtree: Optional[GTree] = spec.gtree
        self.fixed = spec.domain is not None or spec.gtree is not None
        self.seen: dict[Any, None] = {}
        if spec.domain is not None:
            self.seen = dict.fromkeys(spec.domain)
        elif spec.gtree is not None:
            self.seen = dict.fromkeys(spec.gtree.leaf_values())

    def observe(self, value: Any) -> None:
        if not self.fixed:
            self.seen.setdefault(value, None)

    @property
    def size(self) -> int:
        return len(self.seen)

    def singleton(self, value: Any) -> CategoricalSet:
        return CategoricalSet.of(value)

    def from_values(self, values: Iterable[Any]) -> CategoricalSet:
        return CategoricalSet.from_values(values)

    def generalize(self, cset: CategoricalSet) -> CategoricalSet:
        """
        The externally visible generalization of a member value set.

        With a hierarchy, this is every leaf under the lowest common ancestor,
        labelled with that ancestor's value.
        """
        if self.gtree is None:
            return cset
        node = self.gtree.lowest_common_ancestor(cset.values)
        return CategoricalSet(
            frozenset(self.gtree.descendant_leaf_values(node)), label=self.gtree.get_value(node)
        )

    def sort_key(self, value: Any) -> Any:
        if self.gtree is not None:
            return (self.gtree.leaf_rank(value), "")
        return (0, str(value))


Domain = Union[NumericDomain, CategoricalDomain]


def make_domain(spec: AttributeSpec) -> Domain:
    if spec.is_categorical:
        return CategoricalDomain(spec)
    return NumericDomain(spec)
