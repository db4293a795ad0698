"""
Engine configuration: privacy parameters and QI attribute descriptions.

Configuration is an explicit immutable value handed to the engine's
constructor, so independent engines (e.g. one per test) never share state.
Every check runs when the value is constructed; an invalid combination raises
InvalidParametersError before any tuple is processed.

Configurations can be written to and read from JSON files, including any
generalization hierarchies attached to categorical attributes.
"""

import json
import math
import tempfile
import warnings
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from castleguard.constants import ATTRIBUTE_KINDS, CATEGORICAL, NUMERIC
from castleguard.errors import InvalidParametersError
from castleguard.gtrees import GTree
from castleguard.privacy import minimum_epsilon


def _require_int(name: str, value: Any, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParametersError(f"{name} must be an int, got {value!r}")
    if value < minimum:
        raise InvalidParametersError(f"{name} must be >= {minimum}, got {value}")


@dataclass(frozen=True)
class AttributeSpec:
    """
    Description of one quasi-identifier attribute.

    Parameters
    ----------
    name : str
        Attribute name, unique within a configuration.
    kind : str, default "numeric"
        Either "numeric" (generalized to a [min, max] range) or "categorical"
        (generalized to a value set, or to a hierarchy node when ``gtree`` is set).
    weight : float, default 1.0
        Relative weight of this attribute in generalization cost and
        information loss; must be > 0.
    domain : tuple, optional
        Fixed global domain. For numeric attributes a ``(lo, hi)`` pair, for
        categorical attributes the collection of allowed values. When None the
        engine tracks the domain observed so far in the stream.
    gtree : GTree, optional
        Generalization hierarchy for a categorical attribute. Its leaves are
        the attribute's domain, so ``domain`` must be None.
    """

    name: str
    kind: str = NUMERIC
    weight: float = 1.0
    domain: Optional[tuple[Any, ...]] = None
    gtree: Optional[GTree] = field(default=None, hash=False)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise InvalidParametersError(f"Attribute name must be a non-empty str, got {self.name!r}")
        if self.kind not in ATTRIBUTE_KINDS:
            raise InvalidParametersError(
                f"Attribute {self.name} kind must be one of {ATTRIBUTE_KINDS}, got {self.kind!r}"
            )
        if isinstance(self.weight, bool) or not isinstance(self.weight, (int, float)):
            raise InvalidParametersError(f"Attribute {self.name} weight must be a number")
        if not math.isfinite(self.weight) or self.weight <= 0:
            raise InvalidParametersError(
                f"Attribute {self.name} weight must be finite and > 0, got {self.weight}"
            )
        if self.kind == NUMERIC:
            if self.gtree is not None:
                raise InvalidParametersError(
                    f"Attribute {self.name} is numeric; generalization trees are categorical only"
                )
            if self.domain is not None:
                domain = tuple(self.domain)
                if len(domain) != 2:
                    raise InvalidParametersError(
                        f"Numeric attribute {self.name} domain must be (lo, hi), got {self.domain!r}"
                    )
                lo, hi = float(domain[0]), float(domain[1])
                if not (math.isfinite(lo) and math.isfinite(hi)) or lo > hi:
                    raise InvalidParametersError(
                        f"Numeric attribute {self.name} domain must satisfy lo <= hi, got {self.domain!r}"
                    )
                object.__setattr__(self, "domain", (lo, hi))
        else:
            if self.gtree is not None:
                if self.domain is not None:
                    raise InvalidParametersError(
                        f"Attribute {self.name} has a gtree; its leaves are the domain, omit domain"
                    )
                if self.gtree.root is None:
                    raise InvalidParametersError(f"Attribute {self.name} gtree is empty")
                root_size = self.gtree.get_geometric_size(self.gtree.root_node())
                if math.isnan(root_size):
                    # geometric sizes are required to compute information loss
                    self.gtree.add_default_geometric_sizes()
            elif self.domain is not None:
                domain = tuple(dict.fromkeys(self.domain))
                if len(domain) == 0:
                    raise InvalidParametersError(
                        f"Categorical attribute {self.name} domain must not be empty"
                    )
                object.__setattr__(self, "domain", domain)

    @property
    def is_categorical(self) -> bool:
        return self.kind == CATEGORICAL

    def to_config_json(self) -> dict[str, Any]:
        json_obj: dict[str, Any] = {"name": self.name, "kind": self.kind, "weight": self.weight}
        if self.domain is not None:
            json_obj["domain"] = list(self.domain)
        if self.gtree is not None:
            json_obj["gtree"] = self.gtree.to_config_json()
        return json_obj

    @classmethod
    def from_config_json(cls, json_obj: dict[str, Any]) -> "AttributeSpec":
        domain = json_obj.get("domain")
        gtree_json = json_obj.get("gtree")
        return cls(
            name=json_obj["name"],
            kind=json_obj.get("kind", NUMERIC),
            weight=json_obj.get("weight", 1.0),
            domain=tuple(domain) if domain is not None else None,
            gtree=GTree(json_obj=gtree_json) if gtree_json is not None else None,
        )


@dataclass(frozen=True)
class PrivacyParameters:
    """
    Read-only configuration for one engine instance.

    Parameters
    ----------
    k : int
        Minimum cluster size before release (k-anonymity).
    l : int, default 1
        Minimum number of distinct sensitive values per released cluster
        (l-diversity); must be <= k.
    delta : int, default 10
        Maximum delay, in logical-time units (arrival indexes), that a tuple may
        wait before its cluster is forced out.
    beta : float, default 1.0
        Bernoulli sampling probability: each generalized record is emitted with
        probability beta and suppressed otherwise. Must be in [0, 1].
    mu : int, default 100
        Live cluster capacity and the window of released clusters whose mean
        information loss gives tau. It also scales the capacity share of the
        assignment threshold. Must be >= k.
    attributes : Sequence[AttributeSpec]
        The QI attributes, in the order tuples carry their values.
    epsilon : float, optional
        Differential privacy accounting target; defaults to the minimum
        achievable for ``beta``, -ln(1 - beta).
    seed : int, optional
        Seed for the sampler's random number generator. Engines built with the
        same parameters and seed produce identical outcomes for identical input.
    reuse_released : bool, default False
        When a tuple expires before its cluster is ready, release it under a
        recently released generalization that covers it, if one exists.
    """

    k: int
    l: int = 1
    delta: int = 10
    beta: float = 1.0
    mu: int = 100
    attributes: Sequence[AttributeSpec] = ()
    epsilon: Optional[float] = None
    seed: Optional[int] = None
    reuse_released: bool = False

    def __post_init__(self) -> None:
        _require_int("k", self.k, 1)
        _require_int("l", self.l, 1)
        _require_int("delta", self.delta, 0)
        _require_int("mu", self.mu, 1)
        if self.l > self.k:
            raise InvalidParametersError(f"l ({self.l}) must be <= k ({self.k})")
        if self.mu < self.k:
            raise InvalidParametersError(f"mu ({self.mu}) must be >= k ({self.k})")
        if isinstance(self.beta, bool) or not isinstance(self.beta, (int, float)):
            raise InvalidParametersError(f"beta must be a number, got {self.beta!r}")
        if not 0.0 <= self.beta <= 1.0:
            raise InvalidParametersError(f"beta must be in [0, 1], got {self.beta}")
        if self.beta == 0.0:
            warnings.warn("beta is 0.0, every released record will be suppressed")
        if self.seed is not None:
            _require_int("seed", self.seed, 0)

        attributes = tuple(self.attributes)
        if len(attributes) == 0:
            raise InvalidParametersError("At least one QI attribute is required")
        for attribute in attributes:
            if not isinstance(attribute, AttributeSpec):
                raise InvalidParametersError(f"Expected AttributeSpec, got {attribute!r}")
        names = [attribute.name for attribute in attributes]
        if len(set(names)) != len(names):
            raise InvalidParametersError(f"Attribute names must be unique, got {names}")
        object.__setattr__(self, "attributes", attributes)

        if self.epsilon is not None:
            floor = minimum_epsilon(self.beta)
            if not self.epsilon >= floor:
                raise InvalidParametersError(
                    f"epsilon ({self.epsilon}) must be >= -ln(1 - beta) = {floor} for beta = {self.beta}"
                )

    @property
    def attribute_names(self) -> list[str]:
        return [attribute.name for attribute in self.attributes]

    @property
    def split_threshold(self) -> int:
        """Clusters with more members than this are split."""
        return 2 * self.k

    def effective_epsilon(self) -> float:
        return self.epsilon if self.epsilon is not None else minimum_epsilon(self.beta)

    def to_config_json(self) -> dict[str, Any]:
        return {
            "k": self.k,
            "l": self.l,
            "delta": self.delta,
            "beta": self.beta,
            "mu": self.mu,
            "epsilon": self.epsilon,
            "seed": self.seed,
            "reuse_released": self.reuse_released,
            "attributes": [attribute.to_config_json() for attribute in self.attributes],
        }

    @classmethod
    def from_config_json(cls, json_obj: dict[str, Any]) -> "PrivacyParameters":
        """
        Build parameters from a dictionary created by ``to_config_json``.

        Raises
        ------
        InvalidParametersError
            If a required key is missing or a value is invalid.
        """
        if "k" not in json_obj:
            raise InvalidParametersError("Configuration is missing required key 'k'")
        return cls(
            k=json_obj["k"],
            l=json_obj.get("l", 1),
            delta=json_obj.get("delta", 10),
            beta=json_obj.get("beta", 1.0),
            mu=json_obj.get("mu", 100),
            attributes=tuple(
                AttributeSpec.from_config_json(attribute_json)
                for attribute_json in json_obj.get("attributes", [])
            ),
            epsilon=json_obj.get("epsilon"),
            seed=json_obj.get("seed"),
            reuse_released=json_obj.get("reuse_released", False),
        )


def load_from_config_file(filename: str) -> PrivacyParameters:
    """Load parameters from a JSON file written by ``generate_config_file``."""
    with open(filename) as config_file:
        json_obj = json.load(config_file)
    return PrivacyParameters.from_config_json(json_obj)


def generate_config_file(params: PrivacyParameters, filename: Optional[str] = None) -> str:
    """
    Serialize parameters to a JSON file.

    Parameters
    ----------
    params : PrivacyParameters
        Parameters to serialize.
    filename : str, optional
        Destination path; a temporary ``.json`` file is created when None.

    Returns
    -------
    str
        The path that was written.
    """
    if filename is None:
        _, filename = tempfile.mkstemp(suffix=".json")
    with open(filename, "w") as config_file:
        json.dump(params.to_config_json(), config_file)
    return filename
