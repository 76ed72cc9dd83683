"""Treatment network model.

Builds a read-only comparison graph from a flat list of pairwise
comparisons. Every analyzer consumes the graph produced here.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from ..errors import InvalidNetworkError

logger = logging.getLogger(__name__)

EdgeKey = tuple[str, str]


@dataclass(frozen=True)
class Comparison:
    """One study's head-to-head result between two treatments.

    ``effect_estimate`` is the effect of moving from ``treatment_a`` to
    ``treatment_b`` on an additive scale (log OR, mean difference, ...).
    """
    treatment_a: str
    treatment_b: str
    effect_estimate: float | None = None
    standard_error: float | None = None
    study_id: str | None = None
    n_a: int | None = None  # Participants in arm A
    n_b: int | None = None

    def oriented(self, treatment_a: str) -> float | None:
        """Effect estimate expressed as moving from ``treatment_a`` to the other arm."""
        if self.effect_estimate is None:
            return None
        if treatment_a == self.treatment_a:
            return self.effect_estimate
        return -self.effect_estimate


@dataclass(frozen=True)
class NetworkGraph:
    """Read-only view over a list of comparisons.

    All mappings preserve insertion order: treatments in the order they were
    first seen, neighbours in the order their edge was first seen.
    """
    comparisons: tuple[Comparison, ...]
    treatments: tuple[str, ...]
    adjacency: Mapping[str, tuple[str, ...]]
    edges: Mapping[EdgeKey, tuple[Comparison, ...]]
    components: tuple[tuple[str, ...], ...]
    _index: Mapping[str, int] = field(repr=False, compare=False)

    @property
    def degrees(self) -> dict[str, int]:
        """Number of distinct neighbours per treatment."""
        return {t: len(self.adjacency[t]) for t in self.treatments}

    @property
    def is_connected(self) -> bool:
        return len(self.components) == 1

    @property
    def num_treatments(self) -> int:
        return len(self.treatments)

    @property
    def num_edges(self) -> int:
        return len(self.edges)

    @property
    def num_studies(self) -> int:
        """Distinct study ids; comparisons without one count individually."""
        ids = set()
        anonymous = 0
        for comp in self.comparisons:
            if comp.study_id is None:
                anonymous += 1
            else:
                ids.add(comp.study_id)
        return len(ids) + anonymous

    def index(self, treatment: str) -> int:
        """Insertion position of a treatment."""
        return self._index[treatment]

    def edge_key(self, a: str, b: str) -> EdgeKey | None:
        """Stored key for the unordered pair, or None when not compared."""
        if (a, b) in self.edges:
            return (a, b)
        if (b, a) in self.edges:
            return (b, a)
        return None

    def has_edge(self, a: str, b: str) -> bool:
        return self.edge_key(a, b) is not None

    def edge(self, a: str, b: str) -> tuple[Comparison, ...]:
        """Comparisons directly comparing ``a`` and ``b`` (empty if none)."""
        key = self.edge_key(a, b)
        return self.edges[key] if key else ()

    def neighbors(self, treatment: str) -> tuple[str, ...]:
        return self.adjacency[treatment]

    def study_treatments(self) -> dict[str, list[str]]:
        """Map study id to the treatments it contributes, in order seen."""
        result: dict[str, list[str]] = {}
        for comp in self.comparisons:
            if comp.study_id is None:
                continue
            arms = result.setdefault(comp.study_id, [])
            for treatment in (comp.treatment_a, comp.treatment_b):
                if treatment not in arms:
                    arms.append(treatment)
        return result


def _validate(comparisons: list[Comparison]) -> None:
    if not comparisons:
        raise InvalidNetworkError("No comparisons provided")

    for i, comp in enumerate(comparisons):
        for name in (comp.treatment_a, comp.treatment_b):
            if not isinstance(name, str) or not name.strip():
                raise InvalidNetworkError(
                    f"Comparison {i} has an empty treatment name"
                )
        if comp.treatment_a == comp.treatment_b:
            raise InvalidNetworkError(
                f"Comparison {i} compares '{comp.treatment_a}' with itself"
            )


def find_components(
    treatments: tuple[str, ...],
    adjacency: Mapping[str, tuple[str, ...]]
) -> tuple[tuple[str, ...], ...]:
    """Breadth-first traversal from each unvisited treatment in insertion order."""
    visited: set[str] = set()
    components = []

    for root in treatments:
        if root in visited:
            continue
        visited.add(root)
        component = [root]
        queue = deque([root])
        while queue:
            node = queue.popleft()
            for neighbor in adjacency[node]:
                if neighbor not in visited:
                    visited.add(neighbor)
                    component.append(neighbor)
                    queue.append(neighbor)
        components.append(tuple(component))

    return tuple(components)


def build_network(
    comparisons: Iterable[Comparison],
    treatments: Iterable[str] | None = None
) -> NetworkGraph:
    """Build the comparison graph.

    Args:
        comparisons: Pairwise comparisons (at least one)
        treatments: Optional extra treatments; those never compared appear
                    with degree 0

    Returns:
        Immutable NetworkGraph

    Raises:
        InvalidNetworkError: If the input is empty, malformed, or references
                             fewer than two treatments
    """
    comparisons = list(comparisons)
    _validate(comparisons)

    adjacency: dict[str, list[str]] = {}
    edges: dict[EdgeKey, list[Comparison]] = {}

    for comp in comparisons:
        a, b = comp.treatment_a, comp.treatment_b
        adjacency.setdefault(a, [])
        adjacency.setdefault(b, [])
        if b not in adjacency[a]:
            adjacency[a].append(b)
            adjacency[b].append(a)

        key = (a, b) if (a, b) in edges or (b, a) not in edges else (b, a)
        edges.setdefault(key, []).append(comp)

    for name in treatments or ():
        if not isinstance(name, str) or not name.strip():
            raise InvalidNetworkError("Declared treatment has an empty name")
        adjacency.setdefault(name, [])

    if len(adjacency) < 2:
        raise InvalidNetworkError(
            f"A network needs at least 2 treatments, got {len(adjacency)}"
        )

    ordered = tuple(adjacency)
    frozen_adjacency = {t: tuple(n) for t, n in adjacency.items()}
    components = find_components(ordered, frozen_adjacency)

    logger.debug(
        "Built network: %d treatments, %d edges, %d comparisons, %d component(s)",
        len(ordered), len(edges), len(comparisons), len(components)
    )

    return NetworkGraph(
        comparisons=tuple(comparisons),
        treatments=ordered,
        adjacency=frozen_adjacency,
        edges={k: tuple(v) for k, v in edges.items()},
        components=components,
        _index={t: i for i, t in enumerate(ordered)},
    )


def _optional_float(record: Mapping[str, Any], *keys: str) -> float | None:
    for key in keys:
        value = record.get(key)
        if value is None or value == "":
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise InvalidNetworkError(f"Field '{key}' is not a number: {value!r}") from None
        return number
    return None


def _optional_int(record: Mapping[str, Any], key: str) -> int | None:
    value = _optional_float(record, key)
    if value is None or not math.isfinite(value):
        return None
    return int(value)


def comparisons_from_dicts(records: Iterable[Mapping[str, Any]]) -> list[Comparison]:
    """Build Comparisons from plain mappings (JSON objects, CSV rows).

    Accepts ``effect_size`` as an alias of ``effect_estimate`` and ``se``
    as an alias of ``standard_error``.
    """
    result = []
    for i, record in enumerate(records):
        if not isinstance(record, Mapping):
            raise InvalidNetworkError(f"Comparison {i} is not an object: {record!r}")

        treatment_a = record.get("treatment_a")
        treatment_b = record.get("treatment_b")
        if treatment_a is None or treatment_b is None:
            raise InvalidNetworkError(
                f"Comparison {i} is missing 'treatment_a' or 'treatment_b'"
            )

        study_id = record.get("study_id")
        if study_id is not None:
            study_id = str(study_id).strip() or None

        result.append(Comparison(
            treatment_a=str(treatment_a).strip(),
            treatment_b=str(treatment_b).strip(),
            effect_estimate=_optional_float(record, "effect_estimate", "effect_size"),
            standard_error=_optional_float(record, "standard_error", "se"),
            study_id=study_id,
            n_a=_optional_int(record, "n_a"),
            n_b=_optional_int(record, "n_b"),
        ))
    return result
