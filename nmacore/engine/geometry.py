"""Network geometry assessment.

Describes the shape of a treatment network: connectivity, density,
star shape, multi-arm trials and poorly connected treatments.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from ..config import GeometryThresholds
from ..errors import DataQualityWarning
from .network import NetworkGraph

logger = logging.getLogger(__name__)


class GeometryQuality(Enum):
    """Overall rating of the network's shape."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


@dataclass
class MultiArmTrial:
    """A study contributing three or more treatments."""
    study_id: str
    treatments: list[str] = field(default_factory=list)

    @property
    def n_arms(self) -> int:
        return len(self.treatments)


@dataclass
class TreatmentNode:
    treatment: str
    n_studies: int
    total_participants: int
    degree: int
    connected_to: list[str] = field(default_factory=list)


@dataclass
class NetworkEdge:
    treatment_a: str
    treatment_b: str
    n_studies: int
    n_comparisons: int
    total_participants: int


@dataclass
class GeometryReport:
    """Result of a geometry assessment."""
    num_treatments: int
    num_studies: int
    num_comparisons: int
    is_connected: bool
    components: list[list[str]]
    is_star_shaped: bool
    central_treatment: str | None
    has_multi_arm_trials: bool
    multi_arm_trials: list[MultiArmTrial]
    isolated_treatments: list[str]           # degree 0
    weakly_connected_treatments: list[str]   # degree 1
    sparse_comparisons: list[tuple[str, str]]
    network_density: float
    avg_connections: float
    treatment_degrees: dict[str, int]
    nodes: list[TreatmentNode]
    edges: list[NetworkEdge]
    geometry_quality: GeometryQuality
    confidence: float
    recommendations: list[str] = field(default_factory=list)
    warnings: list[DataQualityWarning] = field(default_factory=list)

    @property
    def num_components(self) -> int:
        return len(self.components)


def network_density(graph: NetworkGraph) -> float:
    """Distinct edges divided by the N(N-1)/2 possible pairs."""
    n = graph.num_treatments
    possible = n * (n - 1) / 2
    return graph.num_edges / possible if possible else 0.0


def find_star_hub(
    graph: NetworkGraph,
    hub_fraction: float = 0.8
) -> str | None:
    """Return the hub treatment if the network is star-shaped.

    Star-shaped: the highest-degree treatment reaches at least
    ``hub_fraction`` of the other treatments, every treatment it reaches is
    connected to the hub and nothing else, and the remainder are isolated.
    With ``hub_fraction`` 1.0 no isolated treatment is allowed.
    """
    n = graph.num_treatments
    if n < 3:
        return None

    degrees = graph.degrees
    # max() keeps the first treatment on ties, i.e. insertion order
    hub = max(graph.treatments, key=lambda t: degrees[t])
    if degrees[hub] < 2 or degrees[hub] < hub_fraction * (n - 1):
        return None

    for treatment in graph.treatments:
        if treatment == hub:
            continue
        if graph.neighbors(treatment) not in ((hub,), ()):
            return None

    return hub


def find_multi_arm_trials(graph: NetworkGraph) -> list[MultiArmTrial]:
    """Studies contributing three or more distinct treatments."""
    return [
        MultiArmTrial(study_id=study_id, treatments=arms)
        for study_id, arms in graph.study_treatments().items()
        if len(arms) >= 3
    ]


def classify_quality(
    is_connected: bool,
    density: float,
    has_isolated: bool,
    thresholds: GeometryThresholds
) -> GeometryQuality:
    """Map connectivity and density to a quality category."""
    if not is_connected:
        return GeometryQuality.POOR
    if density >= thresholds.excellent_density and not has_isolated:
        return GeometryQuality.EXCELLENT
    if density >= thresholds.fair_density:
        return GeometryQuality.GOOD
    return GeometryQuality.FAIR


def _build_nodes(graph: NetworkGraph) -> list[TreatmentNode]:
    studies: dict[str, set] = {t: set() for t in graph.treatments}
    participants: dict[str, int] = {t: 0 for t in graph.treatments}

    for i, comp in enumerate(graph.comparisons):
        study = comp.study_id if comp.study_id is not None else f"#{i}"
        studies[comp.treatment_a].add(study)
        studies[comp.treatment_b].add(study)
        participants[comp.treatment_a] += comp.n_a or 0
        participants[comp.treatment_b] += comp.n_b or 0

    return [
        TreatmentNode(
            treatment=t,
            n_studies=len(studies[t]),
            total_participants=participants[t],
            degree=len(graph.neighbors(t)),
            connected_to=list(graph.neighbors(t)),
        )
        for t in graph.treatments
    ]


def _build_edges(graph: NetworkGraph) -> list[NetworkEdge]:
    edges = []
    for (a, b), comps in graph.edges.items():
        study_ids = {c.study_id for c in comps if c.study_id is not None}
        anonymous = sum(1 for c in comps if c.study_id is None)
        edges.append(NetworkEdge(
            treatment_a=a,
            treatment_b=b,
            n_studies=len(study_ids) + anonymous,
            n_comparisons=len(comps),
            total_participants=sum((c.n_a or 0) + (c.n_b or 0) for c in comps),
        ))
    return edges


def analyze_geometry(
    graph: NetworkGraph,
    thresholds: GeometryThresholds | None = None
) -> GeometryReport:
    """Assess the geometry of a treatment network.

    A disconnected network is a valid input: it is reported with its
    components and rated poor rather than rejected.

    Args:
        graph: Network built by ``build_network``
        thresholds: Classification cut-offs (defaults from config)

    Returns:
        GeometryReport
    """
    thresholds = thresholds or GeometryThresholds()
    warnings: list[DataQualityWarning] = []
    recommendations: list[str] = []

    degrees = graph.degrees
    n = graph.num_treatments
    density = network_density(graph)
    hub = find_star_hub(graph, thresholds.star_hub_fraction)
    multi_arm = find_multi_arm_trials(graph)
    isolated = [t for t in graph.treatments if degrees[t] == 0]
    weakly_connected = [t for t in graph.treatments if degrees[t] == 1]
    edges = _build_edges(graph)
    sparse = [(e.treatment_a, e.treatment_b) for e in edges if e.n_studies < 2]
    missing_ids = sum(1 for c in graph.comparisons if c.study_id is None)

    if missing_ids:
        warnings.append(DataQualityWarning(
            "missing_study_id",
            f"{missing_ids} comparison(s) have no study id and were skipped "
            "for multi-arm trial detection",
        ))

    if not graph.is_connected:
        listing = "; ".join(", ".join(c) for c in graph.components)
        warnings.append(DataQualityWarning(
            "disconnected",
            f"Network is disconnected into {len(graph.components)} components "
            f"({listing}) - treatments in different components cannot be compared",
        ))
        recommendations.append(
            "Analyze connected components separately or add bridging studies"
        )

    if isolated:
        warnings.append(DataQualityWarning(
            "isolated_treatments",
            f"{len(isolated)} treatment(s) have no comparisons: {', '.join(isolated)}",
        ))

    if sparse:
        warnings.append(DataQualityWarning(
            "sparse_comparisons",
            f"{len(sparse)} comparison(s) are supported by a single study - "
            "results may be unreliable",
        ))
        recommendations.append("Interpret results for sparse comparisons with caution")

    if hub is not None:
        warnings.append(DataQualityWarning(
            "star_shaped",
            f"Network is star-shaped around '{hub}' - every indirect comparison "
            "depends on the hub's evidence",
        ))
        recommendations.append(
            "Assess the quality of studies involving the hub treatment; "
            "consistency cannot be checked without closed loops"
        )

    if weakly_connected:
        recommendations.append(
            f"{len(weakly_connected)} treatment(s) have a single connection; "
            "their estimates rely heavily on indirect evidence"
        )

    if multi_arm:
        recommendations.append(
            f"{len(multi_arm)} multi-arm trial(s) detected - their pairwise "
            "comparisons are correlated and treated as independent here"
        )

    if n < 3:
        warnings.append(DataQualityWarning(
            "two_treatments",
            "Only 2 treatments - standard pairwise meta-analysis is more appropriate",
        ))

    quality = classify_quality(graph.is_connected, density, bool(isolated), thresholds)

    confidence = 0.7
    if not graph.is_connected:
        confidence -= 0.2
    if n < 3:
        confidence -= 0.2
    if sparse:
        confidence -= 0.1
    if hub is not None:
        confidence -= 0.1
    confidence = max(0.1, min(0.9, confidence))

    report = GeometryReport(
        num_treatments=n,
        num_studies=graph.num_studies,
        num_comparisons=len(graph.comparisons),
        is_connected=graph.is_connected,
        components=[list(c) for c in graph.components],
        is_star_shaped=hub is not None,
        central_treatment=hub,
        has_multi_arm_trials=bool(multi_arm),
        multi_arm_trials=multi_arm,
        isolated_treatments=isolated,
        weakly_connected_treatments=weakly_connected,
        sparse_comparisons=sparse,
        network_density=density,
        avg_connections=sum(degrees.values()) / n,
        treatment_degrees=degrees,
        nodes=_build_nodes(graph),
        edges=edges,
        geometry_quality=quality,
        confidence=round(confidence, 2),
        recommendations=recommendations,
        warnings=warnings,
    )

    logger.info(
        "Geometry assessed: %d treatments, density %.3f, quality %s",
        n, density, quality.value
    )
    return report
