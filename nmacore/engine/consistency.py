"""Network consistency assessment.

Checks whether direct and indirect evidence agree:
- Loop inconsistency for every closed triangle of direct comparisons
- Node-splitting (direct vs indirect) for individual comparisons
- Global chi-square test over all loops

With no closed loops consistency cannot be assessed, and the report says
so instead of declaring the network consistent.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from ..config import ConsistencyThresholds
from ..errors import DataQualityWarning, InvalidNetworkError, UntestableConditionNotice
from .geometry import find_multi_arm_trials
from .network import Comparison, EdgeKey, NetworkGraph, find_components
from .stats import chi_square_sf, inverse_variance_pool, wald_test

logger = logging.getLogger(__name__)


class Severity(Enum):
    """Inconsistency severity, ordered from none to severe."""
    NONE = "none"
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"

    @property
    def level(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [Severity.NONE, Severity.MILD, Severity.MODERATE, Severity.SEVERE]


class ConsistencyStatus(Enum):
    CONSISTENT = "consistent"
    INCONSISTENT = "inconsistent"
    UNTESTABLE = "untestable"


@dataclass
class DirectEstimate:
    """Pooled direct evidence for one edge, oriented treatment_a -> treatment_b."""
    treatment_a: str
    treatment_b: str
    estimate: float
    standard_error: float
    n_comparisons: int

    @property
    def variance(self) -> float:
        return self.standard_error ** 2

    def oriented(self, treatment_a: str) -> float:
        return self.estimate if treatment_a == self.treatment_a else -self.estimate


@dataclass
class LoopResult:
    """Inconsistency factor of one closed triangle (A, B, C)."""
    treatments: tuple[str, str, str]
    direct_comparisons: list[DirectEstimate]   # A->B, B->C, A->C
    inconsistency_factor: float
    se_inconsistency: float
    z_score: float
    p_value: float
    severity: Severity

    @property
    def is_inconsistent(self) -> bool:
        return self.severity is not Severity.NONE


@dataclass
class NodeSplitResult:
    """Direct versus indirect evidence for one comparison."""
    treatment_a: str
    treatment_b: str
    direct_estimate: float
    direct_se: float
    indirect_estimate: float
    indirect_se: float
    indirect_via: list[str]
    difference: float
    se_difference: float
    z_score: float
    p_value: float
    severity: Severity

    @property
    def is_inconsistent(self) -> bool:
        return self.severity is not Severity.NONE


@dataclass
class GlobalTest:
    chi_square: float
    df: int
    p_value: float
    is_inconsistent: bool


@dataclass
class ConsistencyReport:
    """Result of a consistency assessment.

    ``severity`` and ``inconsistency_detected`` are None when no loop could
    be tested.
    """
    loops: list[LoopResult]
    node_splits: list[NodeSplitResult]
    global_test: GlobalTest | None
    status: ConsistencyStatus
    severity: Severity | None
    inconsistency_detected: bool | None
    interpretation: str
    confidence: float
    excluded_comparisons: int = 0
    recommendations: list[str] = field(default_factory=list)
    warnings: list[DataQualityWarning] = field(default_factory=list)
    notices: list[UntestableConditionNotice] = field(default_factory=list)

    @property
    def num_loops(self) -> int:
        return len(self.loops)

    @property
    def num_inconsistent_loops(self) -> int:
        return sum(1 for loop in self.loops if loop.is_inconsistent)

    @property
    def consistency_assessed(self) -> bool:
        return self.status is not ConsistencyStatus.UNTESTABLE


def classify_severity(
    p_value: float,
    thresholds: ConsistencyThresholds | None = None
) -> Severity:
    """Map a p-value onto the severity scale."""
    thresholds = thresholds or ConsistencyThresholds()
    if p_value < thresholds.severe_p:
        return Severity.SEVERE
    if p_value < thresholds.moderate_p:
        return Severity.MODERATE
    if p_value < thresholds.mild_p:
        return Severity.MILD
    return Severity.NONE


def _describe(comp: Comparison) -> str:
    study = f"study '{comp.study_id}'" if comp.study_id is not None else "unidentified study"
    return f"{comp.treatment_a} vs {comp.treatment_b} ({study})"


def _screen(
    comp: Comparison,
    thresholds: ConsistencyThresholds
) -> DataQualityWarning | None:
    """Return a warning if the comparison cannot enter the statistics."""
    if comp.effect_estimate is None or not math.isfinite(comp.effect_estimate):
        return DataQualityWarning(
            "missing_effect",
            f"{_describe(comp)} has no usable effect estimate and was excluded",
        )
    se = comp.standard_error
    if se is None or not math.isfinite(se):
        return DataQualityWarning(
            "missing_standard_error",
            f"{_describe(comp)} has no usable standard error and was excluded",
        )
    if se < thresholds.min_standard_error:
        return DataQualityWarning(
            "zero_variance",
            f"{_describe(comp)} reports a zero or near-zero standard error "
            f"({se:g}) and was excluded",
        )
    return None


def pool_direct_estimates(
    graph: NetworkGraph,
    thresholds: ConsistencyThresholds | None = None,
    warnings: list[DataQualityWarning] | None = None
) -> dict[EdgeKey, DirectEstimate]:
    """Inverse-variance pool the valid comparisons of every edge.

    Comparisons with a missing estimate or a missing, non-finite or
    near-zero standard error are left out; a warning is appended to
    ``warnings`` for each. Edges left without valid comparisons are absent
    from the result.
    """
    thresholds = thresholds or ConsistencyThresholds()
    direct: dict[EdgeKey, DirectEstimate] = {}

    for (a, b), comps in graph.edges.items():
        effects = []
        ses = []
        for comp in comps:
            problem = _screen(comp, thresholds)
            if problem is not None:
                logger.debug("Excluding comparison: %s", problem.message)
                if warnings is not None:
                    warnings.append(problem)
                continue
            effects.append(comp.oriented(a))
            ses.append(comp.standard_error)

        if not effects:
            continue

        pooled = inverse_variance_pool(effects, ses)
        direct[(a, b)] = DirectEstimate(
            treatment_a=a,
            treatment_b=b,
            estimate=pooled.estimate,
            standard_error=pooled.standard_error,
            n_comparisons=pooled.n_estimates,
        )

    return direct


class _EvidenceView:
    """Lookup helper over pooled direct estimates."""

    def __init__(self, graph: NetworkGraph, direct: dict[EdgeKey, DirectEstimate]):
        self.graph = graph
        self.direct = direct
        self.adjacency: dict[str, list[str]] = {t: [] for t in graph.treatments}
        for t in graph.treatments:
            for neighbor in graph.neighbors(t):
                if self.lookup(t, neighbor) is not None:
                    self.adjacency[t].append(neighbor)
        self._neighbor_sets = {t: set(n) for t, n in self.adjacency.items()}

    def lookup(self, a: str, b: str) -> DirectEstimate | None:
        key = self.graph.edge_key(a, b)
        return self.direct.get(key) if key else None

    def effect(self, a: str, b: str) -> float:
        return self.direct[self.graph.edge_key(a, b)].oriented(a)

    def variance(self, a: str, b: str) -> float:
        return self.direct[self.graph.edge_key(a, b)].variance

    def common_neighbors(self, a: str, b: str) -> list[str]:
        return [w for w in self.adjacency[a] if w != b and w in self._neighbor_sets[b]]


def find_loops(
    graph: NetworkGraph,
    direct: dict[EdgeKey, DirectEstimate] | None = None
) -> list[tuple[str, str, str]]:
    """Enumerate closed triangles with direct evidence on all three sides.

    Iterates existing edges rather than all treatment triples. Each
    triangle is emitted once, ordered by treatment insertion order.
    """
    if direct is None:
        direct = pool_direct_estimates(graph)
    view = _EvidenceView(graph, direct)
    index = graph.index

    loops = []
    for a, b in direct:
        x, y = (a, b) if index(a) < index(b) else (b, a)
        for w in view.common_neighbors(x, y):
            if index(w) > index(y):
                loops.append((x, y, w))

    loops.sort(key=lambda loop: tuple(index(t) for t in loop))
    return loops


def _assess_loop(
    loop: tuple[str, str, str],
    view: _EvidenceView,
    thresholds: ConsistencyThresholds
) -> LoopResult:
    a, b, c = loop
    factor = view.effect(a, b) + view.effect(b, c) - view.effect(a, c)
    se = math.sqrt(view.variance(a, b) + view.variance(b, c) + view.variance(a, c))
    test = wald_test(factor, se)

    sides = []
    for x, y in ((a, b), (b, c), (a, c)):
        estimate = view.lookup(x, y)
        sides.append(DirectEstimate(
            treatment_a=x,
            treatment_b=y,
            estimate=estimate.oriented(x),
            standard_error=estimate.standard_error,
            n_comparisons=estimate.n_comparisons,
        ))

    return LoopResult(
        treatments=loop,
        direct_comparisons=sides,
        inconsistency_factor=factor,
        se_inconsistency=se,
        z_score=test.z,
        p_value=test.p_value,
        severity=classify_severity(test.p_value, thresholds),
    )


def _split_node(
    a: str,
    b: str,
    view: _EvidenceView,
    thresholds: ConsistencyThresholds
) -> NodeSplitResult | None:
    direct = view.lookup(a, b)
    via = view.common_neighbors(a, b)
    if direct is None or not via:
        return None

    path_effects = [view.effect(a, w) + view.effect(w, b) for w in via]
    path_ses = [math.sqrt(view.variance(a, w) + view.variance(w, b)) for w in via]
    indirect = inverse_variance_pool(path_effects, path_ses)

    direct_estimate = direct.oriented(a)
    difference = direct_estimate - indirect.estimate
    se_difference = math.sqrt(direct.variance + indirect.variance)
    test = wald_test(difference, se_difference)

    return NodeSplitResult(
        treatment_a=a,
        treatment_b=b,
        direct_estimate=direct_estimate,
        direct_se=direct.standard_error,
        indirect_estimate=indirect.estimate,
        indirect_se=indirect.standard_error,
        indirect_via=via,
        difference=difference,
        se_difference=se_difference,
        z_score=test.z,
        p_value=test.p_value,
        severity=classify_severity(test.p_value, thresholds),
    )


def _global_test(
    loops: list[LoopResult],
    view: _EvidenceView,
    thresholds: ConsistencyThresholds
) -> GlobalTest:
    """Chi-square over loop z-scores, df = dimension of the cycle space."""
    graph = view.graph
    adjacency = {t: tuple(n) for t, n in view.adjacency.items()}
    n_components = len(find_components(graph.treatments, adjacency))
    df = len(view.direct) - graph.num_treatments + n_components

    chi_square = sum(loop.z_score ** 2 for loop in loops)
    p_value = chi_square_sf(chi_square, df)
    return GlobalTest(
        chi_square=chi_square,
        df=df,
        p_value=p_value,
        is_inconsistent=p_value < thresholds.global_alpha,
    )


_INTERPRETATIONS = {
    Severity.NONE: "No significant inconsistency detected. Direct and indirect "
                   "evidence appear to agree.",
    Severity.MILD: "Mild inconsistency detected. Results should be interpreted "
                   "with some caution.",
    Severity.MODERATE: "Moderate inconsistency detected. Investigate possible "
                       "sources of disagreement between direct and indirect evidence.",
    Severity.SEVERE: "Severe inconsistency detected. Network meta-analysis results "
                     "may be unreliable.",
}


def analyze_consistency(
    graph: NetworkGraph,
    split_edges: Iterable[tuple[str, str]] | None = None,
    thresholds: ConsistencyThresholds | None = None
) -> ConsistencyReport:
    """Assess consistency of a treatment network.

    Args:
        graph: Network built by ``build_network``
        split_edges: Comparisons to node-split. Defaults to every comparison
                     that has both direct and indirect evidence.
        thresholds: Severity and screening thresholds (defaults from config)

    Returns:
        ConsistencyReport
    """
    thresholds = thresholds or ConsistencyThresholds()
    warnings: list[DataQualityWarning] = []
    notices: list[UntestableConditionNotice] = []
    recommendations: list[str] = []

    direct = pool_direct_estimates(graph, thresholds, warnings)
    excluded = len(warnings)
    view = _EvidenceView(graph, direct)

    loops = [_assess_loop(loop, view, thresholds) for loop in find_loops(graph, direct)]
    logger.debug("Found %d closed loop(s) across %d edges", len(loops), len(direct))

    if split_edges is None:
        targets = [(a, b) for a, b in direct if view.common_neighbors(a, b)]
    else:
        targets = []
        for a, b in split_edges:
            if a not in graph.adjacency or b not in graph.adjacency:
                raise InvalidNetworkError(f"Unknown treatment in split comparison {a}:{b}")
            if view.lookup(a, b) is None:
                warnings.append(DataQualityWarning(
                    "no_direct_evidence",
                    f"{a} vs {b} has no usable direct evidence; node-split skipped",
                ))
            elif not view.common_neighbors(a, b):
                warnings.append(DataQualityWarning(
                    "no_indirect_evidence",
                    f"{a} vs {b} has no indirect path through a third treatment; "
                    "node-split skipped",
                ))
            else:
                targets.append((a, b))

    node_splits = []
    for a, b in targets:
        result = _split_node(a, b, view, thresholds)
        if result is not None:
            node_splits.append(result)

    multi_arm = find_multi_arm_trials(graph)
    if multi_arm and loops:
        warnings.append(DataQualityWarning(
            "multi_arm_correlation",
            f"{len(multi_arm)} multi-arm trial(s) contribute correlated comparisons "
            "that are treated as independent; variances may be understated",
        ))

    if not loops:
        notices.append(UntestableConditionNotice(
            "consistency",
            "the network has no closed loops with usable direct evidence on every side",
        ))
        recommendations.append(
            "Consistency cannot be assessed without closed loops; rely on a careful "
            "assessment of transitivity (similar effect modifiers across comparisons)"
        )
        report = ConsistencyReport(
            loops=[],
            node_splits=node_splits,
            global_test=None,
            status=ConsistencyStatus.UNTESTABLE,
            severity=None,
            inconsistency_detected=None,
            interpretation="Consistency could not be assessed: the network contains "
                           "no closed loops, so direct and indirect evidence cannot "
                           "be compared. This is not evidence of consistency.",
            confidence=0.4,
            excluded_comparisons=excluded,
            recommendations=recommendations,
            warnings=warnings,
            notices=notices,
        )
        logger.info("Consistency untestable: no closed loops")
        return report

    global_test = _global_test(loops, view, thresholds)

    severity = Severity.NONE
    for check in [*loops, *node_splits]:
        if check.severity.level > severity.level:
            severity = check.severity
    detected = severity is not Severity.NONE

    if detected or global_test.is_inconsistent:
        status = ConsistencyStatus.INCONSISTENT
        recommendations.append("Investigate potential effect modifiers or biases")
        recommendations.append("Consider subgroup analyses or meta-regression")
        recommendations.append("Examine study characteristics for inconsistent comparisons")
    else:
        status = ConsistencyStatus.CONSISTENT

    interpretation = _INTERPRETATIONS[severity]
    if global_test.is_inconsistent and not detected:
        interpretation += (
            " The global test nevertheless indicates inconsistency across the network."
        )

    if severity is Severity.SEVERE:
        recommendations.append(
            "Consider excluding inconsistent studies or using an inconsistency model"
        )

    confidence = 0.7
    if len(loops) < 3:
        confidence -= 0.1
        warnings.append(DataQualityWarning(
            "few_loops",
            f"Only {len(loops)} loop(s) - inconsistency tests have limited power",
        ))
    if severity is Severity.SEVERE:
        confidence -= 0.2
    confidence = max(0.1, min(0.9, confidence))

    report = ConsistencyReport(
        loops=loops,
        node_splits=node_splits,
        global_test=global_test,
        status=status,
        severity=severity,
        inconsistency_detected=detected,
        interpretation=interpretation,
        confidence=round(confidence, 2),
        excluded_comparisons=excluded,
        recommendations=recommendations,
        warnings=warnings,
        notices=notices,
    )

    logger.info(
        "Consistency assessed: %d loop(s), %d inconsistent, severity %s, global p=%.4g",
        report.num_loops, report.num_inconsistent_loops, severity.value,
        global_test.p_value
    )
    return report
