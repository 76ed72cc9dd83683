"""Treatment ranking engine.

Ranks treatments from pooled relative effects using a Monte Carlo rank
simulation (SUCRA, probability of being best, rank distributions) and
the analytic P-score.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Protocol

import numpy as np

from ..config import ConsistencyThresholds, RankingSettings
from ..errors import DataQualityWarning, InvalidNetworkError
from .consistency import pool_direct_estimates
from .network import NetworkGraph
from .stats import inverse_variance_pool, normal_cdf

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TreatmentEffect:
    """Pooled effect of a treatment relative to a common reference."""
    treatment: str
    effect: float
    standard_error: float


@dataclass(frozen=True)
class PairwiseEffect:
    """Pooled effect of moving from treatment_a to treatment_b."""
    treatment_a: str
    treatment_b: str
    effect: float
    standard_error: float


@dataclass
class TreatmentRanking:
    """Ranking summary for one treatment."""
    treatment: str
    sucra: float               # 0-100, 100 = always best
    p_score: float             # 0-1
    prob_best: float
    mean_rank: float
    median_rank: int
    rank_probabilities: list[float] = field(default_factory=list)  # ranks 1..N


@dataclass
class RankingReport:
    """Result of a treatment ranking."""
    rankings: list[TreatmentRanking]
    higher_is_better: bool
    n_simulations: int
    seed: int | None
    interpretation: str
    confidence: float
    recommendations: list[str] = field(default_factory=list)
    warnings: list[DataQualityWarning] = field(default_factory=list)

    @property
    def best_treatment(self) -> TreatmentRanking:
        return self.rankings[0]

    @property
    def worst_treatment(self) -> TreatmentRanking:
        return self.rankings[-1]

    @property
    def num_treatments(self) -> int:
        return len(self.rankings)

    def get(self, treatment: str) -> TreatmentRanking:
        for ranking in self.rankings:
            if ranking.treatment == treatment:
                return ranking
        raise KeyError(treatment)


class NormalSampler(Protocol):
    """Source of independent normal draws for the rank simulation."""

    def sample(self, means: np.ndarray, standard_errors: np.ndarray, size: int) -> np.ndarray:
        """Return a (size, len(means)) array of normal draws."""
        ...


class SeededSampler:
    """NormalSampler backed by a seeded numpy Generator.

    Without a seed, one is drawn from fresh OS entropy and kept in
    ``seed`` so the run can be reproduced.
    """

    def __init__(self, seed: int | None = None):
        if seed is None:
            seed = int(np.random.SeedSequence().entropy)
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def sample(self, means: np.ndarray, standard_errors: np.ndarray, size: int) -> np.ndarray:
        return self._rng.normal(loc=means, scale=standard_errors, size=(size, len(means)))


def _validate_effects(effects: list[TreatmentEffect]) -> None:
    if len(effects) < 2:
        raise InvalidNetworkError(
            f"Ranking requires at least 2 treatments, got {len(effects)}"
        )

    seen: set[str] = set()
    for effect in effects:
        if not effect.treatment or not effect.treatment.strip():
            raise InvalidNetworkError("Treatment effect has an empty treatment name")
        if effect.treatment in seen:
            raise InvalidNetworkError(f"Treatment '{effect.treatment}' is listed twice")
        seen.add(effect.treatment)
        if effect.effect is None or not math.isfinite(effect.effect):
            raise InvalidNetworkError(
                f"Treatment '{effect.treatment}' has a non-finite effect"
            )
        if (effect.standard_error is None or not math.isfinite(effect.standard_error)
                or effect.standard_error < 0):
            raise InvalidNetworkError(
                f"Treatment '{effect.treatment}' has an invalid standard error: "
                f"{effect.standard_error!r}"
            )


def simulate_rank_counts(
    means: np.ndarray,
    standard_errors: np.ndarray,
    n_simulations: int,
    sampler: NormalSampler,
    higher_is_better: bool = True,
    batch_size: int | None = None
) -> np.ndarray:
    """Count how often each treatment lands on each rank.

    Args:
        means: Effect per treatment
        standard_errors: SE per treatment
        n_simulations: Number of Monte Carlo iterations
        sampler: Source of normal draws
        higher_is_better: Whether larger effects rank first
        batch_size: Iterations drawn per batch (default: all at once)

    Returns:
        Integer array ``counts[treatment, rank]`` with rank 0 = best.
        Ties keep insertion order.
    """
    n = len(means)
    counts = np.zeros((n, n), dtype=np.int64)
    batch = batch_size or n_simulations

    done = 0
    while done < n_simulations:
        size = min(batch, n_simulations - done)
        draws = sampler.sample(means, standard_errors, size)
        keys = -draws if higher_is_better else draws
        # order[k, r] is the treatment holding rank r in iteration k
        order = np.argsort(keys, axis=1, kind="stable")
        for rank in range(n):
            counts[:, rank] += np.bincount(order[:, rank], minlength=n)
        done += size

    return counts


def sucra_scores(rank_probabilities: np.ndarray) -> np.ndarray:
    """SUCRA (0-100) from a (treatments x ranks) probability matrix."""
    n = rank_probabilities.shape[1]
    cumulative = np.cumsum(rank_probabilities[:, :n - 1], axis=1)
    return cumulative.sum(axis=1) / (n - 1) * 100.0


def p_scores(
    means: np.ndarray,
    standard_errors: np.ndarray,
    higher_is_better: bool = True
) -> np.ndarray:
    """Analytic P-scores: mean probability of beating each other treatment."""
    n = len(means)
    sign = 1.0 if higher_is_better else -1.0
    scores = np.zeros(n)

    for i in range(n):
        total = 0.0
        for j in range(n):
            if i == j:
                continue
            diff = sign * (means[i] - means[j])
            se = math.sqrt(standard_errors[i] ** 2 + standard_errors[j] ** 2)
            if se > 0:
                total += normal_cdf(diff / se)
            elif diff > 0:
                total += 1.0
            elif diff == 0:
                total += 0.5
        scores[i] = total / (n - 1)

    return scores


def _median_rank(probabilities: np.ndarray) -> int:
    cumulative = np.cumsum(probabilities)
    # Tolerance keeps exact halves from slipping a rank due to rounding
    return int(np.searchsorted(cumulative, 0.5 - 1e-12)) + 1


class TreatmentRanker:
    """Ranks treatments by Monte Carlo rank simulation."""

    def __init__(
        self,
        settings: RankingSettings | None = None,
        sampler: NormalSampler | None = None
    ):
        """Initialize ranker.

        Args:
            settings: Simulation settings (defaults from config)
            sampler: Optional normal sampler. When omitted, each call builds
                     a fresh SeededSampler from ``settings.seed`` so repeated
                     calls are identical.
        """
        self.settings = settings or RankingSettings()
        self.sampler = sampler

    def rank(
        self,
        effects: Iterable[TreatmentEffect],
        higher_is_better: bool = True
    ) -> RankingReport:
        """Rank treatments.

        Args:
            effects: Pooled effect per treatment against a common reference
            higher_is_better: Whether larger effects are preferable

        Returns:
            RankingReport with rankings ordered by SUCRA (best first)

        Raises:
            InvalidNetworkError: Fewer than two treatments or invalid effects
        """
        effects = list(effects)
        _validate_effects(effects)

        n_simulations = self.settings.n_simulations
        if n_simulations < 1:
            raise ValueError(f"n_simulations must be >= 1, got {n_simulations}")

        sampler = self.sampler or SeededSampler(self.settings.seed)
        seed = getattr(sampler, "seed", None)

        means = np.array([e.effect for e in effects], dtype=float)
        ses = np.array([e.standard_error for e in effects], dtype=float)

        logger.debug(
            "Simulating %d rank draws for %d treatments (seed=%s)",
            n_simulations, len(effects), seed
        )
        counts = simulate_rank_counts(
            means, ses, n_simulations, sampler,
            higher_is_better=higher_is_better,
            batch_size=self.settings.batch_size,
        )
        probabilities = counts / n_simulations
        sucra = sucra_scores(probabilities)
        pscores = p_scores(means, ses, higher_is_better)
        rank_numbers = np.arange(1, len(effects) + 1)

        rankings = []
        for i, effect in enumerate(effects):
            rankings.append(TreatmentRanking(
                treatment=effect.treatment,
                sucra=float(sucra[i]),
                p_score=float(pscores[i]),
                prob_best=float(probabilities[i, 0]),
                mean_rank=float(probabilities[i] @ rank_numbers),
                median_rank=_median_rank(probabilities[i]),
                rank_probabilities=[float(p) for p in probabilities[i]],
            ))

        # Stable sort keeps insertion order among equal SUCRA values
        rankings.sort(key=lambda r: r.sucra, reverse=True)

        report = self._assess(rankings, effects, higher_is_better, n_simulations, seed)
        logger.info(
            "Ranking complete: best %s (SUCRA %.1f)",
            report.best_treatment.treatment, report.best_treatment.sucra
        )
        return report

    def _assess(
        self,
        rankings: list[TreatmentRanking],
        effects: list[TreatmentEffect],
        higher_is_better: bool,
        n_simulations: int,
        seed: int | None
    ) -> RankingReport:
        """Build interpretation, warnings and confidence."""
        warnings: list[DataQualityWarning] = []
        recommendations: list[str] = []
        best, worst = rankings[0], rankings[-1]

        interpretation = (
            f"Based on {n_simulations:,} simulations, {best.treatment} ranks highest "
            f"(SUCRA = {best.sucra:.1f}%, {best.prob_best * 100:.1f}% probability "
            f"of being best). "
        )
        if best.prob_best > 0.8:
            interpretation += f"There is strong evidence that {best.treatment} is the best treatment."
        elif best.prob_best > 0.5:
            interpretation += f"{best.treatment} is likely the best treatment, but uncertainty remains."
        else:
            interpretation += "Ranking is uncertain; multiple treatments have similar performance."

        spread = best.sucra - rankings[1].sucra
        if spread < self.settings.uncertainty_margin:
            warnings.append(DataQualityWarning(
                "uncertain_ranking",
                f"Top two treatments ({best.treatment}, {rankings[1].treatment}) differ by "
                f"only {spread:.1f} SUCRA points - their order is uncertain",
            ))
            recommendations.append(
                "Do not over-interpret small SUCRA differences; check the overlap "
                "of the underlying confidence intervals"
            )

        if best.prob_best < 0.5:
            warnings.append(DataQualityWarning(
                "no_clear_best",
                "No clear best treatment - rankings are uncertain",
            ))
            recommendations.append("Consider additional studies to reduce uncertainty")

        if best.sucra - worst.sucra < 20:
            warnings.append(DataQualityWarning(
                "small_spread",
                "Small difference between best and worst treatments",
            ))
            recommendations.append(
                "Treatments may have similar effectiveness; consider other factors "
                "(cost, safety, preferences)"
            )

        if len(rankings) < 3:
            warnings.append(DataQualityWarning(
                "two_treatments",
                "Only 2 treatments - ranking is trivial",
            ))

        confidence = 0.7
        if best.prob_best > 0.8:
            confidence += 0.1
        elif best.prob_best < 0.5:
            confidence -= 0.2
        if len(rankings) < 3:
            confidence -= 0.2

        mean_se = sum(e.standard_error for e in effects) / len(effects)
        if mean_se > 0.5:
            confidence -= 0.1
            warnings.append(DataQualityWarning(
                "high_uncertainty",
                f"High uncertainty in effect estimates (mean SE {mean_se:.2f})",
            ))
        confidence = max(0.1, min(0.9, confidence))

        return RankingReport(
            rankings=rankings,
            higher_is_better=higher_is_better,
            n_simulations=n_simulations,
            seed=seed,
            interpretation=interpretation,
            confidence=round(confidence, 2),
            recommendations=recommendations,
            warnings=warnings,
        )


def effects_from_pairwise(
    pairwise: Iterable[PairwiseEffect],
    reference: str | None = None
) -> list[TreatmentEffect]:
    """Express pairwise pooled effects against a common reference.

    Repeated pairs are pooled first. Effects are then summed along a
    breadth-first spanning tree rooted at the reference, with variances
    added along the path.

    Args:
        pairwise: Pooled pairwise effects (treatment_a -> treatment_b)
        reference: Reference treatment (default: first treatment seen)

    Returns:
        One TreatmentEffect per treatment in order of first appearance,
        the reference with effect 0 and SE 0

    Raises:
        InvalidNetworkError: On a non-finite effect, a non-positive SE, or
            if the pairs do not connect every treatment
    """
    grouped: dict[tuple[str, str], list[PairwiseEffect]] = {}
    order: list[str] = []
    for pair in pairwise:
        if pair.effect is None or not math.isfinite(pair.effect):
            raise InvalidNetworkError(
                f"Pair {pair.treatment_a} vs {pair.treatment_b} has a non-finite effect"
            )
        if (pair.standard_error is None or not math.isfinite(pair.standard_error)
                or pair.standard_error <= 0):
            raise InvalidNetworkError(
                f"Pair {pair.treatment_a} vs {pair.treatment_b} has an invalid "
                f"standard error: {pair.standard_error!r}"
            )
        for t in (pair.treatment_a, pair.treatment_b):
            if t not in order:
                order.append(t)
        key = (pair.treatment_a, pair.treatment_b)
        if key not in grouped and (pair.treatment_b, pair.treatment_a) in grouped:
            pair = PairwiseEffect(pair.treatment_b, pair.treatment_a, -pair.effect,
                                  pair.standard_error)
            key = (pair.treatment_a, pair.treatment_b)
        grouped.setdefault(key, []).append(pair)

    if len(order) < 2:
        raise InvalidNetworkError(
            f"Ranking requires at least 2 treatments, got {len(order)}"
        )

    reference = reference or order[0]
    if reference not in order:
        raise InvalidNetworkError(f"Reference treatment '{reference}' is not in the network")

    steps: dict[str, list[tuple[str, float, float]]] = {t: [] for t in order}
    for (a, b), pairs in grouped.items():
        if len(pairs) == 1:
            estimate, variance = pairs[0].effect, pairs[0].standard_error ** 2
        else:
            pooled = inverse_variance_pool([p.effect for p in pairs],
                                           [p.standard_error for p in pairs])
            estimate, variance = pooled.estimate, pooled.variance
        steps[a].append((b, estimate, variance))
        steps[b].append((a, -estimate, variance))

    effect = {reference: 0.0}
    variance = {reference: 0.0}
    queue = deque([reference])
    while queue:
        node = queue.popleft()
        for neighbor, estimate, var in steps[node]:
            if neighbor not in effect:
                effect[neighbor] = effect[node] + estimate
                variance[neighbor] = variance[node] + var
                queue.append(neighbor)

    unreachable = [t for t in order if t not in effect]
    if unreachable:
        raise InvalidNetworkError(
            f"Treatments not connected to '{reference}': {', '.join(unreachable)}"
        )

    return [
        TreatmentEffect(treatment=t, effect=effect[t], standard_error=math.sqrt(variance[t]))
        for t in order
    ]


def effects_from_network(
    graph: NetworkGraph,
    reference: str | None = None,
    thresholds: ConsistencyThresholds | None = None,
    warnings: list[DataQualityWarning] | None = None
) -> list[TreatmentEffect]:
    """Reference-based effects from the pooled direct evidence of a network.

    Only direct evidence along a spanning tree enters; use pooled network
    estimates from a full NMA model when available. Without an explicit
    reference the first treatment with usable evidence is used.

    Raises:
        InvalidNetworkError: If the requested reference has no usable
            evidence, or the usable evidence is not connected
    """
    direct = pool_direct_estimates(graph, thresholds, warnings)
    covered = {t for d in direct.values() for t in (d.treatment_a, d.treatment_b)}
    dropped = [t for t in graph.treatments if t not in covered]
    if reference is None:
        reference = next((t for t in graph.treatments if t in covered), None)
    elif reference in graph.treatments and reference not in covered:
        raise InvalidNetworkError(
            f"Reference treatment '{reference}' has no usable direct evidence"
        )
    if dropped and warnings is not None:
        warnings.append(DataQualityWarning(
            "unranked_treatments",
            f"No usable direct evidence for {', '.join(dropped)}; not ranked",
        ))
    pairwise = [
        PairwiseEffect(d.treatment_a, d.treatment_b, d.estimate, d.standard_error)
        for d in direct.values()
    ]
    return effects_from_pairwise(pairwise, reference)


def rank_treatments(
    effects: Iterable[TreatmentEffect],
    higher_is_better: bool = True,
    settings: RankingSettings | None = None,
    sampler: NormalSampler | None = None
) -> RankingReport:
    """Convenience function to rank treatments with default settings.

    Args:
        effects: Pooled effect per treatment against a common reference
        higher_is_better: Whether larger effects are preferable
        settings: Simulation settings
        sampler: Optional injected normal sampler

    Returns:
        RankingReport
    """
    return TreatmentRanker(settings=settings, sampler=sampler).rank(
        effects, higher_is_better=higher_is_better
    )
