"""JSON output formatter for analysis reports.

Generates structured JSON for programmatic use and downstream rendering.
"""

from __future__ import annotations

import json
import math
from datetime import datetime
from pathlib import Path
from typing import Any

from .. import __version__
from ..engine.consistency import ConsistencyReport, LoopResult, NodeSplitResult
from ..engine.geometry import GeometryReport
from ..engine.ranker import RankingReport, TreatmentRanking

# Decimal places kept for floats in reports
PRECISION = 6


def _num(value: float | None, digits: int = PRECISION) -> float | None:
    """Round a float for output; non-finite values become None."""
    if value is None or not math.isfinite(value):
        return None
    return round(float(value), digits)


def geometry_to_dict(report: GeometryReport) -> dict[str, Any]:
    """Convert a GeometryReport to a JSON-serializable dictionary."""
    return {
        "is_connected": report.is_connected,
        "num_components": report.num_components,
        "components": report.components,
        "is_star_shaped": report.is_star_shaped,
        "central_treatment": report.central_treatment,
        "has_multi_arm_trials": report.has_multi_arm_trials,
        "multi_arm_trials": [
            {
                "study_id": trial.study_id,
                "treatments": trial.treatments,
                "n_arms": trial.n_arms,
            }
            for trial in report.multi_arm_trials
        ],
        "isolated_treatments": report.isolated_treatments,
        "weakly_connected_treatments": report.weakly_connected_treatments,
        "sparse_comparisons": [list(pair) for pair in report.sparse_comparisons],
        "network_density": _num(report.network_density),
        "avg_connections": _num(report.avg_connections),
        "treatment_degrees": report.treatment_degrees,
        "num_treatments": report.num_treatments,
        "num_studies": report.num_studies,
        "num_comparisons": report.num_comparisons,
        "nodes": [
            {
                "treatment": node.treatment,
                "n_studies": node.n_studies,
                "total_participants": node.total_participants,
                "degree": node.degree,
                "connected_to": node.connected_to,
            }
            for node in report.nodes
        ],
        "edges": [
            {
                "treatment_a": edge.treatment_a,
                "treatment_b": edge.treatment_b,
                "n_studies": edge.n_studies,
                "n_comparisons": edge.n_comparisons,
                "total_participants": edge.total_participants,
            }
            for edge in report.edges
        ],
        "geometry_quality": report.geometry_quality.value,
        "confidence": report.confidence,
        "recommendations": report.recommendations,
        "warnings": [str(w) for w in report.warnings],
    }


def _loop_to_dict(loop: LoopResult) -> dict[str, Any]:
    return {
        "treatments": list(loop.treatments),
        "direct_comparisons": [
            {
                "treatment_a": side.treatment_a,
                "treatment_b": side.treatment_b,
                "effect_estimate": _num(side.estimate),
                "standard_error": _num(side.standard_error),
                "n_comparisons": side.n_comparisons,
            }
            for side in loop.direct_comparisons
        ],
        "inconsistency_factor": _num(loop.inconsistency_factor),
        "se_inconsistency": _num(loop.se_inconsistency),
        "z_score": _num(loop.z_score),
        "p_value": _num(loop.p_value),
        "severity": loop.severity.value,
        "is_inconsistent": loop.is_inconsistent,
    }


def _split_to_dict(split: NodeSplitResult) -> dict[str, Any]:
    return {
        "comparison": {
            "treatment_a": split.treatment_a,
            "treatment_b": split.treatment_b,
        },
        "direct_estimate": _num(split.direct_estimate),
        "direct_se": _num(split.direct_se),
        "indirect_estimate": _num(split.indirect_estimate),
        "indirect_se": _num(split.indirect_se),
        "indirect_via": split.indirect_via,
        "difference": _num(split.difference),
        "se_difference": _num(split.se_difference),
        "z_score": _num(split.z_score),
        "p_value": _num(split.p_value),
        "severity": split.severity.value,
        "is_inconsistent": split.is_inconsistent,
    }


def consistency_to_dict(report: ConsistencyReport) -> dict[str, Any]:
    """Convert a ConsistencyReport to a JSON-serializable dictionary."""
    global_test = None
    if report.global_test is not None:
        global_test = {
            "chi_square": _num(report.global_test.chi_square),
            "df": report.global_test.df,
            "p_value": _num(report.global_test.p_value),
            "is_inconsistent": report.global_test.is_inconsistent,
        }

    return {
        "status": report.status.value,
        "consistency_assessed": report.consistency_assessed,
        "loops": [_loop_to_dict(loop) for loop in report.loops],
        "num_loops": report.num_loops,
        "num_inconsistent_loops": report.num_inconsistent_loops,
        "node_splits": [_split_to_dict(split) for split in report.node_splits],
        "global_test": global_test,
        "severity": report.severity.value if report.severity is not None else None,
        "inconsistency_detected": report.inconsistency_detected,
        "excluded_comparisons": report.excluded_comparisons,
        "interpretation": report.interpretation,
        "confidence": report.confidence,
        "recommendations": report.recommendations,
        "warnings": [str(w) for w in report.warnings],
        "notices": [str(n) for n in report.notices],
    }


def _ranking_entry(ranking: TreatmentRanking) -> dict[str, Any]:
    return {
        "treatment": ranking.treatment,
        "sucra": _num(ranking.sucra, 4),
        "p_score": _num(ranking.p_score),
        "prob_best": _num(ranking.prob_best),
        "mean_rank": _num(ranking.mean_rank),
        "median_rank": ranking.median_rank,
        "rank_probabilities": [_num(p) for p in ranking.rank_probabilities],
    }


def ranking_to_dict(report: RankingReport) -> dict[str, Any]:
    """Convert a RankingReport to a JSON-serializable dictionary."""
    def summary(ranking: TreatmentRanking) -> dict[str, Any]:
        return {
            "treatment": ranking.treatment,
            "sucra": _num(ranking.sucra, 4),
            "prob_best": _num(ranking.prob_best),
        }

    return {
        "rankings": [_ranking_entry(r) for r in report.rankings],
        "best_treatment": summary(report.best_treatment),
        "worst_treatment": summary(report.worst_treatment),
        "num_treatments": report.num_treatments,
        "higher_is_better": report.higher_is_better,
        "n_simulations": report.n_simulations,
        # str: unseeded runs record 128-bit entropy
        "seed": str(report.seed) if report.seed is not None else None,
        "interpretation": report.interpretation,
        "confidence": report.confidence,
        "recommendations": report.recommendations,
        "warnings": [str(w) for w in report.warnings],
    }


class JSONOutput:
    """JSON output formatter."""

    def generate(
        self,
        geometry: GeometryReport | None = None,
        consistency: ConsistencyReport | None = None,
        ranking: RankingReport | None = None,
        scale: str | None = None,
        input_info: dict | None = None,
        notes: list[str] | None = None
    ) -> dict:
        """Generate JSON-serializable dictionary.

        Args:
            geometry: Optional geometry report
            consistency: Optional consistency report
            ranking: Optional ranking report
            scale: Effect scale of the input (e.g. "log odds ratio")
            input_info: Optional description of the input (source, counts)
            notes: Optional run-level notes (e.g. skipped analyses)

        Returns:
            Dictionary ready for JSON serialization
        """
        result: dict[str, Any] = {
            "metadata": {
                "generated_at": datetime.now().isoformat(),
                "tool": "nmacore",
                "version": __version__,
                "scale": scale,
            }
        }

        if input_info:
            result["input"] = input_info
        if notes:
            result["notes"] = notes

        if geometry is not None:
            result["geometry"] = geometry_to_dict(geometry)
        if consistency is not None:
            result["consistency"] = consistency_to_dict(consistency)
        if ranking is not None:
            result["ranking"] = ranking_to_dict(ranking)

        return result

    def to_json(self, indent: int = 2, **kwargs) -> str:
        """Generate JSON string.

        Args:
            indent: JSON indentation level
            **kwargs: Arguments passed to generate()

        Returns:
            JSON formatted string
        """
        data = self.generate(**kwargs)
        return json.dumps(data, indent=indent, allow_nan=False)

    def save(self, output_path: str | Path, **kwargs) -> None:
        """Save JSON report to file.

        Args:
            output_path: Path to save the report
            **kwargs: Arguments passed to generate()
        """
        content = self.to_json(**kwargs)
        Path(output_path).write_text(content, encoding='utf-8')


def export_json(output_path: str | Path | None = None, **kwargs) -> str | None:
    """Convenience function to export reports to JSON.

    Args:
        output_path: Optional path to save file. If None, returns string.
        **kwargs: Reports passed to JSONOutput.generate()

    Returns:
        JSON string if no output_path, None otherwise
    """
    output = JSONOutput()

    if output_path:
        output.save(output_path, **kwargs)
        return None
    else:
        return output.to_json(**kwargs)
