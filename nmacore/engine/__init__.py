"""Network meta-analysis engine: network model, geometry, consistency and ranking."""

from .consistency import analyze_consistency
from .geometry import analyze_geometry
from .network import Comparison, NetworkGraph, build_network
from .ranker import TreatmentEffect, TreatmentRanker, rank_treatments

__all__ = [
    "Comparison",
    "NetworkGraph",
    "build_network",
    "analyze_geometry",
    "analyze_consistency",
    "TreatmentEffect",
    "TreatmentRanker",
    "rank_treatments",
]
