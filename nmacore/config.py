"""Central configuration for nmacore.

Thresholds and simulation settings live here instead of being scattered
across the analyzers. Defaults can be overridden through environment
variables; analyzers also accept explicit instances.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: int | None) -> int | None:
    value = os.getenv(name)
    return int(value) if value else default


@dataclass(frozen=True)
class GeometryThresholds:
    """Cut-offs used to classify network geometry."""
    star_hub_fraction: float = _env_float('NMA_STAR_HUB_FRACTION', 0.8)
    fair_density: float = _env_float('NMA_FAIR_DENSITY', 0.3)        # below => fair
    excellent_density: float = _env_float('NMA_EXCELLENT_DENSITY', 0.5)


@dataclass(frozen=True)
class ConsistencyThresholds:
    """P-value cut-offs for inconsistency severity."""
    severe_p: float = 0.01
    moderate_p: float = 0.05
    mild_p: float = 0.10
    global_alpha: float = _env_float('NMA_GLOBAL_ALPHA', 0.05)
    # Standard errors below this are treated as zero variance
    min_standard_error: float = _env_float('NMA_MIN_STANDARD_ERROR', 1e-6)


@dataclass(frozen=True)
class RankingSettings:
    """Monte Carlo rank simulation settings."""
    n_simulations: int = _env_int('NMA_SIMULATIONS', 1000)
    seed: int | None = _env_int('NMA_SEED', None)
    batch_size: int | None = _env_int('NMA_BATCH_SIZE', None)
    uncertainty_margin: float = _env_float('NMA_UNCERTAINTY_MARGIN', 10.0)  # SUCRA points


@dataclass(frozen=True)
class EngineConfig:
    geometry: GeometryThresholds = field(default_factory=GeometryThresholds)
    consistency: ConsistencyThresholds = field(default_factory=ConsistencyThresholds)
    ranking: RankingSettings = field(default_factory=RankingSettings)


CONFIG = EngineConfig()
