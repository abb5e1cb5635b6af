"""Pruning module for low-confidence label assignments.

Computes per-cell deltas from the median label score and flags
outliers within each label group or below fixed thresholds.
"""

from .config import PRUNING_MODES, SMALL_GROUP_POLICIES, PruningConfig
from .engine import (
    THRESHOLD_COLUMNS,
    ConfidencePruner,
    PruningResult,
    compute_deltas,
    delta_distribution,
    outlier_mask,
    threshold_mask,
)

__all__ = [
    "ConfidencePruner",
    "PruningConfig",
    "PruningResult",
    "PRUNING_MODES",
    "SMALL_GROUP_POLICIES",
    "THRESHOLD_COLUMNS",
    "compute_deltas",
    "delta_distribution",
    "outlier_mask",
    "threshold_mask",
]
