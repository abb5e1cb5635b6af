"""Utility functions for CellType-Transfer.

Provides statistical helpers used across modules.
"""

from .stats import (
    MAD_SCALE,
    lower_outlier_bound,
    robust_zscore,
    scaled_mad,
    spearman_matrix,
    standardized_ranks,
)

__all__ = [
    "MAD_SCALE",
    "lower_outlier_bound",
    "robust_zscore",
    "scaled_mad",
    "spearman_matrix",
    "standardized_ranks",
]
