"""Confidence pruning of assigned labels.

For each cell the delta is the score of its assigned label minus the
median of all its label scores. Deltas are grouped by assigned label and
cells with a delta far below their group (MAD outliers) or below fixed
thresholds have their label replaced by an explicit unknown marker.
The source labels are never modified.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd

from ...errors import (
    ConfigurationError,
    InsufficientLabelsError,
    LabelMismatchError,
    SmallGroupError,
)
from ...utils.stats import lower_outlier_bound, robust_zscore
from ..classification.engine import ClassificationResult
from .config import PruningConfig

THRESHOLD_COLUMNS = [
    "label",
    "n_cells",
    "median",
    "mad",
    "nmads",
    "lower_bound",
    "n_pruned",
    "status",
]


def _align_labels(scores: pd.DataFrame, labels: pd.Series) -> pd.Series:
    """Align labels to the score matrix rows.

    Labels indexed by cell are matched by name. Only an unnamed
    (default RangeIndex) label vector is taken positionally.
    """
    if labels.index.equals(scores.index):
        aligned = labels
    elif labels.index.equals(pd.RangeIndex(len(labels))) and len(labels) == len(scores):
        aligned = pd.Series(labels.to_numpy(), index=scores.index)
    elif (
        labels.index.is_unique
        and len(labels) == len(scores)
        and labels.index.isin(scores.index).all()
    ):
        aligned = labels.reindex(scores.index)
    else:
        missing = scores.index[~scores.index.isin(labels.index)]
        raise LabelMismatchError(
            message="Label vector does not match the score matrix rows",
            expected=f"{len(scores)} labels indexed by the score rows",
            found=f"{len(labels)} labels, {len(missing)} score rows without a label",
            suggestion="Index the labels by cell id, or pass them in score-row order without an index.",
        )
    return aligned.astype(str).rename("label")


def compute_deltas(scores: pd.DataFrame, labels: pd.Series) -> pd.Series:
    """Delta of each cell's assigned-label score from its median label score.

    Args:
        scores: Cells x labels score matrix
        labels: Assigned label per cell

    Returns:
        Series of deltas indexed like ``scores``

    Raises:
        InsufficientLabelsError: If the matrix has fewer than two labels
        LabelMismatchError: If an assigned label is not a score column
    """
    if scores.shape[1] < 2:
        raise InsufficientLabelsError(
            message="Delta from the median needs scores over at least two labels",
            expected=">= 2 labels",
            found=list(scores.columns),
            suggestion="Use a reference with more than one label or skip pruning.",
        )
    labels = _align_labels(scores, labels)
    positions = scores.columns.get_indexer(labels.to_numpy())
    if (positions < 0).any():
        unknown = sorted(set(labels[positions < 0]))
        raise LabelMismatchError(
            message="Assigned labels missing from the score matrix",
            found=unknown[0] if len(unknown) == 1 else unknown,
            available_labels=[str(c) for c in scores.columns],
        )
    values = scores.to_numpy(dtype=float)
    assigned = values[np.arange(len(values)), positions]
    medians = np.median(values, axis=1)
    return pd.Series(assigned - medians, index=scores.index, name="delta")


def delta_distribution(scores: pd.DataFrame, labels: pd.Series) -> Dict[str, pd.Series]:
    """Deltas grouped by assigned label."""
    deltas = compute_deltas(scores, labels)
    labels = _align_labels(scores, labels)
    return {label: deltas[labels == label] for label in sorted(labels.unique())}


def outlier_mask(
    deltas: pd.Series,
    labels: pd.Series,
    nmads: float = 3.0,
    min_group_size: int = 20,
    small_group_policy: str = "skip",
    small_group_widen: float = 2.0,
    logger: Optional[logging.Logger] = None,
) -> Tuple[pd.Series, pd.DataFrame]:
    """Flag low-delta outliers within each label group.

    A delta is an outlier when it lies strictly below
    ``median - nmads * 1.4826 * MAD`` of its label group.

    Args:
        deltas: Delta per cell
        labels: Assigned label per cell (same index)
        nmads: Number of scaled MADs
        min_group_size: Groups below this size follow ``small_group_policy``
        small_group_policy: "skip", "widen" or "error"
        small_group_widen: nmads multiplier for small groups under "widen"
        logger: Optional logger instance

    Returns:
        (mask, thresholds) where mask is True for pruned cells and thresholds
        has one row per label with columns THRESHOLD_COLUMNS
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    flags = np.zeros(len(deltas), dtype=bool)
    rows = []
    for label in sorted(labels.unique()):
        in_group = (labels == label).to_numpy()
        group = deltas[in_group]
        n = len(group)
        group_nmads = nmads
        status = "tested"
        if n < min_group_size:
            if small_group_policy == "error":
                raise SmallGroupError(
                    message=f"Label '{label}' has too few cells for outlier detection",
                    expected=f">= {min_group_size}",
                    found=n,
                )
            if small_group_policy == "skip":
                logger.warning(
                    "Skipping outlier pruning for '%s': %d cells < %d",
                    label, n, min_group_size,
                )
                median, mad, _ = lower_outlier_bound(group, nmads)
                rows.append({
                    "label": label,
                    "n_cells": n,
                    "median": median,
                    "mad": mad,
                    "nmads": np.nan,
                    "lower_bound": np.nan,
                    "n_pruned": 0,
                    "status": "skipped",
                })
                continue
            group_nmads = nmads * small_group_widen
            status = "widened"
            logger.warning(
                "Widening outlier test for '%s': %d cells < %d, nmads=%.2f",
                label, n, min_group_size, group_nmads,
            )

        median, mad, lower = lower_outlier_bound(group, group_nmads)
        flagged = group < lower
        flags[np.flatnonzero(in_group)[flagged.to_numpy()]] = True
        rows.append({
            "label": label,
            "n_cells": n,
            "median": median,
            "mad": mad,
            "nmads": group_nmads,
            "lower_bound": lower,
            "n_pruned": int(flagged.sum()),
            "status": status,
        })

    thresholds = pd.DataFrame(rows, columns=THRESHOLD_COLUMNS)
    return pd.Series(flags, index=deltas.index, name="pruned"), thresholds


def threshold_mask(
    deltas: pd.Series,
    min_diff_med: Optional[float] = None,
    delta_next: Optional[pd.Series] = None,
    min_diff_next: Optional[float] = None,
) -> pd.Series:
    """Flag cells below fixed thresholds.

    Comparisons are strict, so raising a threshold never un-prunes a cell.
    Missing ``delta_next`` values never trigger pruning.
    """
    mask = pd.Series(False, index=deltas.index, name="pruned")
    if min_diff_med is not None:
        mask |= deltas < min_diff_med
    if min_diff_next is not None:
        if delta_next is None:
            raise ValueError("min_diff_next requires delta_next values")
        aligned = delta_next.reindex(deltas.index) if not delta_next.index.equals(deltas.index) else delta_next
        mask |= (aligned < min_diff_next).astype(bool)
    return mask


@dataclass(frozen=True)
class PruningResult:
    """Result of confidence pruning.

    Attributes:
        deltas: Delta from the median per cell
        labels: Original assigned labels (untouched)
        pruned_labels: Assigned label, or the unknown marker when pruned
        pruned: True for pruned cells
        thresholds: Per-label outlier statistics (empty in threshold mode)
        skipped_labels: Labels exempted from the outlier test
        delta_next: Tuning gap per cell, if available
        unknown_label: Marker used for pruned cells
    """

    deltas: pd.Series
    labels: pd.Series
    pruned_labels: pd.Series
    pruned: pd.Series
    thresholds: pd.DataFrame
    skipped_labels: Tuple[str, ...] = ()
    delta_next: Optional[pd.Series] = None
    unknown_label: str = "Unknown"

    @property
    def n_pruned(self) -> int:
        return int(self.pruned.sum())

    def to_frame(self) -> pd.DataFrame:
        """Per-cell table of labels, deltas and pruning outcome."""
        frame = pd.DataFrame(
            {
                "label": self.labels,
                "pruned_label": self.pruned_labels,
                "delta": self.deltas,
                "pruned": self.pruned,
            }
        )
        frame["delta_z"] = np.nan
        for label in sorted(self.labels.unique()):
            in_group = self.labels == label
            frame.loc[in_group, "delta_z"] = robust_zscore(self.deltas[in_group])
        if self.delta_next is not None:
            frame["delta_next"] = self.delta_next
        return frame


class ConfidencePruner:
    """Replace low-confidence label assignments with an unknown marker.

    Example:
        >>> pruner = ConfidencePruner(PruningConfig(nmads=3.0))
        >>> pruned = pruner.prune(result)
        >>> pruned.pruned_labels.value_counts()
    """

    def __init__(
        self,
        config: Optional[PruningConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or PruningConfig()
        self.config.validate()
        self.logger = logger or logging.getLogger(__name__)

    def prune(
        self,
        result: Union[ClassificationResult, pd.DataFrame],
        labels: Optional[pd.Series] = None,
        delta_next: Optional[pd.Series] = None,
    ) -> PruningResult:
        """Prune a classification result or a raw score matrix.

        Args:
            result: ClassificationResult, or a cells x labels score matrix
            labels: Assigned labels (required with a raw score matrix)
            delta_next: Tuning gap per cell (taken from the result if omitted)

        Returns:
            PruningResult
        """
        cfg = self.config
        if isinstance(result, ClassificationResult):
            scores = result.scores
            labels = result.labels if labels is None else labels
            delta_next = result.delta_next if delta_next is None else delta_next
        else:
            scores = result
            if labels is None:
                raise ValueError("labels are required when pruning a raw score matrix")

        labels = _align_labels(scores, labels)
        deltas = compute_deltas(scores, labels)

        mask = pd.Series(False, index=deltas.index, name="pruned")
        thresholds = pd.DataFrame(columns=THRESHOLD_COLUMNS)
        if cfg.mode == "outlier":
            mask, thresholds = outlier_mask(
                deltas,
                labels,
                nmads=cfg.nmads,
                min_group_size=cfg.min_group_size,
                small_group_policy=cfg.small_group_policy,
                small_group_widen=cfg.small_group_widen,
                logger=self.logger,
            )

        if cfg.mode == "threshold" and cfg.min_diff_med is None and delta_next is None:
            raise ConfigurationError(
                message="Threshold mode with only min_diff_next needs delta_next values",
                expected="delta_next per cell, or min_diff_med",
                found=None,
                suggestion="Prune a ClassificationResult, pass delta_next, or set min_diff_med.",
            )

        if cfg.min_diff_med is not None or cfg.min_diff_next is not None:
            if cfg.min_diff_next is not None and delta_next is None:
                self.logger.warning("min_diff_next set but no delta_next available; ignoring it")
            mask = mask | threshold_mask(
                deltas,
                min_diff_med=cfg.min_diff_med,
                delta_next=delta_next,
                min_diff_next=cfg.min_diff_next if delta_next is not None else None,
            )

        pruned_labels = labels.where(~mask, cfg.unknown_label).rename("pruned_label")
        skipped = tuple(
            thresholds.loc[thresholds["status"] == "skipped", "label"].astype(str)
        )

        self.logger.info(
            "Pruned %d/%d cells (mode=%s, nmads=%.2f, skipped labels=%d)",
            int(mask.sum()),
            len(mask),
            cfg.mode,
            cfg.nmads,
            len(skipped),
        )

        return PruningResult(
            deltas=deltas,
            labels=labels,
            pruned_labels=pruned_labels,
            pruned=mask.astype(bool),
            thresholds=thresholds,
            skipped_labels=skipped,
            delta_next=delta_next,
            unknown_label=cfg.unknown_label,
        )
