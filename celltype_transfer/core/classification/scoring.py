"""Correlation scoring of test cells against reference labels.

Each test cell is correlated (Spearman) with every reference sample over a
gene subset; the score of a label is a high quantile of the correlations
with that label's samples. Fine-tuning repeats the scoring on the markers
that separate the labels still in contention.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ...utils.stats import spearman_matrix, standardized_ranks
from .markers import MarkerSet
from .reference import Reference, label_index


@dataclass
class TrainedReference:
    """Reference restricted to the genes shared with one test dataset.

    This avoids re-indexing the reference for every cell.
    """

    reference: Reference
    genes: List[str]  # Genes shared with the test data, in test order
    markers: MarkerSet  # Restricted to ``genes``
    matrix: np.ndarray  # Reference expression (n_genes, n_samples)
    label_samples: Dict[str, np.ndarray]  # Label -> sample column positions
    gene_index: Dict[str, int]  # Gene -> row position

    @property
    def name(self) -> str:
        return self.reference.name

    @property
    def vocabulary(self) -> List[str]:
        return self.reference.vocabulary

    @property
    def scoring_genes(self) -> List[str]:
        """Genes used for the initial round: all markers, else all shared genes."""
        marker_genes = set(self.markers.all_genes())
        if not marker_genes:
            return list(self.genes)
        return [g for g in self.genes if g in marker_genes]

    def rows(self, genes: Sequence[str]) -> np.ndarray:
        return np.array([self.gene_index[g] for g in genes], dtype=int)


def aggregate_label_scores(
    correlations: np.ndarray,
    label_samples: Dict[str, np.ndarray],
    labels: Sequence[str],
    quantile: float,
) -> np.ndarray:
    """Reduce (n_cells, n_samples) correlations to (n_cells, n_labels) scores."""
    scores = np.empty((correlations.shape[0], len(labels)), dtype=float)
    for j, label in enumerate(labels):
        scores[:, j] = np.quantile(correlations[:, label_samples[label]], quantile, axis=1)
    return scores


def score_cells(
    test_matrix: np.ndarray,
    trained: TrainedReference,
    genes: Sequence[str],
    labels: Sequence[str],
    quantile: float,
    test_rows: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Score test cells against a subset of labels over a gene subset.

    Args:
        test_matrix: Test expression (n_genes, n_cells) in ``trained.genes`` order
        trained: Trained reference
        genes: Genes to correlate over
        labels: Labels to score
        quantile: Quantile of per-sample correlations per label
        test_rows: Row positions of ``genes`` in test_matrix (default: same as reference)

    Returns:
        Scores of shape (n_cells, len(labels))
    """
    rows = trained.rows(genes)
    if test_rows is None:
        test_rows = rows
    samples = np.concatenate([trained.label_samples[label] for label in labels])
    local = {}
    offset = 0
    for label in labels:
        n = len(trained.label_samples[label])
        local[label] = np.arange(offset, offset + n)
        offset += n
    correlations = spearman_matrix(
        test_matrix[test_rows, :],
        trained.matrix[np.ix_(rows, samples)],
    )
    return aggregate_label_scores(correlations, local, labels, quantile)


def _top_two_gap(values: np.ndarray) -> float:
    if values.size < 2:
        return float("nan")
    ordered = np.sort(values)[::-1]
    return float(ordered[0] - ordered[1])


def fine_tune_cell(
    cell: np.ndarray,
    initial: np.ndarray,
    trained: TrainedReference,
    labels: Sequence[str],
    quantile: float,
    tune_thresh: float,
    rank_cache: Optional[Dict[Tuple[Tuple[str, ...], str], np.ndarray]] = None,
) -> Tuple[str, float]:
    """Iteratively narrow the candidate labels for one cell.

    Candidates are labels within ``tune_thresh`` of the best score. Scores
    are recomputed on the markers separating the candidates until one label
    remains or the candidate set stops shrinking.

    Args:
        cell: Expression vector in ``trained.genes`` order
        initial: Initial scores aligned with ``labels``
        trained: Trained reference
        labels: Vocabulary in score-column order
        quantile: Aggregation quantile
        tune_thresh: Candidate window below the best score
        rank_cache: Standardized reference ranks keyed by (genes, label),
            shared across cells of one classification run

    Returns:
        (label, delta_next) where delta_next is the best-minus-second-best gap
        of the last computed round
    """
    labels = list(labels)
    current = np.asarray(initial, dtype=float)
    candidates = [labels[i] for i in np.flatnonzero(current >= current.max() - tune_thresh)]
    last_labels, last_scores = labels, current
    if rank_cache is None:
        rank_cache = {}

    while len(candidates) > 1:
        genes = trained.markers.between(candidates)
        if not genes:
            break
        rows = trained.rows(genes)
        cell_ranks = standardized_ranks(cell[rows].reshape(-1, 1))[:, 0]
        scores = np.empty(len(candidates), dtype=float)
        for j, label in enumerate(candidates):
            key = (genes, label)
            if key not in rank_cache:
                rank_cache[key] = standardized_ranks(
                    trained.matrix[np.ix_(rows, trained.label_samples[label])]
                )
            scores[j] = np.quantile(cell_ranks @ rank_cache[key], quantile)
        last_labels, last_scores = candidates, scores
        keep = [candidates[i] for i in np.flatnonzero(scores >= scores.max() - tune_thresh)]
        if len(keep) == len(candidates):
            break
        candidates = keep

    if len(candidates) == 1:
        best = candidates[0]
    else:
        # Ties keep vocabulary order
        best = last_labels[int(np.argmax(last_scores))]
    return best, _top_two_gap(last_scores)


def scores_frame(scores: np.ndarray, cells: Sequence[str], labels: Sequence[str]) -> pd.DataFrame:
    frame = pd.DataFrame(scores, index=pd.Index(list(cells), name="cell_id"), columns=list(labels))
    frame.columns.name = "label"
    return frame


def first_labels(scores: pd.DataFrame) -> pd.Series:
    """Argmax label per cell; ties resolve to the first column."""
    positions = np.argmax(scores.to_numpy(), axis=1)
    return pd.Series(
        np.asarray(scores.columns)[positions], index=scores.index, name="first_label"
    )
