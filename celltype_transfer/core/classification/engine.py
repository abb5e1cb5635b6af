"""Classification engine for reference-based annotation.

This module provides the ReferenceClassifier that orchestrates
gene intersection, marker detection, correlation scoring and fine-tuning
for one reference.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from ...errors import GeneOverlapError
from .config import ClassificationConfig
from .markers import MarkerSet, detect_markers
from .reference import Reference, label_index, shared_genes
from .scoring import (
    TrainedReference,
    fine_tune_cell,
    first_labels,
    score_cells,
    scores_frame,
)


@dataclass(frozen=True)
class ClassificationResult:
    """Result from classifying a test dataset against one reference.

    Attributes:
        reference: Name of the reference
        scores: Cells x labels score matrix (columns = reference vocabulary)
        first_labels: Argmax labels before fine-tuning
        labels: Final labels
        delta_next: Best minus second-best score of the last tuning round
        markers: Markers used for scoring and fine-tuning
        tuned: Whether fine-tuning was applied
    """

    reference: str
    scores: pd.DataFrame
    first_labels: pd.Series
    labels: pd.Series
    delta_next: pd.Series
    markers: MarkerSet
    tuned: bool = True

    @property
    def cells(self) -> pd.Index:
        return self.scores.index

    @property
    def vocabulary(self):
        return list(self.scores.columns)

    def to_frame(self) -> pd.DataFrame:
        """Per-cell table: labels, delta_next and the score of the assigned label."""
        positions = self.scores.columns.get_indexer(self.labels.to_numpy())
        assigned = self.scores.to_numpy()[np.arange(len(self.scores)), positions]
        return pd.DataFrame(
            {
                "reference": self.reference,
                "first_label": self.first_labels.to_numpy(),
                "label": self.labels.to_numpy(),
                "score": assigned,
                "delta_next": self.delta_next.to_numpy(),
            },
            index=self.scores.index,
        )


class ReferenceClassifier:
    """Correlation classifier with marker-based fine-tuning.

    The classifier:
    1. Intersects test and reference genes
    2. Detects (or restricts supplied) pairwise markers
    3. Scores every cell against every label on the marker union
    4. Fine-tunes ambiguous cells on the markers separating the top labels

    Example:
        >>> classifier = ReferenceClassifier(ClassificationConfig(quantile=0.8))
        >>> result = classifier.classify(test_expression, reference)
        >>> result.labels.value_counts()
    """

    def __init__(
        self,
        config: Optional[ClassificationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClassificationConfig()
        self.config.validate()
        self.logger = logger or logging.getLogger(__name__)

    def train(
        self,
        reference: Reference,
        test_genes,
        markers: Optional[MarkerSet] = None,
    ) -> TrainedReference:
        """Prepare a reference for scoring against one test gene space.

        Args:
            reference: Labeled reference
            test_genes: Genes of the test dataset
            markers: Precomputed markers (detected when None)

        Raises:
            GeneOverlapError: If fewer than ``min_common_genes`` genes are shared
        """
        genes = shared_genes(test_genes, reference)
        if len(genes) < self.config.min_common_genes:
            raise GeneOverlapError(
                message=f"Too few genes shared with reference '{reference.name}'",
                expected=f">= {self.config.min_common_genes}",
                found=len(genes),
            )
        self.logger.info(
            "Reference '%s': %d samples, %d labels, %d shared genes",
            reference.name,
            reference.n_samples,
            len(reference.vocabulary),
            len(genes),
        )

        if markers is None:
            markers = detect_markers(
                reference,
                genes=genes,
                method=self.config.marker_method,
                de_n=self.config.de_n,
                logger=self.logger,
            )
        else:
            markers = markers.restrict(genes)
            self.logger.info("Using supplied markers for '%s'", reference.name)

        return TrainedReference(
            reference=reference,
            genes=genes,
            markers=markers,
            matrix=reference.expression.loc[genes].to_numpy(dtype=float),
            label_samples=label_index(reference),
            gene_index={g: i for i, g in enumerate(genes)},
        )

    def classify(
        self,
        test: pd.DataFrame,
        reference: Reference,
        markers: Optional[MarkerSet] = None,
    ) -> ClassificationResult:
        """Classify test cells (genes x cells) against a reference."""
        trained = self.train(reference, test.index, markers=markers)
        return self.classify_trained(test, trained)

    def classify_trained(
        self,
        test: pd.DataFrame,
        trained: TrainedReference,
    ) -> ClassificationResult:
        """Classify test cells against an already trained reference."""
        start = time.time()
        cfg = self.config
        labels = trained.vocabulary
        test_matrix = test.loc[trained.genes].to_numpy(dtype=float)

        genes = trained.scoring_genes
        raw = score_cells(test_matrix, trained, genes, labels, cfg.quantile)
        scores = scores_frame(raw, test.columns.astype(str), labels)
        initial = first_labels(scores)

        if cfg.fine_tune and len(labels) > 1:
            rank_cache = {}
            tuned = [
                fine_tune_cell(
                    test_matrix[:, i],
                    raw[i],
                    trained,
                    labels,
                    cfg.quantile,
                    cfg.tune_thresh,
                    rank_cache=rank_cache,
                )
                for i in range(raw.shape[0])
            ]
            final = pd.Series([t[0] for t in tuned], index=scores.index, name="label")
            delta_next = pd.Series([t[1] for t in tuned], index=scores.index, name="delta_next")
        else:
            final = initial.rename("label")
            ordered = np.sort(raw, axis=1)
            gap = ordered[:, -1] - ordered[:, -2] if raw.shape[1] > 1 else np.full(raw.shape[0], np.nan)
            delta_next = pd.Series(gap, index=scores.index, name="delta_next")

        n_changed = int((final != initial).sum())
        self.logger.info(
            "Classified %d cells against '%s' in %.1fs (%d changed by fine-tuning)",
            len(scores),
            trained.name,
            time.time() - start,
            n_changed,
        )

        return ClassificationResult(
            reference=trained.name,
            scores=scores,
            first_labels=initial,
            labels=final,
            delta_next=delta_next,
            markers=trained.markers,
            tuned=bool(cfg.fine_tune),
        )
