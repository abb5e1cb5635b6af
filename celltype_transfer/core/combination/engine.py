"""Multi-reference combination engine.

Classifies the test data against several references independently, then
recomputes, for every cell, one score per reference on the union of the
markers of the labels each reference assigned. Scores computed over the
same genes are comparable, so the best-scoring (reference, label) pair
wins. Ties go to the earliest reference in declared order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ...errors import ConfigurationError, GeneOverlapError, LabelMismatchError, MissingMarkersError
from ...utils.stats import standardized_ranks
from ..classification.cache import ClassificationCache
from ..classification.config import ClassificationConfig
from ..classification.engine import ClassificationResult
from ..classification.markers import MarkerSet
from ..classification.reference import Reference, shared_genes
from ..classification.scoring import TrainedReference
from ..pruning.config import PruningConfig
from ..pruning.engine import ConfidencePruner, PruningResult
from .config import CombinationConfig
from .harmonize import find_consistent_markers, harmonize_reference, harmonized_cache_name
from .parallel import run_reference_classifications


@dataclass(frozen=True)
class CombinedResult:
    """Per-cell combination of several reference classifications.

    Attributes:
        labels: Winning label per cell
        reference: Winning reference name per cell
        scores: Cells x labels recomputed scores; NaN (absent) wherever no
            reference assigned that label to the cell
        reference_scores: Cells x references recomputed score of each
            reference's own assignment
        per_reference: Reference name -> individual ClassificationResult
        reference_order: Declared reference order (tie-break order)
        pruned_labels: Winning reference's pruned label per cell, if pruned
        per_reference_pruning: Reference name -> PruningResult
    """

    labels: pd.Series
    reference: pd.Series
    scores: pd.DataFrame
    reference_scores: pd.DataFrame
    per_reference: Dict[str, ClassificationResult]
    reference_order: Tuple[str, ...]
    pruned_labels: Optional[pd.Series] = None
    per_reference_pruning: Dict[str, PruningResult] = field(default_factory=dict)

    def score_for(self, cell: str, label: str) -> Optional[float]:
        """Recomputed score for a (cell, label) pair, or None when absent."""
        if label not in self.scores.columns or cell not in self.scores.index:
            return None
        value = self.scores.at[cell, label]
        if pd.isna(value):
            return None
        return float(value)

    def to_frame(self) -> pd.DataFrame:
        """Per-cell table with the winner and each reference's assignment."""
        frame = pd.DataFrame(
            {
                "label": self.labels,
                "reference": self.reference,
                "score": [
                    self.reference_scores.at[cell, ref]
                    for cell, ref in zip(self.reference.index, self.reference.to_numpy())
                ],
            }
        )
        if self.pruned_labels is not None:
            frame["pruned_label"] = self.pruned_labels
        for name in self.reference_order:
            sub = self.per_reference[name]
            frame[f"{name}.label"] = sub.labels.reindex(frame.index)
            frame[f"{name}.score"] = self.reference_scores[name]
            frame[f"{name}.delta_next"] = sub.delta_next.reindex(frame.index)
        return frame


def _qualified(reference: str, label: str, qualify: bool) -> str:
    return f"{reference}:{label}" if qualify else label


def combine_recomputed_results(
    test: pd.DataFrame,
    results: Sequence[ClassificationResult],
    trained: Sequence[TrainedReference],
    quantile: float = 0.8,
    qualify_labels: bool = False,
    pruning: Optional[Mapping[str, PruningResult]] = None,
    unknown_label: str = "Unknown",
    logger: Optional[logging.Logger] = None,
) -> CombinedResult:
    """Pick the best reference per cell from recomputed, comparable scores.

    Args:
        test: Test expression, genes x cells
        results: One ClassificationResult per reference, in declared order
        trained: Matching TrainedReference objects
        quantile: Quantile of per-sample correlations per label
        qualify_labels: Use "reference:label" as combined labels
        pruning: Optional PruningResult per reference name
        unknown_label: Marker for pruned cells in the combined output
        logger: Optional logger instance

    Returns:
        CombinedResult

    Raises:
        MissingMarkersError: If an assigned label has no marker genes
        GeneOverlapError: If a cell's marker union shares no gene with every
            reference and the test data
    """
    if logger is None:
        logger = logging.getLogger(__name__)
    if not results:
        raise ConfigurationError(message="At least one reference result is required", found=0)
    if len(results) != len(trained):
        raise ConfigurationError(
            message="Results and trained references differ in length",
            expected=len(results),
            found=len(trained),
        )

    names = [r.reference for r in results]
    if len(set(names)) != len(names):
        raise ConfigurationError(
            message="Reference names must be unique",
            found=names,
        )

    cells = pd.Index(test.columns.astype(str), name="cell_id")
    assigned = np.empty((len(cells), len(results)), dtype=object)
    for j, res in enumerate(results):
        labels = res.labels
        if not labels.index.isin(cells).all() or len(labels) != len(cells):
            raise LabelMismatchError(
                message=f"Result for '{res.reference}' does not cover the test cells",
                expected=len(cells),
                found=len(labels),
            )
        assigned[:, j] = labels.reindex(cells).to_numpy()

    common = shared_genes(test.index, *(t.reference for t in trained))
    common_set = set(common)
    test_matrix = test.loc[common].to_numpy(dtype=float)
    test_row = {g: i for i, g in enumerate(common)}

    marker_cache: Dict[Tuple[int, str], Tuple[str, ...]] = {}

    def label_markers(j: int, label: str) -> Tuple[str, ...]:
        key = (j, label)
        if key not in marker_cache:
            genes = trained[j].markers.for_label(label)
            if not genes:
                raise MissingMarkersError(
                    message=f"Label '{label}' of reference '{names[j]}' has no marker genes",
                    expected="at least one marker gene",
                    found=0,
                    suggestion="Recompute markers or supply a marker set covering every label.",
                )
            marker_cache[key] = genes
        return marker_cache[key]

    recomputed = np.full((len(cells), len(results)), np.nan, dtype=float)

    # Cells sharing the same assignments share the same gene union
    groups: Dict[Tuple[str, ...], List[int]] = {}
    for i in range(len(cells)):
        groups.setdefault(tuple(assigned[i]), []).append(i)

    for combo, members in groups.items():
        union: Dict[str, None] = {}
        for j, label in enumerate(combo):
            for gene in label_markers(j, label):
                if gene in common_set:
                    union.setdefault(gene, None)
        genes = list(union)
        if not genes:
            raise GeneOverlapError(
                message=f"Marker union for assignment {combo} has no gene shared by all references",
                expected="at least one shared marker gene",
                found=0,
            )
        members_idx = np.asarray(members)
        cell_ranks = standardized_ranks(
            test_matrix[np.ix_([test_row[g] for g in genes], members_idx)]
        )
        for j, label in enumerate(combo):
            ref = trained[j]
            rows = ref.rows(genes)
            sample_ranks = standardized_ranks(ref.matrix[np.ix_(rows, ref.label_samples[label])])
            correlations = cell_ranks.T @ sample_ranks
            recomputed[members_idx, j] = np.quantile(correlations, quantile, axis=1)

    # np.argmax returns the first maximum: ties go to the earliest reference
    winners = np.argmax(recomputed, axis=1)

    win_labels = [
        _qualified(names[w], assigned[i, w], qualify_labels) for i, w in enumerate(winners)
    ]
    columns: Dict[str, None] = {}
    for j, name in enumerate(names):
        for label in sorted(set(assigned[:, j])):
            columns.setdefault(_qualified(name, label, qualify_labels), None)
    score_table = pd.DataFrame(np.nan, index=cells, columns=list(columns), dtype=float)
    col_pos = {c: k for k, c in enumerate(score_table.columns)}
    values = score_table.to_numpy(copy=True)
    for i in range(len(cells)):
        for j, name in enumerate(names):
            k = col_pos[_qualified(name, assigned[i, j], qualify_labels)]
            current = values[i, k]
            if np.isnan(current) or recomputed[i, j] > current:
                values[i, k] = recomputed[i, j]
    score_table = pd.DataFrame(values, index=cells, columns=score_table.columns)
    score_table.columns.name = "label"

    pruned_labels = None
    if pruning:
        missing = [n for n in names if n not in pruning]
        if missing:
            raise ConfigurationError(
                message="Pruning results missing for some references",
                expected=names,
                found=sorted(pruning),
            )
        flags = np.column_stack([
            pruning[name].pruned.reindex(cells).fillna(False).to_numpy(dtype=bool)
            for name in names
        ])
        pruned = [
            unknown_label if flags[i, w] else win_labels[i] for i, w in enumerate(winners)
        ]
        pruned_labels = pd.Series(pruned, index=cells, name="pruned_label")

    counts = pd.Series(np.asarray(names)[winners]).value_counts()
    logger.info(
        "Combined %d cells across %d references: %s",
        len(cells),
        len(names),
        ", ".join(f"{n}={int(counts.get(n, 0))}" for n in names),
    )

    return CombinedResult(
        labels=pd.Series(win_labels, index=cells, name="label"),
        reference=pd.Series(np.asarray(names)[winners], index=cells, name="reference"),
        scores=score_table,
        reference_scores=pd.DataFrame(recomputed, index=cells, columns=names),
        per_reference={r.reference: r for r in results},
        reference_order=tuple(names),
        pruned_labels=pruned_labels,
        per_reference_pruning=dict(pruning or {}),
    )


class MultiReferenceCombiner:
    """Annotate against several references and combine per cell.

    The combiner:
    1. Optionally harmonizes reference labels to a shared vocabulary
    2. Classifies the test data against each reference (in parallel)
    3. Optionally prunes each individual result
    4. Recomputes comparable scores on per-cell marker unions and picks
       the winner

    Example:
        >>> combiner = MultiReferenceCombiner(CombinationConfig(n_jobs=2))
        >>> combined = combiner.run(test, [ref_a, ref_b])
        >>> combined.reference.value_counts()
    """

    def __init__(
        self,
        config: Optional[CombinationConfig] = None,
        classification: Optional[ClassificationConfig] = None,
        pruning: Optional[PruningConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or CombinationConfig()
        self.config.validate()
        self.classification = classification or ClassificationConfig()
        self.classification.validate()
        self.pruning = pruning or PruningConfig()
        self.pruning.validate()
        self.logger = logger or logging.getLogger(__name__)

    def prepare_references(
        self,
        references: Sequence[Reference],
        label_maps: Optional[Mapping[str, Mapping[str, str]]] = None,
    ) -> List[Reference]:
        """Harmonize labels of references that have a mapping."""
        if not label_maps:
            return list(references)
        prepared = []
        for ref in references:
            mapping = label_maps.get(ref.name)
            if mapping is None:
                prepared.append(ref)
            else:
                prepared.append(harmonize_reference(ref, mapping, unmapped=self.config.unmapped))
        return prepared

    def run(
        self,
        test: pd.DataFrame,
        references: Sequence[Reference],
        markers: Optional[Dict[str, MarkerSet]] = None,
        label_maps: Optional[Mapping[str, Mapping[str, str]]] = None,
        test_id: Optional[str] = None,
        cache: Optional[ClassificationCache] = None,
    ) -> CombinedResult:
        """Run the full multi-reference annotation.

        Args:
            test: Test expression, genes x cells
            references: References in declared (tie-break) order
            markers: Precomputed markers per reference name
            label_maps: Reference name -> {raw label: shared term}
            test_id: Test dataset identifier for cache lookups
            cache: Optional ClassificationCache

        Returns:
            CombinedResult
        """
        cfg = self.config
        self.logger.info("=" * 70)
        self.logger.info("MULTI-REFERENCE COMBINATION")
        self.logger.info("=" * 70)
        self.logger.info("References: %s", [r.name for r in references])
        self.logger.info("Test: %d genes x %d cells", test.shape[0], test.shape[1])

        if not references:
            raise ConfigurationError(message="At least one reference is required", found=0)

        self.logger.info("Phase 1: Preparing references...")
        prepared = self.prepare_references(references, label_maps)
        label_maps = label_maps or {}
        cache_names = [
            harmonized_cache_name(ref.name, label_maps[ref.name], cfg.unmapped)
            if ref.name in label_maps
            else ref.name
            for ref in references
        ]

        if cfg.consistent_markers and markers is None:
            self.logger.info("  Detecting markers consistent across references")
            common = shared_genes(test.index, *prepared)
            markers = find_consistent_markers(prepared, genes=common, de_n=self.classification.de_n)

        self.logger.info("Phase 2: Classifying against each reference...")
        runs = run_reference_classifications(
            test,
            prepared,
            self.classification,
            markers=markers,
            n_jobs=cfg.n_jobs,
            backend=cfg.backend,
            cache=cache,
            test_id=test_id,
            cache_names=cache_names,
        )

        pruning = None
        if cfg.prune:
            self.logger.info("Phase 3: Pruning individual results...")
            pruner = ConfidencePruner(self.pruning, logger=self.logger)
            pruning = {}
            for run in runs:
                if len(run.result.vocabulary) < 2:
                    self.logger.warning(
                        "  Skipping pruning for '%s': single-label reference", run.reference
                    )
                    pruning = None
                    break
                pruning[run.reference] = pruner.prune(run.result)

        self.logger.info("Phase 4: Recomputing scores on marker unions...")
        return combine_recomputed_results(
            test,
            [run.result for run in runs],
            [run.trained for run in runs],
            quantile=self.classification.quantile,
            qualify_labels=cfg.qualify_labels,
            pruning=pruning,
            unknown_label=self.pruning.unknown_label,
            logger=self.logger,
        )
