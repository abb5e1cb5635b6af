"""Pairwise marker detection for reference labels.

Markers are stored pairwise: for every ordered pair of labels (a, b) the
genes upregulated in a relative to b. Fine-tuning uses the markers among
the labels still in contention; score recomputation across references uses
the union of a label's markers against every other label.

Supported methods:
- classic: difference of per-label medians, top ``de_n`` positive genes
- wilcoxon / t-test: scanpy ``rank_genes_groups`` with one label as reference
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ...errors import ConfigurationError
from .reference import Reference, label_index

PairwiseMarkers = Dict[str, Dict[str, Tuple[str, ...]]]


@dataclass(frozen=True)
class MarkerSet:
    """Pairwise marker genes for one reference.

    Attributes:
        reference: Name of the reference the markers were derived from
        pairwise: label -> other label -> genes up in label vs other label
        method: Detection method that produced the markers
    """

    reference: str
    pairwise: PairwiseMarkers = field(default_factory=dict)
    method: str = "classic"

    @property
    def labels(self) -> List[str]:
        return sorted(self.pairwise)

    def for_label(self, label: str) -> Tuple[str, ...]:
        """Union of the genes up in ``label`` against every other label."""
        genes: Dict[str, None] = {}
        for other in sorted(self.pairwise.get(label, {})):
            for gene in self.pairwise[label][other]:
                genes.setdefault(gene, None)
        return tuple(genes)

    def between(self, labels: Iterable[str]) -> Tuple[str, ...]:
        """Union of pairwise markers among a subset of labels."""
        subset = sorted(set(labels))
        genes: Dict[str, None] = {}
        for a in subset:
            for b in subset:
                if a == b:
                    continue
                for gene in self.pairwise.get(a, {}).get(b, ()):
                    genes.setdefault(gene, None)
        return tuple(genes)

    def all_genes(self) -> Tuple[str, ...]:
        return self.between(self.pairwise)

    def restrict(self, genes: Iterable[str]) -> "MarkerSet":
        """Drop genes outside ``genes`` from every pairwise list."""
        keep = set(genes)
        pairwise = {
            a: {b: tuple(g for g in markers if g in keep) for b, markers in others.items()}
            for a, others in self.pairwise.items()
        }
        return MarkerSet(reference=self.reference, pairwise=pairwise, method=self.method)

    def to_frame(self) -> pd.DataFrame:
        """Long table with one row per (label, other_label, gene, rank)."""
        rows = []
        for a in sorted(self.pairwise):
            for b in sorted(self.pairwise[a]):
                for rank, gene in enumerate(self.pairwise[a][b], start=1):
                    rows.append({
                        "reference": self.reference,
                        "label": a,
                        "other_label": b,
                        "gene": gene,
                        "rank": rank,
                    })
        return pd.DataFrame(
            rows, columns=["reference", "label", "other_label", "gene", "rank"]
        )

    @classmethod
    def from_mapping(
        cls,
        reference: str,
        markers: Mapping[str, object],
        method: str = "custom",
    ) -> "MarkerSet":
        """Build a MarkerSet from user-supplied markers.

        Accepts either pairwise ``{label: {other: [genes]}}`` or flat
        ``{label: [genes]}`` input; flat markers are used against every other
        label.
        """
        labels = sorted(markers)
        pairwise: PairwiseMarkers = {}
        for a in labels:
            value = markers[a]
            if isinstance(value, Mapping):
                pairwise[a] = {str(b): tuple(value[b]) for b in value}
            else:
                genes = tuple(value)
                pairwise[a] = {b: genes for b in labels if b != a}
        return cls(reference=reference, pairwise=pairwise, method=method)


def default_de_n(n_labels: int) -> int:
    """Number of markers per pairwise comparison, shrinking with label count."""
    if n_labels < 2:
        return 0
    return max(1, int(round(500 * (2.0 / 3.0) ** np.log2(n_labels))))


def label_medians(reference: Reference, genes: Sequence[str]) -> pd.DataFrame:
    """Per-label median expression, genes x labels."""
    matrix = reference.expression.loc[list(genes)].to_numpy(dtype=float)
    medians = {
        label: np.median(matrix[:, idx], axis=1)
        for label, idx in label_index(reference).items()
    }
    return pd.DataFrame(medians, index=pd.Index(list(genes)))


def _top_positive(diff: pd.Series, n: int) -> Tuple[str, ...]:
    """Top ``n`` genes with a positive difference, stable in gene order."""
    positive = diff[diff > 0]
    ordered = positive.sort_values(ascending=False, kind="mergesort")
    return tuple(str(g) for g in ordered.index[:n])


def _classic_markers(
    reference: Reference,
    genes: Sequence[str],
    de_n: int,
) -> PairwiseMarkers:
    medians = label_medians(reference, genes)
    labels = list(medians.columns)
    pairwise: PairwiseMarkers = {}
    for a in labels:
        pairwise[a] = {}
        for b in labels:
            if a == b:
                continue
            pairwise[a][b] = _top_positive(medians[a] - medians[b], de_n)
    return pairwise


def _scanpy_markers(
    reference: Reference,
    genes: Sequence[str],
    de_n: int,
    method: str,
    logger: logging.Logger,
) -> PairwiseMarkers:
    import anndata as ad
    import scanpy as sc

    genes = list(genes)
    adata = ad.AnnData(
        X=reference.expression.loc[genes].to_numpy(dtype=np.float32).T,
        obs=pd.DataFrame(
            {"label": pd.Categorical(reference.labels.to_numpy())},
            index=pd.Index(reference.expression.columns.astype(str)),
        ),
        var=pd.DataFrame(index=pd.Index(genes)),
    )
    labels = reference.vocabulary
    pairwise: PairwiseMarkers = {}
    for b in labels:
        others = [a for a in labels if a != b]
        if not others:
            continue
        sc.tl.rank_genes_groups(
            adata,
            groupby="label",
            groups=others,
            reference=b,
            method=method,
            n_genes=len(genes),
            key_added="pairwise",
        )
        for a in others:
            df = sc.get.rank_genes_groups_df(adata, group=a, key="pairwise")
            df = df[df["scores"] > 0].sort_values("scores", ascending=False, kind="mergesort")
            pairwise.setdefault(a, {})[b] = tuple(str(g) for g in df["names"].head(de_n))
        logger.debug("Ranked %d labels against '%s' (%s)", len(others), b, method)
    for a in labels:
        pairwise.setdefault(a, {})
    return pairwise


def detect_markers(
    reference: Reference,
    genes: Optional[Sequence[str]] = None,
    method: str = "classic",
    de_n: Optional[int] = None,
    logger: Optional[logging.Logger] = None,
) -> MarkerSet:
    """Detect pairwise markers for every label of a reference.

    Args:
        reference: Labeled reference
        genes: Genes to consider (default: all reference genes)
        method: "classic", "wilcoxon" or "t-test"
        de_n: Genes per pairwise comparison (default: shrinks with label count)
        logger: Optional logger instance

    Returns:
        MarkerSet with one entry per label
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    genes = list(reference.genes) if genes is None else list(genes)
    n_labels = len(reference.vocabulary)
    if de_n is None:
        de_n = default_de_n(n_labels)

    if method == "classic":
        pairwise = _classic_markers(reference, genes, de_n)
    elif method in ("wilcoxon", "t-test"):
        pairwise = _scanpy_markers(reference, genes, de_n, method, logger)
    else:
        raise ConfigurationError(
            message="Unknown marker detection method",
            expected=["classic", "wilcoxon", "t-test"],
            found=method,
        )

    markers = MarkerSet(reference=reference.name, pairwise=pairwise, method=method)
    logger.info(
        "Detected markers for '%s': %d labels, de_n=%d, %d unique genes (%s)",
        reference.name,
        n_labels,
        de_n,
        len(markers.all_genes()),
        method,
    )
    return markers
