"""Label harmonization across references.

References annotated with different vocabularies can be mapped to shared
terms (e.g. ontology IDs) before combination. Once harmonized, markers
can be chosen for consistency across references instead of within one.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from ...errors import ConfigurationError, GeneOverlapError
from ..classification.markers import MarkerSet, PairwiseMarkers, default_de_n, label_medians
from ..classification.reference import Reference

logger = logging.getLogger(__name__)


def harmonize_reference(
    reference: Reference,
    mapping: Mapping[str, str],
    unmapped: str = "error",
) -> Reference:
    """Replace raw labels with shared terms.

    Args:
        reference: Reference with raw labels
        mapping: Raw label -> shared term
        unmapped: "error", "drop" (remove samples) or "keep" (leave raw label)

    Returns:
        New Reference with harmonized labels
    """
    raw = reference.labels
    missing = sorted(set(raw) - set(mapping))
    if missing and unmapped == "error":
        raise ConfigurationError(
            message=f"Labels of '{reference.name}' missing from the harmonization mapping",
            expected="a term for every label",
            found=missing,
            suggestion="Extend the mapping or set combination.unmapped to 'drop' or 'keep'.",
        )
    if missing:
        logger.warning(
            "Reference '%s': %d unmapped label(s) %s (%s)",
            reference.name, len(missing), missing, unmapped,
        )

    if unmapped == "drop":
        keep = raw.index[raw.isin(list(mapping))]
        if len(keep) == 0:
            raise ConfigurationError(
                message=f"No sample of '{reference.name}' survives harmonization",
                found=sorted(set(raw)),
            )
        reference = reference.subset_samples(keep)
        raw = reference.labels

    harmonized = raw.map(lambda label: mapping.get(label, label))
    logger.info(
        "Harmonized '%s': %d raw labels -> %d terms",
        reference.name, raw.nunique(), harmonized.nunique(),
    )
    return reference.with_labels(harmonized)


def harmonized_cache_name(name: str, mapping: Mapping[str, str], unmapped: str = "error") -> str:
    """Cache name of a reference after harmonization.

    The digest covers the mapping and unmapped policy, so results classified
    against raw labels are never served for harmonized ones.
    """
    items = sorted((str(k), str(v)) for k, v in mapping.items())
    digest = hashlib.md5(repr((items, unmapped)).encode()).hexdigest()[:10]
    return f"{name}@harmonized-{digest}"


def _common_genes(references: Sequence[Reference]) -> List[str]:
    genes = pd.Index(references[0].genes)
    for ref in references[1:]:
        genes = genes[genes.isin(ref.genes)]
    if len(genes) == 0:
        raise GeneOverlapError(
            message="References share no genes",
            expected="at least one shared gene",
            found=0,
        )
    return list(genes)


def find_consistent_markers(
    references: Sequence[Reference],
    genes: Optional[Sequence[str]] = None,
    de_n: Optional[int] = None,
) -> Dict[str, MarkerSet]:
    """Markers upregulated for a label pair in every reference holding both.

    For each ordered pair (a, b) the per-reference median differences are
    combined by their minimum (the worst case); genes with a positive
    worst-case difference are ranked by it and the top ``de_n`` kept.

    Args:
        references: References sharing a (harmonized) label vocabulary
        genes: Genes to consider (default: genes common to all references)
        de_n: Genes per pair (default: shrinks with the union vocabulary size)

    Returns:
        Reference name -> MarkerSet restricted to that reference's labels
    """
    if not references:
        return {}
    genes = _common_genes(references) if genes is None else list(genes)
    vocab = sorted(set().union(*(ref.vocabulary for ref in references)))
    if de_n is None:
        de_n = default_de_n(len(vocab))

    medians = [label_medians(ref, genes) for ref in references]
    consensus: PairwiseMarkers = {}
    for a in vocab:
        consensus[a] = {}
        for b in vocab:
            if a == b:
                continue
            diffs = [m[a] - m[b] for m in medians if a in m.columns and b in m.columns]
            if not diffs:
                continue
            worst = pd.Series(np.min(np.vstack([d.to_numpy() for d in diffs]), axis=0), index=genes)
            positive = worst[worst > 0].sort_values(ascending=False, kind="mergesort")
            consensus[a][b] = tuple(str(g) for g in positive.index[:de_n])

    result: Dict[str, MarkerSet] = {}
    for ref in references:
        labels = set(ref.vocabulary)
        pairwise = {
            a: {b: genes_ab for b, genes_ab in consensus[a].items() if b in labels}
            for a in ref.vocabulary
        }
        result[ref.name] = MarkerSet(reference=ref.name, pairwise=pairwise, method="consistent")

    logger.info(
        "Consistent markers over %d references: %d labels, de_n=%d",
        len(references), len(vocab), de_n,
    )
    return result
