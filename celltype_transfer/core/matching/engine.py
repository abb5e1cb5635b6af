"""Mutual label matching between two references.

Each reference is used to classify the other's samples. The fraction of
samples with label ``a`` in A assigned ``b`` by B (and vice versa) shows
which labels correspond. The product of the two directions is near 1 for
a clean 1:1 match; rows or columns near zero throughout point to labels
unique to one reference. This is a diagnostic aid, not a harmonizer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pandas as pd

from ...errors import ConfigurationError
from ..classification.config import ClassificationConfig
from ..classification.engine import ReferenceClassifier
from ..classification.reference import Reference, shared_genes


@dataclass
class MatchingConfig:
    """Settings for reference matching.

    Attributes
    ----------
    fine_tune : bool
        Fine-tune cross-classification (slower, sharper matches)
    min_prob : float
        Default mutual probability for reporting a pair as a match
    max_prob : float
        Labels whose best mutual probability stays below this are unique
    """

    fine_tune: bool = True
    min_prob: float = 0.5
    max_prob: float = 0.1

    def validate(self) -> None:
        """Raise ConfigurationError on invalid values."""
        for name in ("min_prob", "max_prob"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(
                    message=f"{name} must be a probability",
                    expected="0 <= value <= 1",
                    found=value,
                )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MatchingConfig":
        """Create MatchingConfig from dictionary."""
        return cls(
            fine_tune=data.get("fine_tune", True),
            min_prob=data.get("min_prob", 0.5),
            max_prob=data.get("max_prob", 0.1),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fine_tune": self.fine_tune,
            "min_prob": self.min_prob,
            "max_prob": self.max_prob,
        }


@dataclass(frozen=True)
class MatchResult:
    """Mutual assignment probabilities between two vocabularies.

    Attributes:
        name_a: Name of reference A
        name_b: Name of reference B
        a_to_b: A-labels x B-labels, P(assigned b by B | labeled a in A)
        b_to_a: B-labels x A-labels, P(assigned a by A | labeled b in B)
        mutual: A-labels x B-labels, product of both directions
    """

    name_a: str
    name_b: str
    a_to_b: pd.DataFrame
    b_to_a: pd.DataFrame
    mutual: pd.DataFrame

    def best_matches(self, min_prob: float = 0.5) -> pd.DataFrame:
        """Pairs whose mutual probability reaches ``min_prob``, best first."""
        long = self.mutual.stack().rename("mutual").reset_index()
        long.columns = [self.name_a, self.name_b, "mutual"]
        long = long[long["mutual"] >= min_prob]
        return long.sort_values("mutual", ascending=False, kind="mergesort").reset_index(drop=True)

    def unique_labels(self, max_prob: float = 0.1) -> Dict[str, List[str]]:
        """Labels with no counterpart (all mutual probabilities below ``max_prob``)."""
        return {
            self.name_a: [a for a in self.mutual.index if (self.mutual.loc[a] < max_prob).all()],
            self.name_b: [b for b in self.mutual.columns if (self.mutual[b] < max_prob).all()],
        }


def _assignment_probabilities(
    true_labels: pd.Series,
    assigned: pd.Series,
    rows: List[str],
    columns: List[str],
) -> pd.DataFrame:
    pairs = pd.DataFrame({
        "true": true_labels.to_numpy(),
        "assigned": assigned.reindex(true_labels.index).to_numpy(),
    })
    table = pairs.groupby(["true", "assigned"]).size().unstack(fill_value=0)
    table = table.reindex(index=rows, columns=columns, fill_value=0)
    totals = table.sum(axis=1).replace(0, 1)
    probs = table.div(totals, axis=0).astype(float)
    probs.index.name = None
    probs.columns.name = None
    return probs


def match_references(
    ref_a: Reference,
    ref_b: Reference,
    config: Optional[MatchingConfig] = None,
    classification: Optional[ClassificationConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> MatchResult:
    """Cross-classify two references and tabulate label correspondences.

    Args:
        ref_a: First reference
        ref_b: Second reference
        config: Matching settings
        classification: Classifier settings (fine_tune is taken from config)
        logger: Optional logger instance

    Returns:
        MatchResult

    Raises:
        ConfigurationError: If the settings are invalid or the names are equal
    """
    config = config or MatchingConfig()
    config.validate()
    if ref_a.name == ref_b.name:
        raise ConfigurationError(
            message="References to match must have distinct names",
            expected="two different reference names",
            found=ref_a.name,
            suggestion="Rename one reference, e.g. after its source directory.",
        )
    logger = logger or logging.getLogger(__name__)
    base = classification or ClassificationConfig()
    cls_config = ClassificationConfig(**{**base.to_dict(), "fine_tune": config.fine_tune})
    classifier = ReferenceClassifier(cls_config, logger=logger)

    genes = shared_genes(ref_a.genes, ref_b)
    logger.info(
        "Matching '%s' (%d labels) with '%s' (%d labels) on %d genes",
        ref_a.name, len(ref_a.vocabulary), ref_b.name, len(ref_b.vocabulary), len(genes),
    )

    b_on_a = classifier.classify(ref_b.expression.loc[genes], ref_a)
    a_on_b = classifier.classify(ref_a.expression.loc[genes], ref_b)

    a_labels = ref_a.labels.copy()
    a_labels.index = a_labels.index.astype(str)
    b_labels = ref_b.labels.copy()
    b_labels.index = b_labels.index.astype(str)

    a_to_b = _assignment_probabilities(a_labels, a_on_b.labels, ref_a.vocabulary, ref_b.vocabulary)
    b_to_a = _assignment_probabilities(b_labels, b_on_a.labels, ref_b.vocabulary, ref_a.vocabulary)
    mutual = a_to_b * b_to_a.T

    return MatchResult(
        name_a=ref_a.name,
        name_b=ref_b.name,
        a_to_b=a_to_b,
        b_to_a=b_to_a,
        mutual=mutual,
    )
