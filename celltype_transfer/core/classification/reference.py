"""Labeled reference datasets.

A reference is a genes x samples expression matrix plus one label per
sample. References are read-only inputs: every helper here returns a new
object.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import GeneOverlapError, ReferenceValidationError


@dataclass(frozen=True)
class Reference:
    """A labeled expression matrix.

    Attributes:
        name: Reference identifier (used for caching and in combined output)
        expression: Genes x samples matrix (non-negative, log-scale)
        labels: Per-sample labels indexed by the expression columns
    """

    name: str
    expression: pd.DataFrame
    labels: pd.Series

    def __post_init__(self):
        if self.expression.empty:
            raise ReferenceValidationError(
                message=f"Reference '{self.name}' has an empty expression matrix",
                found=self.expression.shape,
            )
        if len(self.labels) != self.expression.shape[1]:
            raise ReferenceValidationError(
                message=f"Reference '{self.name}' labels do not match its samples",
                expected=self.expression.shape[1],
                found=len(self.labels),
            )
        if self.labels.isna().any():
            raise ReferenceValidationError(
                message=f"Reference '{self.name}' has missing labels",
                found=int(self.labels.isna().sum()),
                suggestion="Drop unlabeled samples before building the reference.",
            )
        if not self.expression.index.is_unique:
            raise ReferenceValidationError(
                message=f"Reference '{self.name}' has duplicated gene identifiers",
                found=self.expression.index[self.expression.index.duplicated()].tolist()[:5],
            )
        # Align labels to the sample order of the expression matrix; labels
        # without matching sample names are taken positionally
        labels = self.labels
        if labels.index.is_unique and labels.index.isin(self.expression.columns).all():
            labels = labels.reindex(self.expression.columns)
        labels = pd.Series(
            labels.astype(str).to_numpy(),
            index=self.expression.columns,
            name="label",
        )
        object.__setattr__(self, "labels", labels)

    @property
    def genes(self) -> pd.Index:
        return self.expression.index

    @property
    def vocabulary(self) -> List[str]:
        """Sorted unique labels."""
        return sorted(self.labels.unique())

    @property
    def n_samples(self) -> int:
        return self.expression.shape[1]

    def label_counts(self) -> pd.Series:
        return self.labels.value_counts().sort_index()

    def samples_for(self, label: str) -> pd.Index:
        return self.labels.index[self.labels == label]

    def with_labels(self, labels: pd.Series, name: Optional[str] = None) -> "Reference":
        """Return a copy of this reference with replaced labels."""
        return Reference(
            name=name or self.name,
            expression=self.expression,
            labels=labels,
        )

    def subset_samples(self, samples: Sequence[str]) -> "Reference":
        samples = list(samples)
        return Reference(
            name=self.name,
            expression=self.expression.loc[:, samples],
            labels=self.labels.loc[samples],
        )

    @classmethod
    def from_anndata(
        cls,
        adata: "anndata.AnnData",
        label_key: str,
        name: str,
        layer: Optional[str] = None,
    ) -> "Reference":
        """Build a reference from a cells x genes AnnData.

        Args:
            adata: AnnData with sample labels in obs[label_key]
            label_key: Column of adata.obs holding labels
            name: Reference identifier
            layer: Layer to use (None = adata.X)
        """
        if label_key not in adata.obs.columns:
            raise ReferenceValidationError(
                message=f"Label column not found in reference '{name}'",
                expected=label_key,
                found=list(adata.obs.columns),
            )
        matrix = adata.layers[layer] if layer else adata.X
        if sparse.issparse(matrix):
            matrix = matrix.toarray()
        expression = pd.DataFrame(
            np.asarray(matrix, dtype=float).T,
            index=pd.Index(adata.var_names.astype(str)),
            columns=pd.Index(adata.obs_names.astype(str)),
        )
        labels = adata.obs[label_key].astype(str)
        labels.index = expression.columns
        return cls(name=name, expression=expression, labels=labels)


def shared_genes(test_genes: Sequence[str], *references: Reference) -> List[str]:
    """Genes present in the test and every reference, in test order.

    Raises:
        GeneOverlapError: If no gene is shared
    """
    common = pd.Index(test_genes)
    for ref in references:
        common = common[common.isin(ref.genes)]
    if len(common) == 0:
        names = [ref.name for ref in references]
        raise GeneOverlapError(
            message=f"No genes shared between test data and reference(s) {names}",
            expected="at least one shared gene",
            found=0,
        )
    return list(common)


def label_index(reference: Reference) -> Dict[str, np.ndarray]:
    """Map each label to the integer positions of its samples."""
    codes = reference.labels.to_numpy()
    return {label: np.flatnonzero(codes == label) for label in reference.vocabulary}
