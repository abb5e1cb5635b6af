"""CellType-Transfer: Reference-based cell-type annotation for single-cell data.

This package provides tools for:
- Correlation-based classification against labeled references with
  marker-driven fine-tuning
- Confidence pruning of low-quality label assignments
- Combination of several references by recomputing comparable scores
- Mutual label matching between two references

Example usage:
    >>> from celltype_transfer.core.classification import Reference, ReferenceClassifier
    >>> from celltype_transfer.core.pruning import ConfidencePruner
    >>>
    >>> reference = Reference(name="blueprint", expression=ref_expr, labels=ref_labels)
    >>> result = ReferenceClassifier().classify(test_expr, reference)
    >>> pruned = ConfidencePruner().prune(result)
"""

__version__ = "0.1.0"
