"""Classification module for reference-based cell-type assignment.

Provides correlation scoring against labeled references with pairwise
marker detection and iterative fine-tuning.
"""

from .cache import ClassificationCache
from .config import ClassificationConfig, MARKER_METHODS
from .engine import ClassificationResult, ReferenceClassifier
from .markers import (
    MarkerSet,
    default_de_n,
    detect_markers,
    label_medians,
)
from .reference import Reference, label_index, shared_genes
from .scoring import (
    TrainedReference,
    aggregate_label_scores,
    fine_tune_cell,
    first_labels,
    score_cells,
)

__all__ = [
    # Engine
    "ReferenceClassifier",
    "ClassificationConfig",
    "ClassificationResult",
    "ClassificationCache",
    "MARKER_METHODS",
    # References
    "Reference",
    "label_index",
    "shared_genes",
    # Markers
    "MarkerSet",
    "default_de_n",
    "detect_markers",
    "label_medians",
    # Scoring
    "TrainedReference",
    "aggregate_label_scores",
    "fine_tune_cell",
    "first_labels",
    "score_cells",
]
