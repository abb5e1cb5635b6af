"""Configuration for reference-based classification.

Provides dataclasses for configuring:
- Marker detection (method, number of genes per pairwise comparison)
- Correlation scoring (quantile aggregation)
- Fine-tuning (threshold, on/off)
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

from ...errors import ConfigurationError

logger = logging.getLogger(__name__)

MARKER_METHODS = ("classic", "wilcoxon", "t-test")


@dataclass
class ClassificationConfig:
    """Configuration for the correlation classifier.

    Attributes
    ----------
    marker_method : str
        Pairwise marker detection: "classic", "wilcoxon" or "t-test"
    de_n : int, optional
        Genes kept per pairwise comparison. None uses
        ``round(500 * (2/3) ** log2(n_labels))``
    quantile : float
        Quantile of per-sample correlations used as the label score
    fine_tune : bool
        Whether to run iterative fine-tuning on marker subsets
    tune_thresh : float
        Labels within this distance of the best score stay in contention
    min_common_genes : int
        Minimum shared genes between test and reference
    """

    marker_method: str = "classic"
    de_n: Optional[int] = None
    quantile: float = 0.8
    fine_tune: bool = True
    tune_thresh: float = 0.05
    min_common_genes: int = 1

    def validate(self) -> None:
        """Raise ConfigurationError on invalid values."""
        if self.marker_method not in MARKER_METHODS:
            raise ConfigurationError(
                message="Unknown marker detection method",
                expected=list(MARKER_METHODS),
                found=self.marker_method,
            )
        if self.de_n is not None and self.de_n < 1:
            raise ConfigurationError(
                message="de_n must be a positive integer",
                expected=">= 1",
                found=self.de_n,
            )
        if not 0.0 <= self.quantile <= 1.0:
            raise ConfigurationError(
                message="quantile must lie in [0, 1]",
                expected="0 <= quantile <= 1",
                found=self.quantile,
            )
        if self.tune_thresh < 0:
            raise ConfigurationError(
                message="tune_thresh must be non-negative",
                expected=">= 0",
                found=self.tune_thresh,
            )
        if self.min_common_genes < 1:
            raise ConfigurationError(
                message="min_common_genes must be at least 1",
                expected=">= 1",
                found=self.min_common_genes,
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassificationConfig":
        """Create ClassificationConfig from dictionary."""
        return cls(
            marker_method=data.get("marker_method", "classic"),
            de_n=data.get("de_n", None),
            quantile=data.get("quantile", 0.8),
            fine_tune=data.get("fine_tune", True),
            tune_thresh=data.get("tune_thresh", 0.05),
            min_common_genes=data.get("min_common_genes", 1),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "marker_method": self.marker_method,
            "de_n": self.de_n,
            "quantile": self.quantile,
            "fine_tune": self.fine_tune,
            "tune_thresh": self.tune_thresh,
            "min_common_genes": self.min_common_genes,
        }
