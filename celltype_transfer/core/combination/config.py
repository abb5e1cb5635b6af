"""Configuration for multi-reference combination.

Provides the CombinationConfig dataclass controlling:
- Parallel per-reference classification (joblib jobs and backend)
- Label qualification and harmonized-mode marker detection
- Per-reference pruning of the individual results
"""

from dataclasses import dataclass
from typing import Any, Dict
import logging

from ...errors import ConfigurationError

logger = logging.getLogger(__name__)

UNMAPPED_POLICIES = ("error", "drop", "keep")


@dataclass
class CombinationConfig:
    """Configuration for the multi-reference combiner.

    Attributes
    ----------
    n_jobs : int
        Parallel jobs for per-reference classification (1 = sequential)
    backend : str
        joblib backend ("loky", "threading", "multiprocessing")
    qualify_labels : bool
        Prefix combined labels with their reference name ("ref:label")
    consistent_markers : bool
        Detect markers consistently upregulated across all references
        (meaningful when labels are harmonized to a shared vocabulary)
    prune : bool
        Prune each per-reference result; the combined pruned label follows
        the winning reference
    unmapped : str
        Harmonization policy for labels absent from the mapping:
        "error", "drop" (remove samples) or "keep" (leave raw label)
    """

    n_jobs: int = 1
    backend: str = "loky"
    qualify_labels: bool = False
    consistent_markers: bool = False
    prune: bool = True
    unmapped: str = "error"

    def validate(self) -> None:
        """Raise ConfigurationError on invalid values."""
        if self.n_jobs == 0:
            raise ConfigurationError(
                message="n_jobs must be non-zero",
                expected="positive count or negative joblib convention",
                found=self.n_jobs,
            )
        if self.unmapped not in UNMAPPED_POLICIES:
            raise ConfigurationError(
                message="Unknown unmapped-label policy",
                expected=list(UNMAPPED_POLICIES),
                found=self.unmapped,
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CombinationConfig":
        """Create CombinationConfig from dictionary."""
        return cls(
            n_jobs=data.get("n_jobs", 1),
            backend=data.get("backend", "loky"),
            qualify_labels=data.get("qualify_labels", False),
            consistent_markers=data.get("consistent_markers", False),
            prune=data.get("prune", True),
            unmapped=data.get("unmapped", "error"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "n_jobs": self.n_jobs,
            "backend": self.backend,
            "qualify_labels": self.qualify_labels,
            "consistent_markers": self.consistent_markers,
            "prune": self.prune,
            "unmapped": self.unmapped,
        }
