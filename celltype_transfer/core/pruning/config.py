"""Configuration for confidence pruning.

Provides the PruningConfig dataclass controlling:
- Outlier detection (MAD multiple, minimum group size, small-group policy)
- Fixed thresholds on the delta from the median and the tuning gap
- The marker written in place of pruned labels
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

from ...errors import ConfigurationError

logger = logging.getLogger(__name__)

PRUNING_MODES = ("outlier", "threshold")
SMALL_GROUP_POLICIES = ("skip", "widen", "error")


@dataclass
class PruningConfig:
    """Configuration for the confidence pruner.

    Attributes
    ----------
    mode : str
        "outlier" (per-label MAD test) or "threshold" (fixed cut-offs only)
    nmads : float
        Scaled MADs below the label median that flag a delta as an outlier
    min_group_size : int
        Label groups smaller than this follow ``small_group_policy``
    small_group_policy : str
        "skip" (no pruning in the group), "widen" (multiply nmads by
        ``small_group_widen``) or "error" (raise SmallGroupError)
    small_group_widen : float
        Multiplier applied to nmads for small groups under "widen"
    min_diff_med : float, optional
        Prune cells whose delta from the median is below this value
    min_diff_next : float, optional
        Prune cells whose best-minus-second tuning gap is below this value
    unknown_label : str
        Label written for pruned cells
    """

    mode: str = "outlier"
    nmads: float = 3.0
    min_group_size: int = 20
    small_group_policy: str = "skip"
    small_group_widen: float = 2.0
    min_diff_med: Optional[float] = None
    min_diff_next: Optional[float] = None
    unknown_label: str = "Unknown"

    def validate(self) -> None:
        """Raise ConfigurationError on invalid values."""
        if self.mode not in PRUNING_MODES:
            raise ConfigurationError(
                message="Unknown pruning mode",
                expected=list(PRUNING_MODES),
                found=self.mode,
            )
        if self.small_group_policy not in SMALL_GROUP_POLICIES:
            raise ConfigurationError(
                message="Unknown small-group policy",
                expected=list(SMALL_GROUP_POLICIES),
                found=self.small_group_policy,
            )
        if self.nmads <= 0:
            raise ConfigurationError(
                message="nmads must be positive", expected="> 0", found=self.nmads
            )
        if self.small_group_widen < 1:
            raise ConfigurationError(
                message="small_group_widen must be at least 1",
                expected=">= 1",
                found=self.small_group_widen,
            )
        if self.min_group_size < 1:
            raise ConfigurationError(
                message="min_group_size must be at least 1",
                expected=">= 1",
                found=self.min_group_size,
            )
        if self.mode == "threshold" and self.min_diff_med is None and self.min_diff_next is None:
            raise ConfigurationError(
                message="Threshold mode needs min_diff_med or min_diff_next",
                expected="at least one threshold",
                found=None,
                suggestion="Set pruning.min_diff_med (e.g. 0.05) or use mode 'outlier'.",
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PruningConfig":
        """Create PruningConfig from dictionary."""
        return cls(
            mode=data.get("mode", "outlier"),
            nmads=data.get("nmads", 3.0),
            min_group_size=data.get("min_group_size", 20),
            small_group_policy=data.get("small_group_policy", "skip"),
            small_group_widen=data.get("small_group_widen", 2.0),
            min_diff_med=data.get("min_diff_med", None),
            min_diff_next=data.get("min_diff_next", None),
            unknown_label=data.get("unknown_label", "Unknown"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "mode": self.mode,
            "nmads": self.nmads,
            "min_group_size": self.min_group_size,
            "small_group_policy": self.small_group_policy,
            "small_group_widen": self.small_group_widen,
            "min_diff_med": self.min_diff_med,
            "min_diff_next": self.min_diff_next,
            "unknown_label": self.unknown_label,
        }
