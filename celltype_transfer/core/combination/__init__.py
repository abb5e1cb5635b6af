"""Combination module for multi-reference annotation.

Classifies against several references independently and picks a winner
per cell from scores recomputed on a shared marker gene set.
"""

from .config import CombinationConfig, UNMAPPED_POLICIES
from .engine import CombinedResult, MultiReferenceCombiner, combine_recomputed_results
from .harmonize import find_consistent_markers, harmonize_reference, harmonized_cache_name
from .parallel import ReferenceRun, classify_single_reference, run_reference_classifications

__all__ = [
    "CombinationConfig",
    "UNMAPPED_POLICIES",
    "CombinedResult",
    "MultiReferenceCombiner",
    "combine_recomputed_results",
    "find_consistent_markers",
    "harmonize_reference",
    "harmonized_cache_name",
    "ReferenceRun",
    "classify_single_reference",
    "run_reference_classifications",
]
