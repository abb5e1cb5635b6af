"""
Errors with actionable diagnostics for reference-based annotation.

Each error carries what was expected, what was found and how to fix it.
Error codes enable programmatic handling.

Error Codes:
    E001_CONFIGURATION: Invalid or inconsistent configuration value
    E002_GENE_OVERLAP: Test and reference share no usable genes
    E003_INSUFFICIENT_LABELS: Score matrix has fewer than two labels
    E004_SMALL_GROUP: Label group too small for outlier detection
    E005_MISSING_MARKERS: Assigned label has no recorded marker genes
    E006_LABEL_MISMATCH: Assigned label not in the score matrix vocabulary
    E007_REFERENCE_INVALID: Reference expression and labels do not line up
"""

from __future__ import annotations

from dataclasses import dataclass, field
from difflib import get_close_matches
from typing import Any, Dict, List


@dataclass(eq=False)
class TransferError(ValueError):
    """Base class for annotation errors.

    Attributes
    ----------
    message : str
        Human-readable error description
    error_code : str
        Machine-readable error code
    expected : Any
        What was expected
    found : Any
        What was actually found
    suggestion : str
        Actionable suggestion for fixing the error
    context : Dict[str, Any]
        Additional context for debugging
    """

    message: str = ""
    error_code: str = "E000_UNKNOWN"
    expected: Any = None
    found: Any = None
    suggestion: str = ""
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        super().__init__(self.message)

    def __str__(self) -> str:
        """Format error as human-readable multi-line string."""
        parts = [f"[{self.error_code}] {self.message}"]
        if self.expected is not None:
            parts.append(f"  Expected: {self.expected}")
        if self.found is not None:
            parts.append(f"  Found: {self.found}")
        if self.suggestion:
            parts.append(f"  Suggestion: {self.suggestion}")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "expected": str(self.expected) if self.expected is not None else None,
            "found": str(self.found) if self.found is not None else None,
            "suggestion": self.suggestion,
            "context": self.context,
        }


@dataclass(eq=False)
class ConfigurationError(TransferError):
    """Invalid configuration value."""

    error_code: str = "E001_CONFIGURATION"


@dataclass(eq=False)
class GeneOverlapError(TransferError):
    """No genes shared between the test and reference matrices."""

    error_code: str = "E002_GENE_OVERLAP"

    def __post_init__(self):
        super().__post_init__()
        if not self.suggestion:
            self.suggestion = (
                "Check that both matrices use the same gene identifiers "
                "(symbols vs. Ensembl IDs) and the same case."
            )


@dataclass(eq=False)
class InsufficientLabelsError(TransferError):
    """Scores over fewer than two labels; the delta from the median is undefined."""

    error_code: str = "E003_INSUFFICIENT_LABELS"


@dataclass(eq=False)
class SmallGroupError(TransferError):
    """Label group below the minimum size for outlier detection."""

    error_code: str = "E004_SMALL_GROUP"

    def __post_init__(self):
        super().__post_init__()
        if not self.suggestion:
            self.suggestion = (
                "Set pruning.small_group_policy to 'skip' or 'widen', "
                "or lower pruning.min_group_size."
            )


@dataclass(eq=False)
class MissingMarkersError(TransferError):
    """Assigned label has no marker genes in its reference."""

    error_code: str = "E005_MISSING_MARKERS"


@dataclass(eq=False)
class LabelMismatchError(TransferError):
    """Assigned label is not a column of the score matrix."""

    error_code: str = "E006_LABEL_MISMATCH"
    available_labels: List[str] = field(default_factory=list)

    def __post_init__(self):
        super().__post_init__()
        if not self.suggestion and self.available_labels and self.found:
            matches = get_close_matches(
                str(self.found), self.available_labels, n=3, cutoff=0.4
            )
            if matches:
                self.suggestion = f"Did you mean: {', '.join(matches)}?"


@dataclass(eq=False)
class ReferenceValidationError(TransferError):
    """Reference expression matrix and label vector are inconsistent."""

    error_code: str = "E007_REFERENCE_INVALID"
