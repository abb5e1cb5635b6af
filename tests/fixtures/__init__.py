"""Test fixtures for CellType-Transfer.

Provides synthetic reference and test-matrix generators.
"""

from .mock_references import (
    DEFAULT_BLOCKS,
    create_reference,
    create_score_matrix,
    create_test_matrix,
)

__all__ = [
    "DEFAULT_BLOCKS",
    "create_reference",
    "create_score_matrix",
    "create_test_matrix",
]
