"""Pytest configuration and shared fixtures for CellType-Transfer tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import mock data generators
from tests.fixtures import (
    create_reference,
    create_score_matrix,
    create_test_matrix,
)


# ============================================================================
# Reference Fixtures
# ============================================================================


@pytest.fixture
def reference():
    """Reference with labels A, B, C on marker blocks 0-2."""
    return create_reference(name="ref")


@pytest.fixture
def immune_reference():
    """Reference with T and B cells (blocks 0 and 1)."""
    return create_reference(name="immune", blocks={"T": 0, "B": 1}, seed=1)


@pytest.fixture
def myeloid_reference():
    """Reference with monocytes and NK cells (blocks 2 and 3)."""
    return create_reference(name="myeloid", blocks={"Mono": 2, "NK": 3}, seed=2)


# ============================================================================
# Test Matrix Fixtures
# ============================================================================


@pytest.fixture
def query_matrix() -> pd.DataFrame:
    """30 cells, 10 per marker block 0-2 (true labels A, B, C)."""
    return create_test_matrix(np.repeat([0, 1, 2], 10))


@pytest.fixture
def true_labels(query_matrix) -> pd.Series:
    return pd.Series(np.repeat(["A", "B", "C"], 10), index=query_matrix.columns)


@pytest.fixture
def mixed_query_matrix() -> pd.DataFrame:
    """20 cells: 10 T-like (block 0) and 10 Mono-like (block 2)."""
    return create_test_matrix(np.repeat([0, 2], 10), seed=7)


# ============================================================================
# Score Matrix Fixtures
# ============================================================================


@pytest.fixture
def outlier_scores() -> pd.DataFrame:
    """26 A-cells with deltas 0.38..0.62 plus one at 0.0, and 5 B-cells."""
    deltas_a = [0.0] + [0.37 + 0.01 * k for k in range(1, 26)]
    return create_score_matrix({"A": deltas_a, "B": [0.4, 0.5, 0.45, 0.05, 0.5]})


@pytest.fixture
def outlier_labels(outlier_scores) -> pd.Series:
    """Assigned labels recovered from the cell names."""
    return pd.Series(
        [cell.split("_")[0] for cell in outlier_scores.index],
        index=outlier_scores.index,
    )


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def sample_transfer_config(tmp_path) -> Path:
    """Create sample configuration file."""
    import yaml

    config = {
        "version": "1.0",
        "description": "test run",
        "classification": {"quantile": 0.8, "fine_tune": True, "tune_thresh": 0.05},
        "pruning": {"mode": "outlier", "nmads": 2.5, "min_group_size": 5},
        "combination": {"n_jobs": 1, "qualify_labels": True},
        "matching": {"min_prob": 0.6},
        "label_maps": {"immune": {"T": "CL:0000084", "B": "CL:0000236"}},
    }

    path = tmp_path / "transfer.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f)

    return path
