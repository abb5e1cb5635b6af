"""Table I/O utilities for CellType-Transfer.

Provides functions for loading expression matrices, label vectors,
references and label maps, and for exporting annotation results.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np
import pandas as pd
import yaml
from scipy import sparse

from ..core.classification.engine import ClassificationResult
from ..core.classification.reference import Reference
from ..core.combination.engine import CombinedResult
from ..core.matching.engine import MatchResult
from ..core.pruning.engine import PruningResult

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if it does not exist and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def _require(path: PathLike, what: str) -> Path:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{what} not found: {path}")
    return path


def load_expression_matrix(
    path: PathLike,
    layer: Optional[str] = None,
    cells_as_rows: bool = False,
) -> pd.DataFrame:
    """Load an expression matrix as genes x samples.

    Parameters
    ----------
    path : PathLike
        CSV/TSV (first column = row identifiers) or ``.h5ad``.
    layer : str, optional
        AnnData layer to read (None = X). Ignored for text files.
    cells_as_rows : bool
        Text files only: rows are cells and columns genes (transposed on load).

    Returns
    -------
    pd.DataFrame
        Genes x samples matrix with string identifiers.
    """
    path = _require(path, "Expression matrix")
    if path.suffix == ".h5ad":
        import anndata as ad

        adata = ad.read_h5ad(path)
        matrix = adata.layers[layer] if layer else adata.X
        if sparse.issparse(matrix):
            matrix = matrix.toarray()
        df = pd.DataFrame(
            np.asarray(matrix, dtype=float).T,
            index=pd.Index(adata.var_names.astype(str)),
            columns=pd.Index(adata.obs_names.astype(str)),
        )
    else:
        sep = "\t" if path.suffix in (".tsv", ".txt") else ","
        df = pd.read_csv(path, sep=sep, index_col=0)
        if cells_as_rows:
            df = df.T
        df.index = df.index.astype(str)
        df.columns = df.columns.astype(str)

    if df.empty:
        raise ValueError(f"Expression matrix {path} is empty")
    logger.info("Loaded %s: %d genes x %d samples", path.name, df.shape[0], df.shape[1])
    return df


def load_labels(path: PathLike, column: Optional[str] = None) -> pd.Series:
    """Load a label vector from a CSV (first column = sample identifiers).

    Parameters
    ----------
    path : PathLike
        CSV file.
    column : str, optional
        Label column (default: the first data column).
    """
    path = _require(path, "Label table")
    df = pd.read_csv(path, index_col=0)
    if df.shape[1] == 0:
        raise ValueError(f"Label table {path} has no label column")
    if column is None:
        column = df.columns[0]
    elif column not in df.columns:
        raise ValueError(f"Label column `{column}` not in {path}; found {list(df.columns)}")
    labels = df[column].astype(str)
    labels.index = labels.index.astype(str)
    return labels.rename("label")


def load_reference(
    expression_path: PathLike,
    name: Optional[str] = None,
    labels_path: Optional[PathLike] = None,
    label_column: Optional[str] = None,
    layer: Optional[str] = None,
) -> Reference:
    """Load a Reference from an ``.h5ad`` (labels in obs) or matrix + label CSVs."""
    expression_path = _require(expression_path, "Reference")
    name = name or expression_path.stem
    if expression_path.suffix == ".h5ad" and labels_path is None:
        import anndata as ad

        if label_column is None:
            raise ValueError("label_column is required for .h5ad references without a label file")
        return Reference.from_anndata(
            ad.read_h5ad(expression_path), label_key=label_column, name=name, layer=layer
        )
    if labels_path is None:
        raise ValueError(f"Reference '{name}' needs a label file")
    expression = load_expression_matrix(expression_path, layer=layer)
    labels = load_labels(labels_path, column=label_column)
    return Reference(name=name, expression=expression, labels=labels)


def load_label_map(path: PathLike) -> Dict[str, str]:
    """Load a raw-label -> shared-term mapping from YAML, JSON or 2-column CSV."""
    path = _require(path, "Label map")
    if path.suffix in (".yaml", ".yml"):
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    elif path.suffix == ".json":
        with open(path) as f:
            data = json.load(f)
    else:
        df = pd.read_csv(path)
        if df.shape[1] < 2:
            raise ValueError(f"Label map {path} needs two columns (label, term)")
        data = dict(zip(df.iloc[:, 0].astype(str), df.iloc[:, 1].astype(str)))
    return {str(k): str(v) for k, v in data.items()}


def write_dataframe(df: pd.DataFrame, path: PathLike, index: bool = True) -> Path:
    """Write a DataFrame as CSV, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=index)
    logger.info("Wrote %s", path.name)
    return path


def export_classification(result: ClassificationResult, output_dir: PathLike) -> Dict[str, Path]:
    """Write labels, scores and markers of a classification."""
    out = ensure_output_dir(output_dir)
    prefix = result.reference
    return {
        "labels": write_dataframe(result.to_frame(), out / f"{prefix}_labels.csv"),
        "scores": write_dataframe(result.scores, out / f"{prefix}_scores.csv"),
        "markers": write_dataframe(result.markers.to_frame(), out / f"{prefix}_markers.csv", index=False),
    }


def export_pruning(result: PruningResult, output_dir: PathLike, prefix: str = "pruning") -> Dict[str, Path]:
    """Write per-cell pruning outcome and per-label thresholds."""
    out = ensure_output_dir(output_dir)
    return {
        "cells": write_dataframe(result.to_frame(), out / f"{prefix}_cells.csv"),
        "thresholds": write_dataframe(result.thresholds, out / f"{prefix}_thresholds.csv", index=False),
    }


def export_combined(result: CombinedResult, output_dir: PathLike) -> Dict[str, Path]:
    """Write combined labels, recomputed scores and per-reference outputs."""
    out = ensure_output_dir(output_dir)
    paths = {
        "combined": write_dataframe(result.to_frame(), out / "combined_labels.csv"),
        "scores": write_dataframe(result.scores, out / "combined_scores.csv"),
    }
    for name, sub in result.per_reference.items():
        paths.update({
            f"{name}_{key}": path
            for key, path in export_classification(sub, out / "per_reference").items()
        })
    for name, pruning in result.per_reference_pruning.items():
        paths.update({
            f"{name}_pruning_{key}": path
            for key, path in export_pruning(pruning, out / "per_reference", prefix=f"{name}_pruning").items()
        })
    return paths


def export_match(result: MatchResult, output_dir: PathLike) -> Dict[str, Path]:
    """Write the three probability tables of a reference match."""
    out = ensure_output_dir(output_dir)
    stem = f"{result.name_a}_vs_{result.name_b}"
    return {
        "a_to_b": write_dataframe(result.a_to_b, out / f"{stem}_a_to_b.csv"),
        "b_to_a": write_dataframe(result.b_to_a, out / f"{stem}_b_to_a.csv"),
        "mutual": write_dataframe(result.mutual, out / f"{stem}_mutual.csv"),
    }
