"""Statistical utilities for CellType-Transfer.

Provides robust dispersion statistics, MAD-based outlier bounds and
rank-correlation helpers used by the classifier and the pruner.
"""

from __future__ import annotations

from typing import Iterable, Tuple, Union

import numpy as np
from scipy.stats import rankdata

ArrayLike = Union[Iterable[float], np.ndarray]

# Scale factor making the MAD comparable to a standard deviation under normality
MAD_SCALE = 1.4826


def _to_clean_array(values: ArrayLike) -> np.ndarray:
    """Convert input to clean numpy array, removing non-finite values.

    Parameters
    ----------
    values : ArrayLike
        Input values (list, iterable, or array).

    Returns
    -------
    np.ndarray
        Clean array with only finite values.
    """
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return arr
    return arr[np.isfinite(arr)]


def scaled_mad(values: ArrayLike) -> Tuple[float, float]:
    """Return (median, scaled MAD) of the finite values.

    Returns
    -------
    Tuple[float, float]
        Median and ``1.4826 * median(|x - median|)``. Both NaN if empty.
    """
    arr = _to_clean_array(values)
    if arr.size == 0:
        return float("nan"), float("nan")
    median = float(np.median(arr))
    mad = float(np.median(np.abs(arr - median)))
    return median, mad * MAD_SCALE


def lower_outlier_bound(values: ArrayLike, nmads: float) -> Tuple[float, float, float]:
    """Compute the lower outlier bound ``median - nmads * scaled MAD``.

    Parameters
    ----------
    values : ArrayLike
        Input values.
    nmads : float
        Number of scaled MADs below the median.

    Returns
    -------
    Tuple[float, float, float]
        (median, scaled MAD, lower bound). With a zero MAD the bound equals
        the median.
    """
    median, mad = scaled_mad(values)
    return median, mad, median - nmads * mad


def robust_zscore(values: ArrayLike) -> np.ndarray:
    """Compute a robust z-score using the median absolute deviation (MAD).

    Non-finite inputs become NaN in the output. A zero MAD yields zeros.
    """
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return arr

    mask = np.isfinite(arr)
    clean = arr[mask]
    if clean.size == 0:
        return np.full_like(arr, np.nan, dtype=float)

    median, scale = scaled_mad(clean)
    if not np.isfinite(scale) or scale == 0:
        z = np.zeros_like(clean)
    else:
        z = (clean - median) / scale

    result = np.full_like(arr, np.nan, dtype=float)
    result[mask] = z
    return result


def standardized_ranks(matrix: np.ndarray) -> np.ndarray:
    """Rank each column and scale it to zero mean and unit norm.

    The dot product of two standardized columns is their Spearman
    correlation. Constant columns become all zeros (correlation 0).

    Parameters
    ----------
    matrix : np.ndarray
        Array of shape (n_genes, n_samples).

    Returns
    -------
    np.ndarray
        Array of the same shape.
    """
    matrix = np.asarray(matrix, dtype=float)
    if matrix.ndim != 2:
        raise ValueError(f"Expected a 2-D array, got shape {matrix.shape}")
    if matrix.shape[0] == 0:
        return np.zeros_like(matrix)
    ranks = rankdata(matrix, axis=0)
    ranks = ranks - ranks.mean(axis=0, keepdims=True)
    norms = np.sqrt((ranks ** 2).sum(axis=0, keepdims=True))
    with np.errstate(invalid="ignore", divide="ignore"):
        scaled = np.where(norms > 0, ranks / np.where(norms > 0, norms, 1.0), 0.0)
    return scaled


def spearman_matrix(test: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """Spearman correlations between the columns of two gene-aligned matrices.

    Parameters
    ----------
    test : np.ndarray
        Array (n_genes, n_cells).
    reference : np.ndarray
        Array (n_genes, n_samples) with the same gene order.

    Returns
    -------
    np.ndarray
        Correlations of shape (n_cells, n_samples).
    """
    return standardized_ranks(test).T @ standardized_ranks(reference)
