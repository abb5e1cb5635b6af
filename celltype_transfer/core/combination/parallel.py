"""Parallel per-reference classification.

Each reference is classified independently of the others, so the runs are
dispatched through joblib. Results come back in declared reference order
regardless of completion order.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd
from joblib import Parallel, delayed

from ...errors import LabelMismatchError
from ..classification.cache import ClassificationCache
from ..classification.config import ClassificationConfig
from ..classification.engine import ClassificationResult, ReferenceClassifier
from ..classification.markers import MarkerSet
from ..classification.reference import Reference
from ..classification.scoring import TrainedReference

logger = logging.getLogger(__name__)


@dataclass
class ReferenceRun:
    """Outcome of classifying the test data against one reference."""

    reference: str
    trained: TrainedReference
    result: ClassificationResult
    cached: bool = False
    timing_seconds: float = 0.0


def classify_single_reference(
    test: pd.DataFrame,
    reference: Reference,
    config: ClassificationConfig,
    markers: Optional[MarkerSet] = None,
) -> ReferenceRun:
    """Train and classify against one reference.

    This function is designed to be called in parallel.
    """
    start = time.time()
    classifier = ReferenceClassifier(config)
    trained = classifier.train(reference, test.index, markers=markers)
    result = classifier.classify_trained(test, trained)
    return ReferenceRun(
        reference=reference.name,
        trained=trained,
        result=result,
        timing_seconds=time.time() - start,
    )


def run_reference_classifications(
    test: pd.DataFrame,
    references: Sequence[Reference],
    config: ClassificationConfig,
    markers: Optional[Dict[str, MarkerSet]] = None,
    n_jobs: int = 1,
    backend: str = "loky",
    cache: Optional[ClassificationCache] = None,
    test_id: Optional[str] = None,
    cache_names: Optional[Sequence[str]] = None,
) -> List[ReferenceRun]:
    """Classify the test data against every reference.

    Parameters
    ----------
    test : pd.DataFrame
        Test expression, genes x cells
    references : Sequence[Reference]
        References in declared order
    config : ClassificationConfig
        Classifier settings shared by all runs
    markers : Dict[str, MarkerSet], optional
        Precomputed markers per reference name
    n_jobs : int
        joblib jobs (1 = sequential)
    backend : str
        joblib backend
    cache : ClassificationCache, optional
        Memoization table; used only together with ``test_id``
    test_id : str, optional
        Identifier of the test dataset for cache lookups
    cache_names : Sequence[str], optional
        Cache key per reference (defaults to the reference names)

    Returns
    -------
    List[ReferenceRun]
        One run per reference, in declared order

    Raises
    ------
    LabelMismatchError
        If a cached result was classified against a different vocabulary
    """
    markers = markers or {}
    use_cache = cache is not None and test_id is not None
    if cache_names is None:
        cache_names = [ref.name for ref in references]
    if len(cache_names) != len(references):
        raise ValueError("cache_names must have one entry per reference")

    runs: Dict[int, ReferenceRun] = {}
    pending: List[Tuple[int, Reference]] = []
    for i, ref in enumerate(references):
        hit = cache.get(cache_names[i], test_id) if use_cache else None
        if hit is None:
            pending.append((i, ref))
            continue
        if hit.vocabulary != ref.vocabulary:
            raise LabelMismatchError(
                message=f"Cached result for '{cache_names[i]}' was classified against other labels",
                expected=ref.vocabulary,
                found=hit.vocabulary,
                suggestion=f"Invalidate the cache entry for ('{cache_names[i]}', '{test_id}').",
            )
        # Cached results carry their markers, so re-training skips detection
        trained = ReferenceClassifier(config).train(ref, test.index, markers=hit.markers)
        runs[i] = ReferenceRun(reference=ref.name, trained=trained, result=hit, cached=True)

    if pending:
        logger.info(
            "Classifying against %d reference(s) (n_jobs=%d, backend=%s)",
            len(pending), n_jobs, backend,
        )
        completed = Parallel(n_jobs=n_jobs, backend=backend, verbose=0)(
            delayed(classify_single_reference)(test, ref, config, markers.get(ref.name))
            for _, ref in pending
        )
        for (i, ref), run in zip(pending, completed):
            runs[i] = run
            logger.info("  %s: %.1fs", ref.name, run.timing_seconds)
            if use_cache:
                cache.put(cache_names[i], test_id, run.result)

    return [runs[i] for i in range(len(references))]
