"""Memoization table for classification results.

Results are keyed by (reference name, test dataset id). Invalidation is
explicit and caller-controlled; nothing is cached process-wide.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, Optional, Tuple

from .engine import ClassificationResult

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


class ClassificationCache:
    """In-memory store of ClassificationResult objects.

    Example
    -------
    >>> cache = ClassificationCache()
    >>> cache.put("blueprint", "pbmc_3k", result)
    >>> cache.get("blueprint", "pbmc_3k") is result
    True
    >>> cache.invalidate(test_id="pbmc_3k")
    1
    """

    def __init__(self):
        self._entries: Dict[CacheKey, ClassificationResult] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[CacheKey]:
        return iter(list(self._entries))

    def get(self, reference: str, test_id: str) -> Optional[ClassificationResult]:
        result = self._entries.get((reference, test_id))
        if result is None:
            self.misses += 1
        else:
            self.hits += 1
            logger.debug("Cache hit for (%s, %s)", reference, test_id)
        return result

    def put(self, reference: str, test_id: str, result: ClassificationResult) -> None:
        self._entries[(reference, test_id)] = result

    def invalidate(
        self,
        reference: Optional[str] = None,
        test_id: Optional[str] = None,
    ) -> int:
        """Drop entries matching the given reference and/or test id.

        With neither argument every entry is dropped.

        Returns
        -------
        int
            Number of entries removed.
        """
        doomed = [
            key
            for key in self._entries
            if (reference is None or key[0] == reference)
            and (test_id is None or key[1] == test_id)
        ]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("Invalidated %d cached classification(s)", len(doomed))
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0
