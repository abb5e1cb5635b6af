"""Unit tests for the classification cache."""

import pytest

from celltype_transfer.core.classification import ClassificationCache, ReferenceClassifier


@pytest.fixture
def result(reference, query_matrix):
    return ReferenceClassifier().classify(query_matrix, reference)


class TestClassificationCache:
    """Tests for ClassificationCache."""

    def test_get_put(self, result):
        cache = ClassificationCache()
        assert cache.get("ref", "pbmc") is None
        cache.put("ref", "pbmc", result)
        assert cache.get("ref", "pbmc") is result
        assert cache.hits == 1
        assert cache.misses == 1
        assert ("ref", "pbmc") in cache
        assert len(cache) == 1

    def test_keys_are_per_test_dataset(self, result):
        cache = ClassificationCache()
        cache.put("ref", "pbmc", result)
        assert cache.get("ref", "lung") is None

    def test_invalidate_by_reference(self, result):
        cache = ClassificationCache()
        cache.put("ref", "pbmc", result)
        cache.put("ref", "lung", result)
        cache.put("other", "pbmc", result)

        assert cache.invalidate(reference="ref") == 2
        assert list(cache) == [("other", "pbmc")]

    def test_invalidate_by_test_id(self, result):
        cache = ClassificationCache()
        cache.put("ref", "pbmc", result)
        cache.put("other", "pbmc", result)
        cache.put("ref", "lung", result)

        assert cache.invalidate(test_id="pbmc") == 2
        assert list(cache) == [("ref", "lung")]

    def test_invalidate_pair_and_all(self, result):
        cache = ClassificationCache()
        cache.put("ref", "pbmc", result)
        cache.put("ref", "lung", result)
        assert cache.invalidate(reference="ref", test_id="lung") == 1
        assert cache.invalidate() == 1
        assert len(cache) == 0

    def test_clear_resets_counters(self, result):
        cache = ClassificationCache()
        cache.put("ref", "pbmc", result)
        cache.get("ref", "pbmc")
        cache.clear()
        assert len(cache) == 0
        assert cache.hits == 0
