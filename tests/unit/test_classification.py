"""Unit tests for classification module."""

import pytest
import numpy as np
import pandas as pd

from celltype_transfer.core.classification import (
    ClassificationConfig,
    ClassificationResult,
    MarkerSet,
    Reference,
    ReferenceClassifier,
    default_de_n,
    detect_markers,
    first_labels,
    label_index,
    label_medians,
    shared_genes,
)
from celltype_transfer.errors import (
    ConfigurationError,
    GeneOverlapError,
    ReferenceValidationError,
)
from tests.fixtures import create_reference, create_test_matrix


class TestClassificationConfig:
    """Tests for ClassificationConfig dataclass."""

    def test_default_values(self):
        """Test default configuration values."""
        config = ClassificationConfig()
        assert config.marker_method == "classic"
        assert config.de_n is None
        assert config.quantile == 0.8
        assert config.fine_tune is True
        assert config.tune_thresh == 0.05

    def test_invalid_method(self):
        with pytest.raises(ConfigurationError, match="marker detection"):
            ClassificationConfig(marker_method="logreg").validate()

    def test_invalid_quantile(self):
        with pytest.raises(ConfigurationError):
            ClassificationConfig(quantile=1.5).validate()

    def test_from_dict_defaults(self):
        config = ClassificationConfig.from_dict({"de_n": 10})
        assert config.de_n == 10
        assert config.quantile == 0.8


class TestReference:
    """Tests for Reference validation and helpers."""

    def test_vocabulary_sorted(self, reference):
        assert reference.vocabulary == ["A", "B", "C"]
        assert reference.n_samples == 24
        assert reference.label_counts().tolist() == [8, 8, 8]

    def test_labels_aligned_by_sample_name(self, reference):
        """Labels indexed by sample ids follow the expression column order."""
        shuffled = reference.labels.iloc[::-1]
        rebuilt = Reference("ref", reference.expression, shuffled)
        pd.testing.assert_series_equal(rebuilt.labels, reference.labels)

    def test_positional_labels(self, reference):
        labels = pd.Series(reference.labels.to_numpy())
        rebuilt = Reference("ref", reference.expression, labels)
        assert rebuilt.labels.index.equals(reference.expression.columns)

    def test_length_mismatch_raises(self, reference):
        with pytest.raises(ReferenceValidationError):
            Reference("bad", reference.expression, reference.labels.iloc[:-1])

    def test_missing_labels_raise(self, reference):
        labels = reference.labels.copy()
        labels.iloc[0] = None
        with pytest.raises(ReferenceValidationError, match="missing labels"):
            Reference("bad", reference.expression, labels)

    def test_duplicate_genes_raise(self, reference):
        expression = reference.expression.copy()
        expression.index = ["G0"] + list(expression.index[:-1])
        with pytest.raises(ReferenceValidationError, match="duplicated"):
            Reference("bad", expression, reference.labels)

    def test_subset_and_relabel(self, reference):
        subset = reference.subset_samples(reference.samples_for("A"))
        assert subset.vocabulary == ["A"]
        relabeled = reference.with_labels(reference.labels.str.lower(), name="lower")
        assert relabeled.name == "lower"
        assert relabeled.vocabulary == ["a", "b", "c"]
        # Source reference is untouched
        assert reference.vocabulary == ["A", "B", "C"]

    def test_label_index(self, reference):
        index = label_index(reference)
        assert list(index) == ["A", "B", "C"]
        np.testing.assert_array_equal(index["B"], np.arange(8, 16))

    def test_shared_genes_keeps_test_order(self, reference):
        genes = shared_genes(["G5", "missing", "G1", "G0"], reference)
        assert genes == ["G5", "G1", "G0"]

    def test_no_shared_genes_raises(self, reference):
        with pytest.raises(GeneOverlapError) as excinfo:
            shared_genes(["X1", "X2"], reference)
        assert excinfo.value.error_code == "E002_GENE_OVERLAP"
        assert "gene identifiers" in excinfo.value.suggestion

    def test_from_anndata(self, reference):
        import anndata as ad

        adata = ad.AnnData(
            X=reference.expression.to_numpy().T,
            obs=pd.DataFrame({"cell_type": reference.labels.to_numpy()},
                             index=reference.expression.columns),
            var=pd.DataFrame(index=reference.expression.index),
        )
        rebuilt = Reference.from_anndata(adata, label_key="cell_type", name="adata_ref")
        assert rebuilt.vocabulary == reference.vocabulary
        np.testing.assert_allclose(rebuilt.expression.to_numpy(), reference.expression.to_numpy())

    def test_from_anndata_missing_key(self, reference):
        import anndata as ad

        adata = ad.AnnData(X=reference.expression.to_numpy().T)
        with pytest.raises(ReferenceValidationError, match="Label column"):
            Reference.from_anndata(adata, label_key="cell_type", name="adata_ref")


class TestMarkers:
    """Tests for pairwise marker detection."""

    def test_default_de_n(self):
        """Marker count shrinks with the number of labels."""
        assert default_de_n(1) == 0
        assert default_de_n(2) == 333
        assert default_de_n(3) == 263
        assert default_de_n(4) == 222
        assert default_de_n(8) < default_de_n(4)

    def test_label_medians(self, reference):
        medians = label_medians(reference, ["G0", "G5"])
        assert list(medians.columns) == ["A", "B", "C"]
        assert medians.loc["G0", "A"] > medians.loc["G0", "B"] + 3

    def test_classic_markers_find_blocks(self, reference):
        """The top pairwise markers are the label's own block."""
        markers = detect_markers(reference)
        assert markers.labels == ["A", "B", "C"]
        assert set(markers.pairwise["A"]["B"][:5]) == {f"G{i}" for i in range(5)}
        assert set(markers.pairwise["C"]["A"][:5]) == {f"G{i}" for i in range(10, 15)}

    def test_de_n_caps_markers(self, reference):
        markers = detect_markers(reference, de_n=3)
        for a, others in markers.pairwise.items():
            for b, genes in others.items():
                assert len(genes) <= 3

    def test_only_positive_differences(self, reference):
        markers = detect_markers(reference, genes=["G0", "G1", "G5"], de_n=10)
        assert "G5" not in markers.pairwise["A"]["B"]
        assert set(markers.pairwise["A"]["B"]) == {"G0", "G1"}

    def test_unknown_method_raises(self, reference):
        with pytest.raises(ConfigurationError):
            detect_markers(reference, method="logreg")

    def test_wilcoxon_markers(self, reference):
        """scanpy-based markers recover the label blocks too."""
        markers = detect_markers(reference, method="wilcoxon", de_n=5)
        assert markers.method == "wilcoxon"
        assert set(markers.pairwise["B"]["A"]) == {f"G{i}" for i in range(5, 10)}

    def test_marker_set_from_flat_mapping(self):
        markers = MarkerSet.from_mapping("ref", {"A": ["G0", "G1"], "B": ["G5"]})
        assert markers.pairwise == {"A": {"B": ("G0", "G1")}, "B": {"A": ("G5",)}}
        assert markers.for_label("A") == ("G0", "G1")
        assert set(markers.between(["A", "B"])) == {"G0", "G1", "G5"}

    def test_marker_set_from_pairwise_mapping(self):
        markers = MarkerSet.from_mapping(
            "ref",
            {"A": {"B": ["G0"], "C": ["G1"]}, "B": {"A": ["G5"]}, "C": {}},
        )
        assert markers.for_label("A") == ("G0", "G1")
        assert markers.between(["A", "B"]) == ("G0", "G5")
        assert markers.for_label("C") == ()

    def test_restrict_and_to_frame(self):
        markers = MarkerSet.from_mapping("ref", {"A": ["G0", "X"], "B": ["G5"]})
        restricted = markers.restrict(["G0", "G5"])
        assert restricted.for_label("A") == ("G0",)
        frame = restricted.to_frame()
        assert list(frame.columns) == ["reference", "label", "other_label", "gene", "rank"]
        assert len(frame) == 2


class TestReferenceClassifier:
    """Tests for ReferenceClassifier."""

    def test_classify_recovers_labels(self, reference, query_matrix, true_labels):
        result = ReferenceClassifier().classify(query_matrix, reference)

        assert isinstance(result, ClassificationResult)
        assert result.reference == "ref"
        assert result.vocabulary == ["A", "B", "C"]
        assert result.scores.index.name == "cell_id"
        assert result.labels.tolist() == true_labels.tolist()
        assert (result.delta_next >= 0).all()

    def test_classify_without_fine_tuning(self, reference, query_matrix, true_labels):
        config = ClassificationConfig(fine_tune=False)
        result = ReferenceClassifier(config).classify(query_matrix, reference)
        assert result.tuned is False
        assert result.labels.tolist() == true_labels.tolist()
        pd.testing.assert_series_equal(
            result.labels, result.first_labels, check_names=False
        )

    def test_first_labels_are_argmax(self, reference, query_matrix):
        result = ReferenceClassifier().classify(query_matrix, reference)
        expected = result.scores.idxmax(axis=1)
        assert result.first_labels.tolist() == expected.tolist()

    def test_ties_resolve_to_first_label(self):
        """Labels with identical samples tie; the first in the vocabulary wins."""
        base = create_reference(name="tie", blocks={"X": 0, "Z": 1})
        x_samples = base.samples_for("X")
        duplicate = base.expression[x_samples].copy()
        duplicate.columns = [f"dup_{i}" for i in range(len(x_samples))]
        expression = pd.concat([base.expression, duplicate], axis=1)
        labels = pd.concat([
            base.labels,
            pd.Series("Y", index=duplicate.columns),
        ])
        reference = Reference("tie", expression, labels)

        query = create_test_matrix(np.repeat([0, 1], 5))
        result = ReferenceClassifier().classify(query, reference)

        np.testing.assert_array_equal(result.scores["X"], result.scores["Y"])
        assert "Y" not in set(result.labels)
        assert result.labels.tolist() == ["X"] * 5 + ["Z"] * 5

    def test_single_label_reference(self, query_matrix):
        """One label: every cell gets it and delta_next is undefined."""
        reference = create_reference(name="solo", blocks={"A": 0})
        result = ReferenceClassifier().classify(query_matrix, reference)
        assert set(result.labels) == {"A"}
        assert result.delta_next.isna().all()

    def test_supplied_markers_restricted(self, reference, query_matrix, true_labels):
        markers = MarkerSet.from_mapping(
            "ref",
            {
                "A": ["G0", "G1", "G2"],
                "B": ["G5", "G6", "G7"],
                "C": ["G10", "G11", "not_measured"],
            },
        )
        result = ReferenceClassifier().classify(query_matrix, reference, markers=markers)
        assert "not_measured" not in result.markers.all_genes()
        assert result.labels.tolist() == true_labels.tolist()

    def test_no_gene_overlap_raises(self, query_matrix):
        reference = create_reference(name="other", gene_prefix="ENSG")
        with pytest.raises(GeneOverlapError):
            ReferenceClassifier().classify(query_matrix, reference)

    def test_min_common_genes(self, reference, query_matrix):
        config = ClassificationConfig(min_common_genes=100)
        with pytest.raises(GeneOverlapError, match="Too few genes"):
            ReferenceClassifier(config).classify(query_matrix, reference)

    def test_partial_gene_overlap(self, reference, true_labels):
        """Extra test genes are ignored."""
        query = create_test_matrix(np.repeat([0, 1, 2], 10), n_genes=80)
        result = ReferenceClassifier().classify(query, reference)
        assert result.labels.tolist() == true_labels.tolist()

    def test_to_frame(self, reference, query_matrix):
        result = ReferenceClassifier().classify(query_matrix, reference)
        frame = result.to_frame()
        assert list(frame.columns) == ["reference", "first_label", "label", "score", "delta_next"]
        for cell in frame.index[:3]:
            assert frame.loc[cell, "score"] == result.scores.loc[cell, frame.loc[cell, "label"]]

    def test_first_labels_helper_ties(self):
        scores = pd.DataFrame([[0.5, 0.5], [0.1, 0.9]], columns=["A", "B"])
        assert first_labels(scores).tolist() == ["A", "B"]
