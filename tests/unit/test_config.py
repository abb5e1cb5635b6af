"""Unit tests for configuration and error reporting."""

import pytest
import yaml

from celltype_transfer.config import SECTIONS, TransferConfig
from celltype_transfer.errors import (
    ConfigurationError,
    GeneOverlapError,
    LabelMismatchError,
    SmallGroupError,
    TransferError,
)


class TestTransferConfig:
    """Tests for TransferConfig."""

    def test_default_config(self):
        config = TransferConfig.default()
        assert config.classification.quantile == 0.8
        assert config.pruning.nmads == 3.0
        assert config.combination.n_jobs == 1
        assert config.matching.min_prob == 0.5
        assert config.label_maps == {}

    def test_from_yaml(self, sample_transfer_config):
        config = TransferConfig.from_yaml(sample_transfer_config)
        assert config.description == "test run"
        assert config.pruning.nmads == 2.5
        assert config.pruning.min_group_size == 5
        assert config.combination.qualify_labels is True
        assert config.matching.min_prob == 0.6
        assert config.label_maps["immune"]["T"] == "CL:0000084"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            TransferConfig.from_yaml(tmp_path / "missing.yaml")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert TransferConfig.from_yaml(path) == TransferConfig()

    def test_unknown_section(self):
        with pytest.raises(ConfigurationError, match="Unknown configuration section"):
            TransferConfig.from_dict({"clustering": {}})

    def test_invalid_value_rejected(self):
        with pytest.raises(ConfigurationError):
            TransferConfig.from_dict({"pruning": {"mode": "threshold"}})

    def test_invalid_matching_probability_rejected(self):
        with pytest.raises(ConfigurationError, match="max_prob"):
            TransferConfig.from_dict({"matching": {"max_prob": 1.2}})

    def test_yaml_roundtrip(self, sample_transfer_config, tmp_path):
        config = TransferConfig.from_yaml(sample_transfer_config)
        path = config.to_yaml(tmp_path / "out" / "config.yaml")
        with open(path) as f:
            data = yaml.safe_load(f)
        assert set(data) == {"version", "description", *SECTIONS}
        assert TransferConfig.from_dict(data) == config


class TestErrors:
    """Tests for structured errors."""

    def test_is_value_error(self):
        error = ConfigurationError(message="bad", expected=1, found=2)
        assert isinstance(error, TransferError)
        assert isinstance(error, ValueError)

    def test_str_format(self):
        error = ConfigurationError(message="bad value", expected=">= 1", found=0, suggestion="fix it")
        text = str(error)
        assert text.splitlines()[0] == "[E001_CONFIGURATION] bad value"
        assert "Expected: >= 1" in text
        assert "Found: 0" in text
        assert "Suggestion: fix it" in text

    def test_default_suggestions(self):
        assert "gene identifiers" in GeneOverlapError(message="none").suggestion
        assert "small_group_policy" in SmallGroupError(message="tiny").suggestion

    def test_label_mismatch_suggests_close_labels(self):
        error = LabelMismatchError(
            message="unknown", found="Tcell", available_labels=["T cell", "B cell", "NK cell"]
        )
        assert error.suggestion.startswith("Did you mean: T cell")

    def test_to_dict(self):
        data = ConfigurationError(message="bad", found=3).to_dict()
        assert data["error_code"] == "E001_CONFIGURATION"
        assert data["found"] == "3"
        assert data["expected"] is None

    def test_raise_and_catch(self):
        with pytest.raises(ValueError, match="E001"):
            raise ConfigurationError(message="bad")
