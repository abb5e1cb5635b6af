"""Top-level configuration for CellType-Transfer.

Bundles the per-module configurations into one object loadable from a
single YAML file.

Example
-------
>>> from celltype_transfer.config import TransferConfig
>>> config = TransferConfig.from_yaml("transfer.yaml")
>>> config.pruning.nmads
3.0
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Union
import logging

import yaml

from ..core.classification.config import ClassificationConfig
from ..core.combination.config import CombinationConfig
from ..core.matching.engine import MatchingConfig
from ..core.pruning.config import PruningConfig
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

SECTIONS = ("classification", "pruning", "combination", "matching", "label_maps")


@dataclass
class TransferConfig:
    """Main configuration for reference-based annotation.

    Attributes
    ----------
    version : str
        Configuration version
    description : str
        Optional description
    classification : ClassificationConfig
        Classifier settings
    pruning : PruningConfig
        Confidence pruning settings
    combination : CombinationConfig
        Multi-reference settings
    matching : MatchingConfig
        Reference matching settings
    label_maps : Dict[str, Dict[str, str]]
        Reference name -> {raw label: shared term} for harmonized mode
    """

    version: str = "1.0"
    description: str = ""
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    pruning: PruningConfig = field(default_factory=PruningConfig)
    combination: CombinationConfig = field(default_factory=CombinationConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    label_maps: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def validate(self) -> None:
        self.classification.validate()
        self.pruning.validate()
        self.combination.validate()
        self.matching.validate()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TransferConfig":
        """Create TransferConfig from a (parsed YAML) dictionary."""
        data = dict(data or {})
        unknown = sorted(set(data) - set(SECTIONS) - {"version", "description"})
        if unknown:
            raise ConfigurationError(
                message="Unknown configuration section(s)",
                expected=list(SECTIONS),
                found=unknown,
            )
        config = cls(
            version=str(data.get("version", "1.0")),
            description=data.get("description", ""),
            classification=ClassificationConfig.from_dict(data.get("classification", {}) or {}),
            pruning=PruningConfig.from_dict(data.get("pruning", {}) or {}),
            combination=CombinationConfig.from_dict(data.get("combination", {}) or {}),
            matching=MatchingConfig.from_dict(data.get("matching", {}) or {}),
            label_maps={
                str(ref): {str(k): str(v) for k, v in mapping.items()}
                for ref, mapping in (data.get("label_maps", {}) or {}).items()
            },
        )
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "TransferConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        logger.info(f"Loaded config from {path}")
        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "TransferConfig":
        """Return default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "version": self.version,
            "description": self.description,
            "classification": self.classification.to_dict(),
            "pruning": self.pruning.to_dict(),
            "combination": self.combination.to_dict(),
            "matching": self.matching.to_dict(),
            "label_maps": self.label_maps,
        }

    def to_yaml(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)
        return path
