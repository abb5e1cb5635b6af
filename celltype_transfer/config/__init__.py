"""Centralized configuration for CellType-Transfer.

Example
-------
>>> from celltype_transfer.config import TransferConfig
>>> config = TransferConfig.from_yaml("transfer.yaml")
>>> config.classification.quantile
0.8
"""

from .transfer import SECTIONS, TransferConfig

__all__ = [
    "SECTIONS",
    "TransferConfig",
]
