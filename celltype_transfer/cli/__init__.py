"""Command-line interface for CellType-Transfer.

Example Usage
-------------
    # From command line:
    celltype-transfer --help
    celltype-transfer classify --test test.csv --reference ref.csv --labels labels.csv --out out/
    celltype-transfer combine --test test.csv -r a.h5ad -r b.h5ad --label-column cell_type --out out/
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
