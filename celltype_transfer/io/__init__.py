"""I/O utilities for CellType-Transfer.

Provides logging, table loading and result export.
"""

from .logging import close_logger, get_logger, get_timestamped_log_path, log_json, log_yaml
from .tables import (
    ensure_output_dir,
    export_classification,
    export_combined,
    export_match,
    export_pruning,
    load_expression_matrix,
    load_label_map,
    load_labels,
    load_reference,
    write_dataframe,
)

__all__ = [
    # Logging
    "close_logger",
    "get_logger",
    "get_timestamped_log_path",
    "log_json",
    "log_yaml",
    # Tables
    "ensure_output_dir",
    "load_expression_matrix",
    "load_label_map",
    "load_labels",
    "load_reference",
    "write_dataframe",
    "export_classification",
    "export_combined",
    "export_match",
    "export_pruning",
]
