"""Core computational modules for CellType-Transfer.

This package contains the main analysis engines:
- classification: Correlation scoring and fine-tuning against one reference
- pruning: Delta-from-median confidence pruning
- combination: Multi-reference combination on recomputed scores
- matching: Mutual label matching between two references
"""
