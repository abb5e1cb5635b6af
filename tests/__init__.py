"""Test suite for CellType-Transfer.

Test organization:
- fixtures/: Synthetic reference and test-matrix generators
- unit/: Unit tests for individual modules

Run tests with:
    pytest tests/
    pytest tests/unit/
    pytest tests/ -v --tb=short
"""
