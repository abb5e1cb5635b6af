"""Matching module for comparing two references' label vocabularies."""

from .engine import MatchingConfig, MatchResult, match_references

__all__ = [
    "MatchingConfig",
    "MatchResult",
    "match_references",
]
