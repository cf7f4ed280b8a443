"""Hybrid (dense + BM25) article recommendations with Reciprocal Rank Fusion."""

__version__ = "0.1.0"
