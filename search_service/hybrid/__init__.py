"""Hybrid search components for semantic + lexical ranking.

Includes the ``SearchManager`` which runs keyword, vector and fused
retrieval and degrades through keyword-only and vector-only stages when a
backend signal is unavailable.
"""
