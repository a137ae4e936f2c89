"""Search ranking and result fusion components.

This package combines lexical and semantic signals into a single ranking.

Contents
- ``fusion``: Reciprocal Rank Fusion over keyword and vector result lists
"""
