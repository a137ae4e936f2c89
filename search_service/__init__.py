"""Search service package.

Layout:
- ``api``: HTTP endpoints for keyword, semantic and hybrid search plus cache admin.
- ``hybrid``: search orchestration and the hybrid fallback chain.
- ``ranking``: Reciprocal Rank Fusion.
- ``retrievers``: per-collection vector-search handles and their LRU cache.
- ``schema``: field discovery and schema resolution.
- ``embeddings``: query embedding client.
- ``intelligence``: query translation seam.
- ``adapters``: resilience helpers for external calls.
"""
