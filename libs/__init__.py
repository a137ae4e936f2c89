"""Shared libraries for the hybrid search service.

Subpackages:
- ``libs.common``: configuration, logging, and metrics.
- ``libs.search_backend``: search backend abstraction and concrete backends.

Notes:
- Avoid orchestration logic here; keep modules cohesive and broadly useful.
"""
