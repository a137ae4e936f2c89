"""Search backend adapters and utilities.

Primary components:
- ``base``: abstract ``SearchBackend`` interface, result models, and exceptions.
- ``solr``: Apache Solr implementation over the HTTP JSON API.
- ``opensearch``: OpenSearch implementation of the interface.
- ``factory``: helpers to construct a backend from ``SearchConfig``.

Guidance:
- Prefer constructing via ``factory.create_search_backend`` so the search
  service remains decoupled from specific engines.
"""
