"""Tests for the hybrid search service.

One module per component: rank fusion, the collection handle cache, schema
resolution, backends, the embedding client, the search manager and the HTTP
surface. External services are replaced by mocks and mock transports.
"""
