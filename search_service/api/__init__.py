"""API subpackage for the search service.

Routers expose keyword, semantic and hybrid search plus cache administration.
Transport layer remains thin and delegates to ``SearchManager``.
"""
