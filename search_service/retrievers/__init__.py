"""Retrieval handles and their lifetime management.

Contents
- ``vector_store``: a vector-search handle bound to one collection
- ``cache_manager``: bounded LRU cache owning one handle per collection
"""
