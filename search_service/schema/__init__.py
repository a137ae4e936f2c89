"""Schema discovery for collections.

Contents
- ``field_resolver``: resolves the fields actually used in a collection
  against explicit and dynamic schema declarations
"""
