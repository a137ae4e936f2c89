"""Document indexing.

``DocumentIndexer`` embeds document content through the embedding service
and writes the documents, with their vectors and ``metadata_``-prefixed
fields, to a collection of the search backend.
"""
