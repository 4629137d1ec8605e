"""Hybrid search components.

Includes the ``HybridSearchResolver`` which combines vector similarity
(semantic) search with a deterministic text fallback behind the query cache.
"""
