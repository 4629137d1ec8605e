"""Retrieval helpers used before ranking.

Contents
- ``query_cache``: time-bounded memoization of search results
- ``embedding_client``: optional query embedding lookup
"""
