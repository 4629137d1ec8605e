"""Store adapters for the directory discovery service.

Primary components:
- ``base``: abstract ``DirectoryStore``/``SessionStore``/``KeyValueStore``
  interfaces, the ``Session`` model and common exceptions.
- ``postgres``: asyncpg implementations calling the datastore procedures.
- ``redis_cache``: Redis implementation of ``KeyValueStore``.
- ``factory``: builds the production store bundle from configuration.
"""
