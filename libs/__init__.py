"""Shared libraries for the directory discovery platform.

Subpackages:
- ``libs.common``: configuration, logging, metrics, and background side effects.
- ``libs.directory_store``: store abstractions and concrete backends.

Notes:
- Avoid service-specific logic; keep modules cohesive and broadly useful.
"""
