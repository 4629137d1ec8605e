"""API subpackage for the discovery service.

Exposes ``POST /discover``. The transport layer stays thin and delegates to
``DiscoveryService``.
"""
