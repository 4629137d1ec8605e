"""Common utilities shared across services.

Includes:
- ``config``: Pydantic-based service configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.
- ``background``: fire-and-forget side-effect runner.

Import pattern:
- from libs.common.config import DiscoveryConfig
- from libs.common.logging import configure_logging
"""
