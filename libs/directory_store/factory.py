"""Store factory for the discovery service.

Centralizes creation of the concrete stores so callers don't depend on
implementation details. Tests construct their own in-memory doubles and
bypass this module.
"""

from dataclasses import dataclass
import structlog

from libs.common.config import BaseConfig
from .base import DirectoryStore, KeyValueStore, SessionStore
from .postgres import PostgresBackend, PostgresDirectoryStore, PostgresSessionStore
from .redis_cache import RedisKeyValueStore

logger = structlog.get_logger("directory_store.factory")


@dataclass
class StoreBundle:
    """The three collaborators the discovery service needs."""
    directory: DirectoryStore
    sessions: SessionStore
    cache: KeyValueStore

    async def close(self) -> None:
        for store in (self.cache, self.sessions, self.directory):
            try:
                await store.close()
            except Exception as e:
                logger.warning("Failed to close store", store=type(store).__name__, error=str(e))


def create_stores_from_config(config: BaseConfig) -> StoreBundle:
    """Create PostgreSQL directory/session stores and the Redis cache store.

    The directory and session stores share one lazily created pool.
    """
    if not config.discovery_db_dsn:
        raise ValueError("DISCOVERY_DB_DSN is required")

    backend = PostgresBackend(
        dsn=config.discovery_db_dsn,
        pool_size=config.discovery_db_pool_size,
        command_timeout=config.discovery_db_command_timeout,
    )

    logger.info("Creating discovery stores", redis_url=config.discovery_redis_url)
    return StoreBundle(
        directory=PostgresDirectoryStore(backend),
        sessions=PostgresSessionStore(backend),
        cache=RedisKeyValueStore(config.discovery_redis_url),
    )
