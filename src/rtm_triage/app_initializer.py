"""
Application wiring for RTM-Triage.

Builds the triage engine and its storage backends from configuration and
owns their startup and shutdown.
"""

import logging
from typing import Optional

from rtm_triage.audit.logger import AuditLogger
from rtm_triage.core.config.manager import ConfigManager
from rtm_triage.core.engine import TriageEngine
from rtm_triage.core.exceptions import StorageError, TriageError
from rtm_triage.storage.base import AlertStore, ObservationSource
from rtm_triage.storage.postgres import PostgreSQLAlertStore, PostgreSQLObservationSource
from rtm_triage.storage.redis import RedisQueueCache


class TriageApplication:
    """Main application class for RTM-Triage."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        config_manager: Optional[ConfigManager] = None,
        store: Optional[AlertStore] = None,
        source: Optional[ObservationSource] = None,
    ):
        """Initialize the application.

        Args:
            config_path: Path to configuration file
            config_manager: Pre-built configuration, takes precedence over config_path
            store: Alert store to use instead of PostgreSQL
            source: Observation source to use instead of PostgreSQL
        """
        self.config_path = config_path
        self.config_manager = config_manager
        self.store = store
        self.source = source
        self.queue_cache: Optional[RedisQueueCache] = None
        self.audit_logger: Optional[AuditLogger] = None
        self.engine: Optional[TriageEngine] = None
        self.initialized = False
        self.logger = logging.getLogger(__name__)

    async def initialize(self):
        """Initialize the application components."""
        try:
            if self.config_manager is None:
                self.config_manager = ConfigManager(self.config_path)

            logging_config = self.config_manager.get_logging_config()
            logging.getLogger("rtm_triage").setLevel(logging_config.level.upper())
            self.audit_logger = AuditLogger(self.config_manager)

            if self.store is None:
                db_config = self.config_manager.get_database_config()
                postgres = PostgreSQLAlertStore(
                    db_config.dsn,
                    min_size=db_config.pool_min_size,
                    max_size=db_config.pool_max_size,
                    command_timeout=db_config.command_timeout,
                )
                await postgres.initialize()
                self.store = postgres
            else:
                await self.store.initialize()

            if self.source is None:
                if not isinstance(self.store, PostgreSQLAlertStore):
                    raise TriageError("An observation source is required with a custom alert store")
                self.source = PostgreSQLObservationSource(self.store.pool)

            redis_config = self.config_manager.get_redis_config()
            if redis_config.enabled:
                cache = RedisQueueCache(redis_config.url, redis_config.max_connections)
                try:
                    await cache.initialize()
                    self.queue_cache = cache
                except StorageError as e:
                    # The mirror is optional; ranking still works without it
                    self.logger.warning(f"Redis queue mirror unavailable: {e}")

            self.engine = TriageEngine(
                self.store,
                self.source,
                self.config_manager,
                self.audit_logger,
                self.queue_cache,
            )
            self.initialized = True
            self.logger.info("RTM-Triage application initialized successfully")

        except TriageError as e:
            self.logger.error(f"Failed to initialize application: {e}")
            raise
        except Exception as e:
            self.logger.error(f"Failed to initialize application: {e}")
            raise TriageError(f"Application initialization failed: {e}")

    async def shutdown(self):
        """Shutdown the application gracefully."""
        self.logger.info("Shutting down RTM-Triage application...")
        if self.queue_cache:
            await self.queue_cache.close()
        if self.store:
            await self.store.close()
        self.initialized = False
        self.logger.info("RTM-Triage application shutdown completed")

    async def health_check(self) -> dict:
        """Component health; the application is healthy when storage is."""
        components = {"storage": False, "queue_cache": None}
        if self.engine:
            components["storage"] = await self.engine.health_check()
        if self.queue_cache:
            components["queue_cache"] = await self.queue_cache.health_check()
        return {
            "healthy": self.initialized and components["storage"],
            "components": components,
        }
