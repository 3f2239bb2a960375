"""
Database setup for RTM-Triage.

Creates the alerts schema and checks connectivity of the configured
backends for development and testing environments.
"""

from typing import Optional

from rtm_triage.core.config.manager import ConfigManager
from rtm_triage.storage.postgres import PostgreSQLAlertStore
from rtm_triage.storage.redis import RedisQueueCache


async def setup_database(config_path: Optional[str] = None, echo=print) -> bool:
    """Set up the database schema and check the Redis mirror."""
    echo("Setting up database...")

    config = ConfigManager(config_path)
    db_config = config.get_database_config()
    postgres_store = PostgreSQLAlertStore(db_config.dsn)

    try:
        # Initialize storage (creates tables)
        await postgres_store.initialize()
        echo("✅ PostgreSQL database initialized successfully")

        if await postgres_store.health_check():
            echo("✅ PostgreSQL health check passed")
        else:
            echo("❌ PostgreSQL health check failed")
            return False

    except Exception as e:
        echo(f"❌ Failed to set up PostgreSQL: {e}")
        return False
    finally:
        await postgres_store.close()

    redis_config = config.get_redis_config()
    if not redis_config.enabled:
        echo("Redis queue mirror disabled, skipping")
        return True

    echo("\nSetting up Redis...")
    queue_cache = RedisQueueCache(redis_config.url, redis_config.max_connections)
    try:
        await queue_cache.initialize()
        if await queue_cache.health_check():
            echo("✅ Redis health check passed")
        else:
            echo("❌ Redis health check failed")
            return False
    except Exception as e:
        echo(f"❌ Failed to set up Redis: {e}")
        return False
    finally:
        await queue_cache.close()

    echo("\n🎉 Database setup completed successfully!")
    return True
