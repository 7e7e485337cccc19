"""
Inventory Migration - Process Entry Point

Connects to MongoDB, runs the migration and prints the summary.

Exit codes:
- 0: the run completed, even if some groups failed or verification
  found mismatches (both are reported in the summary)
- 1: configuration error, store unreachable, or any other fatal error
"""

import asyncio
import logging
import sys
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient

from .config import MigrationSettings
from .exceptions import MigrationError
from .job import InventoryMigrationJob, MigrationSummary
from .repository import MigrationRepository, MotorRepository

logger = logging.getLogger(__name__)

SERVER_SELECTION_TIMEOUT_MS = 10000


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


async def run_migration(
    settings: MigrationSettings,
    repository: MigrationRepository
) -> MigrationSummary:
    """Check the store is reachable, then run every phase."""
    await repository.ping()
    job = InventoryMigrationJob(repository, settings)
    return await job.run()


async def main(
    settings: Optional[MigrationSettings] = None,
    repository: Optional[MigrationRepository] = None
) -> int:
    """
    Run the migration and return the process exit code.

    A repository can be injected; otherwise a MotorRepository is created from
    MONGO_URL / DB_NAME and closed afterwards.
    """
    try:
        settings = settings or MigrationSettings.from_env()
    except MigrationError as e:
        configure_logging()
        logger.error(f"Invalid configuration: {e.message}")
        return 1

    configure_logging(settings.log_level)
    logger.info("Starting inventory_logs refactoring...")

    client = None
    if repository is None:
        client = AsyncIOMotorClient(settings.mongo_url, serverSelectionTimeoutMS=SERVER_SELECTION_TIMEOUT_MS)
        repository = MotorRepository(client, settings.db_name)

    try:
        summary = await run_migration(settings, repository)
    except MigrationError as e:
        logger.error(f"Fatal error: {e.message}")
        return 1
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    finally:
        if client is not None:
            client.close()

    print(summary.render())
    print(f"\nOld data is preserved in: {settings.legacy_collection}")
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
