import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from dashquery.core.analytics.service import AnalyticsService
from dashquery.core.config import Settings, settings as default_settings
from dashquery.core.database import Database


def configure_logging(config: Optional[Settings] = None) -> None:
    config = config or default_settings
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_service(
    config: Optional[Settings] = None, db: Optional[Database] = None
) -> AnalyticsService:
    """Build the analytics service over an existing or freshly opened database."""
    config = config or default_settings
    return AnalyticsService(db or Database.open(config), config=config)


# Open the connection for the lifetime of the host application and close it after
@asynccontextmanager
async def lifespan(config: Optional[Settings] = None) -> AsyncIterator[AnalyticsService]:
    config = config or default_settings
    configure_logging(config)

    db = Database.open(config)
    try:
        if await db.ping():
            logging.getLogger(__name__).info("Database connection test successful")
        yield AnalyticsService(db, config=config)
    finally:
        db.close()
