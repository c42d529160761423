"""
Initialize the database: create all tables.
Run with: python -m scripts.init_db
"""

import asyncio
import logging

from clinic.config import configure_logging
from clinic.database import engine, init_models

logger = logging.getLogger("scripts.init_db")


async def init():
    logger.info("Creating database tables...")
    await init_models(engine)
    logger.info("All tables created successfully.")
    await engine.dispose()


if __name__ == "__main__":
    configure_logging()
    asyncio.run(init())
