"""Create database tables for the configured DATABASE_URL."""

import asyncio
import logging

from billsplit.core import database

logger = logging.getLogger(__name__)


async def main():
    logger.info("Initializing database tables...")
    await database.init_db()
    info = database.get_db_debug_info()
    logger.info("Database ready (%s)", info.get("url") or info)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
