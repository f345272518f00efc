"""
Rebuild the hosted search indices from the database.

Usage:
    python scripts/build_search_index.py

Needs DATABASE_URL, ALGOLIA_APP_ID and ALGOLIA_ADMIN_API_KEY.
"""

import asyncio
import sys

from loguru import logger

from openforum.core.config import settings
from openforum.core.database import close_db, get_session_factory
from openforum.core.logging import setup_logging
from openforum.modules.search.client import AlgoliaClient, SearchServiceError
from openforum.modules.search.indexer import SearchIndexer


async def main() -> int:
    setup_logging()

    if not settings.algolia_app_id:
        logger.error("Missing ALGOLIA_APP_ID environment variable")
        return 1
    if not settings.algolia_admin_api_key:
        logger.error("Missing ALGOLIA_ADMIN_API_KEY environment variable")
        return 1

    logger.info(f"Building search indices for Algolia app {settings.algolia_app_id}")
    client = AlgoliaClient(api_key=settings.algolia_admin_api_key)

    try:
        async with get_session_factory()() as session:
            counts = await SearchIndexer(session, client).build_all()
    except SearchServiceError as e:
        logger.error(f"Error building search index: {e}")
        return 1
    finally:
        await close_db()

    logger.info(f"Search index build completed: {counts}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
