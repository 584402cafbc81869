"""Repair pickups whose contamination_score was stored on a 1..10 or 0..100 scale."""
import asyncio
import sys

import structlog

from wastelink.core.config import settings
from wastelink.core.db import get_client, get_db
from wastelink.core.logging import configure_logging
from wastelink.repos.mongo import MongoPickupRepo
from wastelink.services.migrations import fix_contamination_scores

logger = structlog.get_logger("fix_contamination_scores")

async def main() -> int:
    try:
        await fix_contamination_scores(MongoPickupRepo(get_db()))
    except Exception:
        logger.exception("migration failed")
        return 1
    finally:
        get_client().close()
    return 0

if __name__ == "__main__":
    configure_logging(settings.log_level, settings.log_json)
    sys.exit(asyncio.run(main()))
