# wastelink/services/migrations.py
import structlog

from wastelink.services.scoring import repair_stored_score

logger = structlog.get_logger(__name__)

async def fix_contamination_scores(repo) -> int:
    """Rewrite stored scores that landed on the 1..10 or 0..100 scale. Returns how many were fixed."""
    invalid = await repo.find_scores_above(1)
    logger.info("contamination score migration started", candidates=len(invalid))

    fixed = 0
    for doc in invalid:
        old = doc["contamination_score"]
        new = repair_stored_score(old)
        await repo.set_score(doc["_id"], new)
        logger.debug("contamination score fixed", pickup_id=doc["_id"], old=old, new=new)
        fixed += 1

    logger.info("contamination score migration completed", fixed=fixed)
    return fixed
