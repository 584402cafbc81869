# wastelink/core/indexes.py
from pymongo import ASCENDING, DESCENDING, GEOSPHERE

async def ensure_indexes(db):
    await db.pickups.create_index([("geom", GEOSPHERE)], name="geom_2dsphere")
    await db.pickups.create_index(
        [("status", ASCENDING), ("assigned_to", ASCENDING), ("created_at", DESCENDING)],
        name="status_assignee_created",
    )
    await db.pickups.create_index([("contamination_score", DESCENDING)], name="contamination_score_-1")
    await db.pickups.create_index([("requested_by", ASCENDING)], name="requested_by_1")
    # notifications lookup
    await db.notifications.create_index([("recipient_id", ASCENDING), ("created_at", DESCENDING)])
