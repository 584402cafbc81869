# wastelink/repos/mongo.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument

def _plain(v: Any) -> Any:
    return v.value if isinstance(v, Enum) else v

def _to_filter(pickup_id: str, expected: Dict[str, Any]) -> dict:
    q: Dict[str, Any] = {"_id": pickup_id}
    for key, want in expected.items():
        if isinstance(want, (set, frozenset, list, tuple)):
            q[key] = {"$in": [_plain(w) for w in want]}
        else:
            # None also matches a missing field
            q[key] = _plain(want)
    return q

class MongoPickupRepo:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db.pickups

    async def insert(self, doc: dict) -> dict:
        await self.col.insert_one(doc)
        return doc

    async def get(self, pickup_id: str) -> Optional[dict]:
        return await self.col.find_one({"_id": pickup_id})

    async def update_where(self, pickup_id: str, expected: Dict[str, Any], changes: Dict[str, Any],
                           history: Optional[dict] = None) -> Optional[dict]:
        update: Dict[str, Any] = {
            "$set": {**{k: _plain(v) for k, v in changes.items()}, "updated_at": datetime.now(timezone.utc)},
        }
        want = expected.get("version")
        if want is None:
            update["$inc"] = {"version": 1}
        else:
            # a missing version field counts as 1, so write the successor explicitly
            seen = [v for v in (want if isinstance(want, (list, tuple, set, frozenset)) else [want]) if v is not None]
            update["$set"]["version"] = max(seen) + 1
        if history is not None:
            update["$push"] = {"history": history}
        return await self.col.find_one_and_update(
            _to_filter(pickup_id, expected), update, return_document=ReturnDocument.AFTER,
        )

    async def list_all(self, limit: int = 100) -> List[dict]:
        cur = self.col.find().sort("created_at", DESCENDING).limit(limit)
        return [d async for d in cur]

    async def list_available(self, lng: Optional[float] = None, lat: Optional[float] = None,
                             radius_m: float = 5000, limit: int = 50) -> List[dict]:
        q: Dict[str, Any] = {"status": "pending", "assigned_to": None}
        if lng is not None and lat is not None:
            q["geom"] = {
                "$near": {
                    "$geometry": {"type": "Point", "coordinates": [lng, lat]},
                    "$maxDistance": radius_m,
                }
            }
        cur = self.col.find(q).sort("contamination_score", DESCENDING).limit(limit)
        return [d async for d in cur]

    async def find_scores_above(self, threshold: float) -> List[dict]:
        return [d async for d in self.col.find({"contamination_score": {"$gt": threshold}})]

    async def set_score(self, pickup_id: str, score: float) -> None:
        await self.col.update_one({"_id": pickup_id}, {"$set": {"contamination_score": score}})

class MongoNotificationStore:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db.notifications

    async def add(self, record: dict) -> None:
        await self.col.insert_one(dict(record))

    async def list_for(self, recipient_id: str, audience: Optional[str] = None, limit: int = 100) -> List[dict]:
        q: Dict[str, Any] = {"recipient_id": recipient_id}
        if audience:
            q = {"$or": [q, {"audience": audience}]}
        cur = self.col.find(q).sort("created_at", DESCENDING).limit(limit)
        return [r async for r in cur]
