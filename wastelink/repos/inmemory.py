# wastelink/repos/inmemory.py
import asyncio
import copy
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

def _plain(v: Any) -> Any:
    return v.value if isinstance(v, Enum) else v

def _matches(doc: dict, expected: Dict[str, Any]) -> bool:
    for key, want in expected.items():
        have = doc.get(key)
        if isinstance(want, (set, frozenset, list, tuple)):
            if _plain(have) not in {_plain(w) for w in want}:
                return False
        elif _plain(have) != _plain(want):
            return False
    return True

def _haversine_m(p1: Tuple[float, float], p2: Tuple[float, float]) -> float:
    R = 6371000.0
    lat1, lon1 = math.radians(p1[0]), math.radians(p1[1])
    lat2, lon2 = math.radians(p2[0]), math.radians(p2[1])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat/2)**2 + math.cos(lat1)*math.cos(lat2)*math.sin(dlon/2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1-a))
    return R * c

class InMemoryPickupRepo:
    """Dict-backed store with the same conditional-update semantics as Mongo.

    ``update_where`` applies changes only when every field in ``expected``
    matches (a set/list means "one of"), all under one lock, so a concurrent
    caller either sees the whole write or none of it.
    """

    def __init__(self):
        self.pickups: Dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def insert(self, doc: dict) -> dict:
        async with self._lock:
            if doc["_id"] in self.pickups:
                raise ValueError("Duplicate pickup id")
            self.pickups[doc["_id"]] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    async def get(self, pickup_id: str) -> Optional[dict]:
        doc = self.pickups.get(pickup_id)
        return copy.deepcopy(doc) if doc else None

    async def update_where(self, pickup_id: str, expected: Dict[str, Any], changes: Dict[str, Any],
                           history: Optional[dict] = None) -> Optional[dict]:
        async with self._lock:
            doc = self.pickups.get(pickup_id)
            if doc is None or not _matches(doc, expected):
                return None
            updated = copy.deepcopy(doc)
            updated.update(copy.deepcopy(changes))
            updated["version"] = doc.get("version", 1) + 1
            updated["updated_at"] = datetime.now(timezone.utc)
            if history is not None:
                updated.setdefault("history", []).append(copy.deepcopy(history))
            self.pickups[pickup_id] = updated
            return copy.deepcopy(updated)

    async def list_all(self, limit: int = 100) -> List[dict]:
        docs = sorted(self.pickups.values(), key=lambda d: d.get("created_at") or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return [copy.deepcopy(d) for d in docs[:limit]]

    async def list_available(self, lng: Optional[float] = None, lat: Optional[float] = None,
                             radius_m: float = 5000, limit: int = 50) -> List[dict]:
        out = []
        for d in self.pickups.values():
            if _plain(d.get("status")) != "pending" or d.get("assigned_to") is not None:
                continue
            if lng is not None and lat is not None:
                geom = d.get("geom")
                if not geom:
                    continue
                g_lng, g_lat = geom["coordinates"]
                if _haversine_m((lat, lng), (g_lat, g_lng)) > radius_m:
                    continue
            out.append(d)
        out.sort(key=lambda d: d.get("contamination_score", 0), reverse=True)
        return [copy.deepcopy(d) for d in out[:limit]]

    async def find_scores_above(self, threshold: float) -> List[dict]:
        return [copy.deepcopy(d) for d in self.pickups.values() if d.get("contamination_score", 0) > threshold]

    async def set_score(self, pickup_id: str, score: float) -> None:
        async with self._lock:
            if pickup_id in self.pickups:
                self.pickups[pickup_id]["contamination_score"] = score

class InMemoryNotificationStore:
    def __init__(self):
        self.records: List[dict] = []

    async def add(self, record: dict) -> None:
        self.records.append(copy.deepcopy(record))

    async def list_for(self, recipient_id: str, audience: Optional[str] = None, limit: int = 100) -> List[dict]:
        mine = [r for r in self.records
                if r.get("recipient_id") == recipient_id or (audience and r.get("audience") == audience)]
        mine.sort(key=lambda r: r["created_at"], reverse=True)
        return [copy.deepcopy(r) for r in mine[:limit]]
