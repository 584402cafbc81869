from types import SimpleNamespace

import pytest
from pymongo import ReturnDocument

from conftest import DRIVER, HOUSEHOLD, IMAGE, FakeProvider, RecordingPublisher, create_request
from wastelink.core.errors import NotFound
from wastelink.core.states import FACILITY_ASSIGNABLE_STATES, PickupStatus
from wastelink.repos.mongo import MongoNotificationStore, MongoPickupRepo, _to_filter
from wastelink.services.contamination import ContaminationPipeline
from wastelink.services.pickups import PickupService

pytestmark = pytest.mark.anyio

class FakeCursor:
    def __init__(self, docs):
        self.docs = docs
        self.sorted_by = None
        self.limited = None

    def sort(self, key, direction):
        self.sorted_by = (key, direction)
        return self

    def limit(self, n):
        self.limited = n
        return self

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for d in self.docs:
            yield d

class FakeCollection:
    """Records the arguments Motor would receive."""

    def __init__(self, returns=None):
        self.returns = returns
        self.calls = []
        self.queries = []

    async def find_one_and_update(self, query, update, **kwargs):
        self.calls.append((query, update, kwargs))
        return self.returns

    async def insert_one(self, doc):
        self.calls.append(("insert", doc))

    async def find_one(self, query):
        self.queries.append(query)
        return self.returns

    def find(self, query=None):
        self.queries.append(query)
        self.cursor = FakeCursor([self.returns] if self.returns else [])
        return self.cursor

def mongo_repo(returns=None):
    col = FakeCollection(returns)
    return MongoPickupRepo(SimpleNamespace(pickups=col)), col

# ---------- filters ----------
def test_claim_filter_uses_plain_values():
    q = _to_filter("p1", {"status": PickupStatus.PENDING, "assigned_to": None})
    assert q == {"_id": "p1", "status": "pending", "assigned_to": None}

def test_facility_filter_becomes_in_clause():
    q = _to_filter("p1", {"version": 3, "status": FACILITY_ASSIGNABLE_STATES})
    assert q["version"] == 3
    assert sorted(q["status"]["$in"]) == ["assigned", "completed", "pending", "picked_up"]

def test_versionless_records_match_version_one():
    q = _to_filter("p1", {"version": [1, None], "status": PickupStatus.ASSIGNED})
    assert q == {"_id": "p1", "version": {"$in": [1, None]}, "status": "assigned"}

# ---------- update document ----------
async def test_update_sets_next_version_and_pushes_history():
    repo, col = mongo_repo(returns={"_id": "p1"})
    history = {"to_status": "picked_up"}
    doc = await repo.update_where("p1", {"version": 3, "status": PickupStatus.ASSIGNED},
                                  {"status": PickupStatus.PICKED_UP, "driver_notes": "gate"}, history)
    assert doc == {"_id": "p1"}

    query, update, kwargs = col.calls[0]
    assert query == {"_id": "p1", "version": 3, "status": "assigned"}
    assert update["$set"]["status"] == "picked_up"
    assert update["$set"]["driver_notes"] == "gate"
    assert update["$set"]["version"] == 4
    assert "updated_at" in update["$set"]
    assert "$inc" not in update
    assert update["$push"] == {"history": history}
    assert kwargs["return_document"] == ReturnDocument.AFTER

async def test_versionless_record_is_written_as_version_two():
    repo, col = mongo_repo(returns={"_id": "p1"})
    await repo.update_where("p1", {"version": [1, None]}, {"facility_id": "fac-1"})
    _, update, _ = col.calls[0]
    assert update["$set"]["version"] == 2
    assert "$push" not in update

async def test_claim_update_increments_version():
    repo, col = mongo_repo(returns={"_id": "p1"})
    await repo.update_where("p1", {"status": PickupStatus.PENDING, "assigned_to": None},
                            {"status": "assigned", "assigned_to": "driver-1"})
    query, update, _ = col.calls[0]
    assert query["assigned_to"] is None
    assert update["$inc"] == {"version": 1}
    assert "version" not in update["$set"]

async def test_miss_returns_none():
    repo, _ = mongo_repo(returns=None)
    assert await repo.update_where("p1", {"version": 2}, {"facility_id": "x"}) is None

# ---------- service over the Mongo repo ----------
async def test_lost_claim_surfaces_not_found():
    repo, col = mongo_repo(returns=None)
    publisher = RecordingPublisher()
    service = PickupService(repo, ContaminationPipeline(FakeProvider(), publisher), publisher)
    await service.create(create_request(), IMAGE, HOUSEHOLD)

    with pytest.raises(NotFound):
        await service.claim("p1", DRIVER)
    query, _, _ = col.calls[-1]
    assert query == {"_id": "p1", "status": "pending", "assigned_to": None}
    assert publisher.kinds == ["pickup.created"]

async def test_available_query_is_pending_and_unassigned():
    repo, col = mongo_repo()
    await repo.list_available(lng=36.8, lat=-1.29, radius_m=1500, limit=10)
    q = col.queries[-1]
    assert q["status"] == "pending" and q["assigned_to"] is None
    assert q["geom"]["$near"]["$geometry"]["coordinates"] == [36.8, -1.29]
    assert q["geom"]["$near"]["$maxDistance"] == 1500
    assert col.cursor.limited == 10

async def test_notification_query_includes_audience():
    col = FakeCollection()
    store = MongoNotificationStore(SimpleNamespace(notifications=col))
    await store.list_for("council-1", "council")
    assert col.queries[-1] == {"$or": [{"recipient_id": "council-1"}, {"audience": "council"}]}
    await store.list_for("house-1")
    assert col.queries[-1] == {"recipient_id": "house-1"}
