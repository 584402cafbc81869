# tests/conftest.py
import pytest
from httpx import AsyncClient, ASGITransport
from asgi_lifespan import LifespanManager

from wastelink.core.errors import UpstreamUnavailable
from wastelink.core.policy import Role
from wastelink.main import app
from wastelink.models.pickup import Actor, ImageRef, PickupCreate
from wastelink.repos.inmemory import InMemoryPickupRepo
from wastelink.services.contamination import ContaminationPipeline
from wastelink.services.pickups import PickupService
from wastelink.services.scoring import RawScore, label_for

@pytest.fixture(scope="session")
def anyio_backend():
    # keep AnyIO on asyncio for the whole test session
    return "asyncio"

@pytest.fixture(scope="session")
async def test_client():
    # Start FastAPI lifespan once for the whole session
    async with LifespanManager(app):
        transport = ASGITransport(app=app, raise_app_exceptions=True)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

# ---------- fakes ----------
class RecordingPublisher:
    def __init__(self):
        self.events = []

    async def emit(self, kind, payload):
        self.events.append((kind, payload))

    @property
    def kinds(self):
        return [k for k, _ in self.events]

    def payloads(self, kind):
        return [p for k, p in self.events if k == kind]

class FakeProvider:
    name = "fake"

    def __init__(self, score=3, fail_url=False, fail_bytes=False):
        self.score = score
        self.fail_url = fail_url
        self.fail_bytes = fail_bytes
        self.calls = []

    async def score_url(self, image_url, waste_type, location):
        self.calls.append(("url", image_url, waste_type, location))
        if self.fail_url:
            raise UpstreamUnavailable("url scoring down")
        return RawScore(score=self.score, label=label_for(self.score))

    async def score_bytes(self, content, filename, waste_type, location):
        self.calls.append(("bytes", filename, waste_type, location))
        if self.fail_bytes:
            raise UpstreamUnavailable("buffer scoring down")
        return RawScore(score=self.score, label=label_for(self.score))

# ---------- actors ----------
HOUSEHOLD = Actor(user_id="house-1", role=Role.HOUSEHOLD)
NEIGHBOUR = Actor(user_id="house-2", role=Role.HOUSEHOLD)
DRIVER = Actor(user_id="driver-1", role=Role.DRIVER)
OTHER_DRIVER = Actor(user_id="driver-2", role=Role.DRIVER)
COUNCIL = Actor(user_id="council-1", role=Role.COUNCIL)
RECYCLER = Actor(user_id="recycler-1", role=Role.RECYCLER)

IMAGE = ImageRef(public_id="pickups/abc", secure_url="https://img.example/abc.jpg",
                 content=b"\xff\xd8fake-jpeg", filename="abc.jpg")

def create_request(**kw) -> PickupCreate:
    data = {"waste_type": "plastic", "estimated_weight_kg": 5, "address": "12 Market St"}
    data.update(kw)
    return PickupCreate(**data)

# ---------- service fixtures ----------
@pytest.fixture
def publisher():
    return RecordingPublisher()

@pytest.fixture
def provider():
    return FakeProvider()

@pytest.fixture
def repo():
    return InMemoryPickupRepo()

@pytest.fixture
def pipeline(provider, publisher):
    return ContaminationPipeline(provider, publisher, alert_threshold=6, timeout_s=1.0)

@pytest.fixture
def service(repo, pipeline, publisher):
    return PickupService(repo, pipeline, publisher)
