import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import build_services, create_app
from realtime import WebSocketBroadcaster
from schemas import NGO, Individual, SocialWorker

DONOR = "donor-1"
NGO_ID = "ngo-1"
WORKER = "sw-1"


class RecordingBroadcaster(WebSocketBroadcaster):
    """Keeps every published event while still delivering to sockets."""

    def __init__(self):
        super().__init__()
        self.events = []

    def publish(self, scope, event, payload, exclude=None):
        self.events.append((scope, event, payload))
        super().publish(scope, event, payload, exclude=exclude)

    def named(self, event):
        return [(scope, payload) for scope, name, payload in self.events if name == event]


@pytest.fixture
def db():
    return mongomock.MongoClient().foodshare_test


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def services(db, broadcaster):
    return build_services(db, broadcaster)


@pytest.fixture
def people(services):
    services.identity.register(
        "individual",
        Individual(user_id=DONOR, full_name="Dana Donor", age=34, occupation="Chef", location="Pune"),
    )
    services.identity.register(
        "ngo",
        NGO(
            user_id=NGO_ID,
            organization_name="City Food Bank",
            registration_number="REG-1",
            founded_year=2005,
            focus_areas="hunger",
            location="Pune",
            team_size=12,
            contact_person="Ravi",
        ),
    )
    services.identity.register(
        "social-worker",
        SocialWorker(
            user_id=WORKER,
            full_name="Sam Worker",
            experience=5,
            education="MSW",
            specialization="community outreach",
            license_certification="LIC-9",
            working_areas="Pune East",
        ),
    )
    return {"donor": DONOR, "ngo": NGO_ID, "worker": WORKER}


def listing_data(**overrides):
    data = {
        "title": "Vegetable biryani",
        "description": "Leftover from a wedding, packed in boxes",
        "location": "Koregaon Park, Pune",
        "quantity": "20 portions",
        "expiry_time": "6 hours",
        "food_type": "cooked",
    }
    data.update(overrides)
    return data


@pytest.fixture
def listing_payload():
    return listing_data


@pytest.fixture
def make_listing(services, people):
    def _make(donor=DONOR, **overrides):
        return services.workflow.create_listing(donor, listing_data(**overrides))

    return _make


@pytest.fixture
def listing(make_listing):
    return make_listing()


@pytest.fixture
def app(db, broadcaster):
    return create_app(db, broadcaster, settings=Settings(environment="development"))


@pytest.fixture
def client(app):
    return TestClient(app)
