from typing import Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from abtest.core.db import build_engine, get_db, init_db
from abtest.core.settings import config_settings
from abtest.engine.client import WriteOutcome
from abtest.engine.errors import NetworkError
from abtest.engine.identity import VisitorIdentity
from abtest.main import app
from abtest.models.schemas.assignment import AssignmentRecord
from abtest.models.schemas.experiment import Experiment, Variant
from abtest.models.orm.base import utcnow

API_TOKEN = "test-token"


@pytest.fixture
def session_factory():
    """In-memory SQLite shared across threads for the duration of one test."""
    engine = build_engine("sqlite://")
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def api(session_factory, monkeypatch):
    monkeypatch.setattr(config_settings, "api_tokens", API_TOKEN)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(api):
    return TestClient(api, headers={"Authorization": f"Bearer {API_TOKEN}"})


@pytest.fixture
def create_experiment(client):
    def _create(variations=None, **fields):
        payload = {
            "name": fields.pop("name", "Checkout button"),
            "variations": variations
            or [
                {"name": "A", "weight": 0.5, "isBaseline": True},
                {"name": "B", "weight": 0.5},
            ],
        }
        payload.update(fields)
        response = client.post("/api/experiments", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


def make_experiment(
    variants: Optional[List[Tuple[str, float, bool]]] = None,
    experiment_id: str = "exp-1",
    **fields,
) -> Experiment:
    variants = variants if variants is not None else [("A", 0.5, True), ("B", 0.5, False)]
    return Experiment(
        id=experiment_id,
        name="Checkout button",
        variants=[Variant(name=n, weight=w, is_baseline=b) for n, w, b in variants],
        **fields,
    )


class FakePersistenceClient:
    """Stands in for PersistenceClient, keeping assignments in a dict."""

    def __init__(self, experiments: Optional[Dict[str, Experiment]] = None):
        self.experiments = experiments or {}
        self.rows: Dict[Tuple[str, VisitorIdentity], str] = {}
        self.calls: List[Tuple[str, str]] = []
        self.tracked: List[Tuple[str, str, str, Optional[float]]] = []
        self.fail_with: Optional[NetworkError] = None

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def read_assignment(self, experiment_id, identity):
        self.calls.append(("read", experiment_id))
        self._maybe_fail()
        variant = self.rows.get((experiment_id, identity))
        if variant is None:
            return None
        return AssignmentRecord(experiment=experiment_id, variation=variant, timestamp=utcnow())

    async def write_assignment(self, experiment_id, identity, variant):
        self.calls.append(("write", experiment_id))
        self._maybe_fail()
        if (experiment_id, identity) in self.rows:
            return WriteOutcome.ALREADY_EXISTS
        self.rows[(experiment_id, identity)] = variant
        return WriteOutcome.CREATED

    async def fetch_experiment(self, experiment_id):
        self.calls.append(("fetch", experiment_id))
        self._maybe_fail()
        if experiment_id not in self.experiments:
            raise NetworkError("HTTP error! status: 404", status_code=404)
        return self.experiments[experiment_id]

    async def track_success(self, experiment_id, user_id, event="success", value=1):
        self.calls.append(("track", experiment_id))
        self._maybe_fail()
        self.tracked.append((experiment_id, user_id, event, value))

    async def aclose(self):
        pass

    @property
    def backend_calls(self) -> List[Tuple[str, str]]:
        return [call for call in self.calls if call[0] in ("read", "write")]


@pytest.fixture
def fake_client():
    return FakePersistenceClient()
