import os
from datetime import datetime, timezone

import pytest

# Must be set before app.py builds its engine
os.environ["SRS_DATABASE_URL"] = "sqlite://"

from fastapi.testclient import TestClient

from models import Base
from spaced_rep import SchedulerConfig


@pytest.fixture
def now():
    return datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def config():
    return SchedulerConfig()


@pytest.fixture
def client():
    from app import app, engine

    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_items(client):
    def _make(*words):
        ids = []
        for word in words:
            resp = client.post("/api/items", json={"word": word, "translation": f"{word}-tr"})
            assert resp.status_code == 200
            ids.append(resp.json()["id"])
        return ids
    return _make
