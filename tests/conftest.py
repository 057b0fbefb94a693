import pytest
from fastapi.testclient import TestClient

from remind.config import CONFIG
from remind.main import app, limiter
from remind.state import SessionStore


@pytest.fixture
def store():
    return SessionStore(config=CONFIG)


@pytest.fixture
def client(store):
    saved = CONFIG.model_dump()
    app.state.store = store
    limiter.enabled = False
    with TestClient(app) as c:
        yield c
    limiter.enabled = True
    for k, v in saved.items():
        setattr(CONFIG, k, v)
