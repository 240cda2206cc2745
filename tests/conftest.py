"""Test configuration for convo tests."""

import pytest
from fastapi.testclient import TestClient

from convo.config import settings
from convo.services.security import registry


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Point the conversation store at a throwaway directory."""
    monkeypatch.setattr(settings, "data_dir", str(tmp_path))
    monkeypatch.setattr(settings, "site_url", "http://testserver")
    yield tmp_path


@pytest.fixture(autouse=True)
def fresh_nonces():
    registry.clear()
    yield
    registry.clear()


@pytest.fixture
def client():
    from convo.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def nonce(client):
    """Return a function producing a fresh X-Nonce header for the test client."""
    def issue() -> dict[str, str]:
        resp = client.get("/api/nonce")
        assert resp.status_code == 200
        return {"X-Nonce": resp.json()["nonce"]}
    return issue
