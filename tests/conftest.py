"""
Test configuration: env vars must be set before main is imported.
"""
import os
import tempfile
import uuid
from pathlib import Path

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="travel-budget-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_DB_DIR) / 'test.db'}"
os.environ.setdefault("SECRET_KEY", "a" * 32 + "b" * 32)
os.environ.pop("AI_GATEWAY_API_KEY", None)

from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402


@pytest.fixture(scope="session")
def client():
    # one client for the whole session keeps the async engine on a single event loop
    with TestClient(main.app) as c:
        yield c


def register(client, name="Traveller"):
    email = f"user-{uuid.uuid4().hex[:12]}@mailbox.org"
    password = "s3cret-pass"
    resp = client.post("/auth/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 200, resp.text
    resp = client.post("/auth/login", data={"username": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture
def auth(client):
    return register(client)


@pytest.fixture
def other_auth(client):
    return register(client, name="Someone Else")


@pytest.fixture
def advice_override():
    """Install a fake AdviceGenerator; yields a setter taking the fake."""
    def install(fake):
        main.app.dependency_overrides[main.get_advice_generator] = lambda: fake
    yield install
    main.app.dependency_overrides.pop(main.get_advice_generator, None)
