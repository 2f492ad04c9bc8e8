import fakeredis
import mongomock
import pytest

from app import create_app

TEST_CONFIG = {
    "TESTING": True,
    "SECRET_KEY": "test-secret",
    "BCRYPT_LOG_ROUNDS": 4,
    "REDIS_URL": None,
}


@pytest.fixture
def db():
    return mongomock.MongoClient()["propertydb_test"]


@pytest.fixture
def cache_client():
    return fakeredis.FakeRedis()


@pytest.fixture
def make_app(db, cache_client):
    def _make(cache=cache_client, **overrides):
        config = dict(TEST_CONFIG, **overrides)
        return create_app(config, db=db, cache_client=cache)
    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    """Register (if needed) and log in a user; returns request headers."""
    def _login(email, password="secret123"):
        client.post("/api/auth/register", json={"email": email, "password": password})
        resp = client.post("/api/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200
        return {"Authorization": f"Bearer {resp.get_json()['token']}"}
    return _login


@pytest.fixture
def alice(login):
    return login("alice@example.com")


@pytest.fixture
def bob(login):
    return login("bob@example.com")


@pytest.fixture
def new_listing(client):
    def _create(headers, **fields):
        body = {"title": "Lake View Villa", "type": "Villa", "price": 150, "city": "Pune"}
        body.update(fields)
        resp = client.post("/api/properties", json=body, headers=headers)
        assert resp.status_code == 200, resp.get_data(as_text=True)
        return resp.get_json()
    return _create
