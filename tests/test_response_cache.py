import json
import time

import fakeredis
import pytest
import redis
from flask import Flask, jsonify
from tenacity import wait_none

import app as server
import db_redis
from db_redis import ResponseCache, cached_response


@pytest.fixture
def store_calls(monkeypatch):
    """Count how often the listing search reaches MongoDB."""
    calls = []
    original = server.find_properties

    def spy(query):
        calls.append(query)
        return original(query)

    monkeypatch.setattr(server, "find_properties", spy)
    return calls


class BrokenRedis:
    def _down(self, *args, **kwargs):
        raise redis.ConnectionError("connection refused")

    get = setex = pipeline = zrange = zremrangebyscore = delete = zrem = ping = _down


def test_second_identical_search_is_served_from_cache(client, alice, new_listing, store_calls):
    new_listing(alice)

    first = client.get("/api/properties?city=pune&priceMin=100")
    second = client.get("/api/properties?city=pune&priceMin=100")

    assert first.status_code == second.status_code == 200
    assert first.get_data() == second.get_data()
    assert second.mimetype == "application/json"
    assert len(store_calls) == 1


def test_parameter_order_does_not_split_cache_entries(client, store_calls):
    client.get("/api/properties?city=pune&type=Villa")
    client.get("/api/properties?type=Villa&city=pune")
    assert len(store_calls) == 1


def test_different_params_are_cached_separately(client, store_calls):
    client.get("/api/properties?city=pune")
    client.get("/api/properties?city=mumbai")
    assert len(store_calls) == 2


def test_entries_expire_after_ttl(make_app, store_calls):
    client = make_app(CACHE_TTL=1).test_client()

    client.get("/api/properties")
    client.get("/api/properties")
    assert len(store_calls) == 1

    time.sleep(1.5)
    client.get("/api/properties")
    assert len(store_calls) == 2


def test_default_ttl_is_one_hour(client, cache_client):
    client.get("/api/properties?title=x")
    key = ResponseCache.key_for("properties", {"title": ["x"]})
    assert 3590 < cache_client.ttl(key) <= 3600


def test_stored_body_is_exactly_what_was_sent(client, cache_client, alice, new_listing):
    new_listing(alice)
    resp = client.get("/api/properties")
    assert cache_client.get(ResponseCache.key_for("properties", {})) == resp.get_data()


def test_cache_outage_falls_through_to_database(make_app, store_calls):
    app = make_app(cache=BrokenRedis())
    client = app.test_client()
    client.post("/api/auth/register", json={"email": "x@example.com", "password": "pw123456"})
    token = client.post("/api/auth/login", json={"email": "x@example.com", "password": "pw123456"}).get_json()["token"]
    headers = {"Authorization": f"Bearer {token}"}

    assert client.post("/api/properties", json={"title": "Flat"}, headers=headers).status_code == 200

    for _ in range(2):
        resp = client.get("/api/properties")
        assert resp.status_code == 200
        assert [p["title"] for p in resp.get_json()] == ["Flat"]
    assert len(store_calls) == 2


def test_no_cache_configured(make_app, store_calls):
    client = make_app(cache=None).test_client()
    client.get("/api/properties")
    client.get("/api/properties")
    assert len(store_calls) == 2


def test_create_purges_cached_searches(client, alice, new_listing, store_calls):
    assert client.get("/api/properties").get_json() == []

    new_listing(alice)
    assert len(client.get("/api/properties").get_json()) == 1
    assert len(store_calls) == 2


def test_update_purges_cached_searches(client, alice, new_listing):
    listing = new_listing(alice, title="Old Name")
    assert client.get("/api/properties?title=new").get_json() == []

    client.put(f"/api/properties/{listing['_id']}", json={"title": "New Name"}, headers=alice)
    assert [p["title"] for p in client.get("/api/properties?title=new").get_json()] == ["New Name"]


def test_delete_purges_only_searches_that_returned_the_listing(client, alice, new_listing, store_calls):
    doomed = new_listing(alice, title="Doomed", city="Goa")
    new_listing(alice, title="Keeper", city="Pune")

    client.get("/api/properties?city=goa")
    client.get("/api/properties?city=pune")
    assert len(store_calls) == 2

    client.delete(f"/api/properties/{doomed['_id']}", headers=alice)

    assert client.get("/api/properties?city=goa").get_json() == []
    assert len(store_calls) == 3
    client.get("/api/properties?city=pune")
    assert len(store_calls) == 3


def test_writes_leave_cache_stale_when_invalidation_is_off(make_app, alice, store_calls):
    client = make_app(CACHE_INVALIDATE_ON_WRITE=False).test_client()
    assert client.get("/api/properties").get_json() == []

    client.post("/api/properties", json={"title": "Fresh"}, headers=alice)
    assert client.get("/api/properties").get_json() == []
    assert len(store_calls) == 1


def test_error_responses_are_not_cached():
    flask_app = Flask(__name__)
    cache = ResponseCache(fakeredis.FakeRedis())
    flask_app.extensions["response_cache"] = cache
    hits = []

    @flask_app.route("/things")
    @cached_response("things")
    def things():
        hits.append(1)
        return jsonify({"error": "boom"}), 500

    client = flask_app.test_client()
    client.get("/things")
    client.get("/things")
    assert len(hits) == 2


def test_key_is_canonical_json():
    key = ResponseCache.key_for("properties", {"b": ["2"], "a": ["1"]})
    assert key == "properties:" + json.dumps({"a": ["1"], "b": ["2"]}, separators=(",", ":"))


def test_connect_cache_retries_then_returns_client(monkeypatch):
    class FlakyRedis(BrokenRedis):
        pings = 0

        def ping(self):
            FlakyRedis.pings += 1
            raise redis.ConnectionError("connection refused")

    monkeypatch.setattr(db_redis._ping.retry, "wait", wait_none())
    monkeypatch.setattr(db_redis.redis, "from_url", lambda url, **kwargs: FlakyRedis())

    client = db_redis.connect_cache("redis://cache.invalid:6379")
    assert isinstance(client, FlakyRedis)
    assert FlakyRedis.pings == 3


def test_connect_cache_uses_tls_when_a_token_is_given(monkeypatch):
    urls = []

    def from_url(url, **kwargs):
        urls.append(url)
        return fakeredis.FakeRedis()

    monkeypatch.setattr(db_redis.redis, "from_url", from_url)

    db_redis.connect_cache("redis://cache.example.com:6379", "secret-token")
    db_redis.connect_cache("redis://localhost:6379")
    db_redis.connect_cache("rediss://cache.example.com:6379", "secret-token")
    assert urls == [
        "rediss://cache.example.com:6379",
        "redis://localhost:6379",
        "rediss://cache.example.com:6379",
    ]


def test_index_sets_only_hold_live_entries():
    client = fakeredis.FakeRedis()
    cache = ResponseCache(client, ttl=1)
    registry = "properties:keys"
    shared = "properties:tag:shared"

    for i in range(4):
        cache.set("properties", f"properties:search-{i}", b"[]", tags=[f"id{i}", "shared"])
        # entries are 0.4s apart with a 1s ttl, so at most three are alive
        assert client.zcard(registry) <= 3
        assert client.zcard(shared) <= 3
        time.sleep(0.4)

    time.sleep(1.1)
    cache.set("properties", "properties:search-last", b"[]", tags=["shared"])

    assert client.zrange(registry, 0, -1) == [b"properties:search-last"]
    assert client.zrange(shared, 0, -1) == [b"properties:search-last"]
    assert not client.exists("properties:tag:id0")


def test_invalidation_ignores_expired_members():
    client = fakeredis.FakeRedis()
    cache = ResponseCache(client, ttl=1)
    cache.set("properties", "properties:old", b"[]", tags=["a"])
    time.sleep(1.1)
    cache.set("properties", "properties:new", b"[]", tags=["b"])

    cache.invalidate_tags("properties", ["b"])
    assert client.get("properties:new") is None
    assert client.zcard("properties:keys") == 0
