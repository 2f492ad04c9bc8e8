# Redis response cache for read endpoints.
# A cache failure never fails a request: errors are logged and the view runs uncached.

import json
import logging
import time
from functools import wraps
from typing import Iterable, Optional

import redis
from flask import current_app, g, request
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600


# ========== CONNECTION ==========
@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type((redis.ConnectionError, redis.TimeoutError)),
    reraise=True,
)
def _ping(client: redis.Redis) -> None:
    client.ping()


def connect_cache(url: str, password: Optional[str] = None) -> redis.Redis:
    """
    Build the Redis client once at startup and check it is reachable.

    The client is returned even when the initial ping keeps failing;
    redis-py reconnects on the next command and per-request errors are
    absorbed by ResponseCache.

    Hosted Redis with a token (Upstash) only accepts TLS, so a plain
    redis:// URL is upgraded to rediss:// when a password is given.
    """
    if password and url.startswith("redis://"):
        url = "rediss://" + url[len("redis://"):]
    client = redis.from_url(
        url,
        password=password or None,
        socket_timeout=5,
        socket_connect_timeout=5,
    )
    try:
        _ping(client)
        logger.info("Connected to Redis cache")
    except redis.RedisError as e:
        logger.error("Redis unavailable at startup, serving uncached: %s", e)
    return client


# ========== RESPONSE CACHE ==========
class ResponseCache:
    """Serialized-response cache keyed by namespace + canonical query args."""

    def __init__(self, client: redis.Redis, ttl: int = DEFAULT_TTL, invalidate_on_write: bool = True):
        self.client = client
        self.ttl = ttl
        self.invalidate_on_write = invalidate_on_write

    @staticmethod
    def key_for(namespace: str, args) -> str:
        # Sorted keys so the same parameter set always maps to one entry
        params = args.to_dict(flat=False) if hasattr(args, "to_dict") else dict(args)
        return f"{namespace}:" + json.dumps(params, sort_keys=True, separators=(",", ":"))

    @staticmethod
    def _registry_key(namespace: str) -> str:
        return f"{namespace}:keys"

    @staticmethod
    def _tag_key(namespace: str, tag: str) -> str:
        return f"{namespace}:tag:{tag}"

    def get(self, key: str) -> Optional[bytes]:
        try:
            return self.client.get(key)
        except redis.RedisError as e:
            logger.warning("Redis cache read failed for %s: %s", key, e)
            return None

    def set(self, namespace: str, key: str, body: bytes, tags: Iterable[str] = ()) -> None:
        # Registry and tag indexes are sorted sets scored by entry expiry,
        # so members whose entry has expired are pruned on every write
        now = time.time()
        expires_at = now + self.ttl
        try:
            pipe = self.client.pipeline()
            pipe.setex(key, self.ttl, body)
            index_keys = [self._registry_key(namespace)]
            index_keys += [self._tag_key(namespace, tag) for tag in tags]
            for index_key in index_keys:
                pipe.zremrangebyscore(index_key, "-inf", now)
                pipe.zadd(index_key, {key: expires_at})
                pipe.expire(index_key, self.ttl)
            pipe.execute()
        except redis.RedisError as e:
            logger.warning("Redis cache write failed for %s: %s", key, e)

    def _live_members(self, index_key: str):
        self.client.zremrangebyscore(index_key, "-inf", time.time())
        return self.client.zrange(index_key, 0, -1)

    def invalidate_namespace(self, namespace: str) -> None:
        """Drop every cached response stored under the namespace."""
        try:
            registry = self._registry_key(namespace)
            keys = self._live_members(registry)
            if keys:
                self.client.delete(*keys)
            self.client.delete(registry)
        except redis.RedisError as e:
            logger.warning("Redis cache invalidation failed for %s: %s", namespace, e)

    def invalidate_tags(self, namespace: str, tags: Iterable[str]) -> None:
        """Drop cached responses that were tagged with any of the given ids."""
        try:
            for tag in tags:
                tag_key = self._tag_key(namespace, tag)
                keys = self._live_members(tag_key)
                if keys:
                    self.client.delete(*keys)
                    self.client.zrem(self._registry_key(namespace), *keys)
                self.client.delete(tag_key)
        except redis.RedisError as e:
            logger.warning("Redis cache invalidation failed for %s: %s", namespace, e)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


def get_response_cache() -> Optional[ResponseCache]:
    return current_app.extensions.get("response_cache")


def cached_response(namespace: str):
    """
    Serve a stored JSON body for identical query args, or run the view and
    store its 200 response. Views may set g.cache_tags to the ids of the
    records they returned so a delete can purge just those entries.
    """
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            cache = get_response_cache()
            if cache is None:
                return view(*args, **kwargs)

            key = cache.key_for(namespace, request.args)
            body = cache.get(key)
            if body is not None:
                logger.info("Serving %s from cache", key)
                return current_app.response_class(body, mimetype="application/json")

            response = current_app.make_response(view(*args, **kwargs))
            if response.status_code == 200:
                cache.set(namespace, key, response.get_data(), g.get("cache_tags", ()))
            return response
        return wrapper
    return decorator
