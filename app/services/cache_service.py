"""
Redis cache for the sales report endpoints.

Summary and stats are cached per scope (an agent id, or 'all' for the
admin view). Any write to a sale drops the reports of its agent and of the
admin view. Redis being down or disabled only costs a recomputation.
"""

import logging
import json
from typing import Any, Optional, Callable, Dict
from datetime import datetime, date
from decimal import Decimal

import redis
from redis.exceptions import RedisError
from flask import Flask, current_app

logger = logging.getLogger(__name__)

ALL_SCOPE = 'all'
REPORTS_MODULE = 'reports'


def _encode(value: Any) -> str:
    """JSON with Decimals tagged so amounts come back exact."""
    def tag(obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return {'__decimal__': str(obj)}
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        raise TypeError(f"Cannot cache value of type {type(obj).__name__}")
    return json.dumps(value, default=tag)


def _decode(raw: str) -> Any:
    def untag(obj: Dict[str, Any]) -> Any:
        if '__decimal__' in obj:
            return Decimal(obj['__decimal__'])
        return obj
    return json.loads(raw, object_hook=untag)


class CacheService:
    """
    Cache-aside helper over Redis.

    Keys: {prefix}:scope:{scope}:{module}:{key}
    """

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self._enabled: bool = False
        self._prefix: str = ''

        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self._enabled = app.config.get('CACHE_ENABLED', True)
        self._prefix = app.config.get('CACHE_KEY_PREFIX', 'crm')

        if not self._enabled:
            logger.info("[CACHE] Disabled by configuration")
            return

        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')
        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self.client.ping()
            logger.info(f"[CACHE] Connected to {redis_url}")
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unreachable ({e}), reports will not be cached")
            self._enabled = False
            self.client = None

    def is_available(self) -> bool:
        if not self._enabled or self.client is None:
            return False
        try:
            self.client.ping()
        except RedisError:
            return False
        return True

    def _build_key(self, scope: str, module: str, key: str) -> str:
        return f"{self._prefix}:scope:{scope}:{module}:{key}"

    def get(self, scope: str, module: str, key: str) -> Optional[Any]:
        if not self.is_available():
            return None
        try:
            raw = self.client.get(self._build_key(scope, module, key))
        except RedisError as e:
            logger.warning(f"[CACHE] Read failed: {e}")
            return None
        if raw is None:
            return None
        try:
            return _decode(raw)
        except json.JSONDecodeError:
            logger.warning(f"[CACHE] Dropping unreadable entry {key}")
            return None

    def set(self, scope: str, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.is_available():
            return False
        if ttl is None:
            ttl = current_app.config.get('CACHE_DEFAULT_TTL', 60)
        try:
            self.client.setex(self._build_key(scope, module, key), ttl, _encode(value))
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Write failed: {e}")
            return False
        return True

    def memoize(self, scope: str, module: str, key: str, loader_fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value, or compute it with loader_fn and store it."""
        cached = self.get(scope, module, key)
        if cached is not None:
            return cached
        value = loader_fn()
        self.set(scope, module, key, value, ttl)
        return value

    def invalidate_module(self, scope: str, module: str) -> int:
        """Delete every key of a module within a scope. Returns the number deleted."""
        if not self.is_available():
            return 0
        pattern = self._build_key(scope, module, '*')
        deleted = 0
        cursor = 0
        try:
            while True:
                cursor, keys = self.client.scan(cursor, match=pattern, count=100)
                if keys:
                    self.client.delete(*keys)
                    deleted += len(keys)
                if cursor == 0:
                    break
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidation of {pattern} failed: {e}")
            return deleted
        if deleted:
            logger.info(f"[CACHE] Invalidated {pattern} ({deleted} keys)")
        return deleted


_cache_service: Optional[CacheService] = None


def init_cache(app: Flask) -> None:
    global _cache_service
    _cache_service = CacheService(app)
    app.extensions['cache'] = _cache_service


def get_cache() -> CacheService:
    if _cache_service is None:
        raise RuntimeError("Cache not initialized.")
    return _cache_service


def invalidate_reports(agent_id: str) -> None:
    """Drop cached reports of the agent and of the admin view."""
    if _cache_service is None:
        logger.debug("[CACHE] Not initialized, skipping report invalidation")
        return
    _cache_service.invalidate_module(str(agent_id), REPORTS_MODULE)
    _cache_service.invalidate_module(ALL_SCOPE, REPORTS_MODULE)
