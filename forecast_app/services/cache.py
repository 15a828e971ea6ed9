import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from forecast_app.config import settings
from .errors import QuotaExceededError, WeatherNotConfiguredError
from .quota import QuotaGuard
from .weather import MANDATORY_CALLS, WeatherAPI, WeatherSnapshot

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheEntry:
    value: Any
    created_at: datetime
    expires_at: datetime
    sliding: Optional[timedelta] = None
    last_access: Optional[datetime] = None

    def deadline(self) -> datetime:
        if self.sliding is None:
            return self.expires_at
        return min(self.expires_at, (self.last_access or self.created_at) + self.sliding)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.deadline()


class MemoryCache:
    """In-process key/value store with absolute and optional sliding expiry."""

    def __init__(self, clock: Callable[[], datetime] = _utc_now):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    @property
    def size(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        now = self._clock()
        if entry.is_expired(now):
            self._entries.pop(key, None)
            return None

        entry.last_access = now
        return entry.value

    async def set(self, key: str, value: Any, ttl: timedelta, sliding: Optional[timedelta] = None):
        now = self._clock()
        self._entries[key] = CacheEntry(
            value=value,
            created_at=now,
            expires_at=now + ttl,
            sliding=sliding,
            last_access=now,
        )

    async def delete(self, key: str):
        self._entries.pop(key, None)

    async def cleanup_expired(self) -> int:
        now = self._clock()
        expired_keys = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired_keys:
            del self._entries[key]
        return len(expired_keys)

    async def stats(self) -> Dict[str, Any]:
        return {"backend": "memory", "entries": self.size}


class RedisCache:
    """
    Redis-backed store shared between processes.

    Values must be JSON serializable. The absolute expiry travels inside the
    payload; the Redis TTL is the nearer of the sliding and absolute deadlines
    and is pushed forward on every hit.
    """

    def __init__(self, client: aioredis.Redis, prefix: str = "forecast:", clock: Callable[[], datetime] = _utc_now):
        self.redis_client = client
        self.prefix = prefix
        self._clock = clock

    @classmethod
    async def from_url(cls, url: str, **kwargs) -> "RedisCache":
        client = aioredis.from_url(url, decode_responses=True)
        await client.ping()
        logger.info("✅ Redis connected")
        return cls(client, **kwargs)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    @staticmethod
    def _ttl_ms(expires_at: float, sliding: Optional[float], now: float) -> int:
        remaining = expires_at - now
        if sliding is not None:
            remaining = min(remaining, sliding)
        return int(remaining * 1000)

    async def get(self, key: str) -> Optional[Any]:
        redis_key = self._key(key)
        try:
            raw = await self.redis_client.get(redis_key)
            if not raw:
                return None

            payload = json.loads(raw)
            now = self._clock().timestamp()
            ttl_ms = self._ttl_ms(payload["expires_at"], payload.get("sliding"), now)
            if ttl_ms <= 0:
                await self.redis_client.delete(redis_key)
                return None

            if payload.get("sliding") is not None:
                await self.redis_client.pexpire(redis_key, ttl_ms)
            return payload["value"]

        except RedisError as e:
            logger.error(f"Redis read error for {key}: {e}")
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Corrupted cache entry {key}: {e!r}")
        return None

    async def set(self, key: str, value: Any, ttl: timedelta, sliding: Optional[timedelta] = None):
        now = self._clock().timestamp()
        payload = {
            "value": value,
            "created_at": now,
            "expires_at": now + ttl.total_seconds(),
            "sliding": sliding.total_seconds() if sliding is not None else None,
        }
        ttl_ms = self._ttl_ms(payload["expires_at"], payload["sliding"], now)
        if ttl_ms <= 0:
            return

        try:
            await self.redis_client.set(self._key(key), json.dumps(payload), px=ttl_ms)
        except RedisError as e:
            logger.error(f"Redis write error for {key}: {e}")

    async def delete(self, key: str):
        try:
            await self.redis_client.delete(self._key(key))
        except RedisError as e:
            logger.error(f"Redis delete error for {key}: {e}")

    async def cleanup_expired(self) -> int:
        # Redis evicts on its own; only entries without a TTL need attention
        removed = 0
        try:
            async for redis_key in self.redis_client.scan_iter(f"{self.prefix}*"):
                if await self.redis_client.ttl(redis_key) == -1:
                    await self.redis_client.delete(redis_key)
                    removed += 1
        except RedisError as e:
            logger.error(f"Redis cleanup error: {e}")
        return removed

    async def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"backend": "redis", "entries": 0}
        try:
            async for _ in self.redis_client.scan_iter(f"{self.prefix}*"):
                stats["entries"] += 1
        except RedisError as e:
            logger.error(f"Redis stats error: {e}")
            stats["error"] = str(e)
        return stats

    async def close(self):
        await self.redis_client.aclose()


async def create_cache_backend(redis_url: Optional[str] = None):
    """Redis when a URL is configured and reachable, in-memory otherwise."""
    if redis_url:
        try:
            return await RedisCache.from_url(redis_url)
        except RedisError as e:
            logger.error(f"Redis unavailable ({e}), falling back to in-memory cache")
    return MemoryCache()


class KeyedLock:
    """Per-key asyncio locks, dropped once nobody holds or waits on them."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def acquire(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class WeatherCache:
    """Weather lookups with caching and daily quota protection."""

    def __init__(
        self,
        weather_api: Optional[WeatherAPI] = None,
        quota: Optional[QuotaGuard] = None,
        backend=None,
        ttl: Optional[int] = None,
    ):
        self.weather_api = weather_api or WeatherAPI()
        self.quota = quota or QuotaGuard()
        self.backend = backend or MemoryCache()
        self.cache_prefix = "weather:"
        self.default_ttl = timedelta(seconds=ttl or settings.WEATHER_CACHE_TTL)
        self._inflight = KeyedLock()

    def cache_key(self, city: str) -> str:
        return f"{self.cache_prefix}{city.strip().lower()}"

    async def get_weather(self, city: str) -> Optional[WeatherSnapshot]:
        """
        Cached weather for a city.

        Args:
            city: City name, case-insensitive

        Returns:
            WeatherSnapshot, or None when the city is unknown or upstream failed

        Raises:
            QuotaExceededError: cache miss after the daily ceiling was reached
            WeatherNotConfiguredError: OPENWEATHER_API_KEY is missing
        """
        key = self.cache_key(city)

        cached = await self._get_cached_weather(key)
        if cached is not None:
            logger.info(f"✅ Cache HIT for {city}")
            return cached

        async with self._inflight.acquire(key):
            # another request may have filled the entry while we waited
            cached = await self._get_cached_weather(key)
            if cached is not None:
                logger.info(f"✅ Cache HIT for {city} after concurrent fetch")
                return cached

            logger.info(f"❌ Cache MISS for {city} - fetching from API")
            # both mandatory calls are counted before any request goes out
            await self.quota.reserve(MANDATORY_CALLS)

            try:
                weather = await self.weather_api.fetch(city.strip(), on_call=self.quota.increment)
            except WeatherNotConfiguredError:
                await self.quota.release(MANDATORY_CALLS)
                raise
            logger.info(f"📊 OpenWeather API calls today: {self.quota.count}/{self.quota.limit}")
            if weather is None:
                return None

            await self.backend.set(key, weather.to_dict(), self.default_ttl)
            logger.info(f"💾 Cached weather data for {city} ({int(self.default_ttl.total_seconds())} s expiration)")
            return weather

    async def _get_cached_weather(self, key: str) -> Optional[WeatherSnapshot]:
        data = await self.backend.get(key)
        if data is None:
            return None
        try:
            return WeatherSnapshot.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.error(f"Dropping unreadable cache entry {key}: {e!r}")
            await self.backend.delete(key)
            return None

    async def update_cities_cache(self, cities: List[str]) -> Dict[str, int]:
        """
        Warms the cache for a list of cities.

        Stops early once the daily quota is exhausted.
        """
        logger.info(f"Warming weather cache for {len(cities)} cities")

        success = 0
        failed = 0
        for city in cities:
            try:
                weather = await self.get_weather(city)
            except QuotaExceededError:
                logger.warning(f"Quota exhausted while warming cache, {len(cities) - success - failed} cities skipped")
                break
            except WeatherNotConfiguredError as e:
                logger.error(f"Cache warm-up skipped: {e}")
                break

            if weather is None:
                failed += 1
            else:
                success += 1

            # spread warm-up calls out
            await asyncio.sleep(0.1)

        logger.info(f"✅ Cache warm-up finished. Success: {success}, failed: {failed}")
        return {"success": success, "failed": failed}

    async def cleanup_expired(self) -> int:
        removed = await self.backend.cleanup_expired()
        logger.info(f"🧹 Weather cache cleanup removed {removed} entries")
        return removed

    async def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "cache": await self.backend.stats(),
            "quota": self.quota.stats(),
            "ttl_seconds": int(self.default_ttl.total_seconds()),
        }
