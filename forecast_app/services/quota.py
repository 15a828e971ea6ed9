import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Optional

from forecast_app.config import settings
from .errors import QuotaExceededError

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuotaGuard:
    """
    Daily upstream call counter.

    One instance per process, shared by every request. The counter resets
    lazily on the first access after UTC midnight.
    """

    def __init__(self, limit: Optional[int] = None, clock: Callable[[], datetime] = _utc_now):
        self.limit = limit if limit is not None else settings.WEATHER_DAILY_LIMIT
        self._clock = clock
        self._lock = asyncio.Lock()
        self.count = 0
        self.reset_date: date = self._today()

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    def _reset_if_new_day(self):
        today = self._today()
        if today > self.reset_date:
            self.count = 0
            self.reset_date = today
            logger.info("🔄 OpenWeather API call counter reset for new day")

    def _ensure_capacity(self):
        self._reset_if_new_day()
        if self.count >= self.limit:
            logger.warning(f"⚠️ OpenWeather API daily limit reached ({self.count}/{self.limit})")
            raise QuotaExceededError(self.count, self.limit)

    @property
    def remaining(self) -> int:
        return max(self.limit - self.count, 0)

    async def check(self):
        """Raises QuotaExceededError when the daily ceiling is already reached."""
        async with self._lock:
            self._ensure_capacity()

    async def reserve(self, calls: int) -> int:
        """
        Checks the ceiling and counts calls in one step.

        Raises:
            QuotaExceededError: the daily ceiling is already reached, nothing counted
        """
        async with self._lock:
            self._ensure_capacity()
            self.count += calls
            return self.count

    async def release(self, calls: int):
        """Gives back reserved calls that were never sent."""
        async with self._lock:
            self.count = max(self.count - calls, 0)

    async def increment(self, calls: int = 1) -> int:
        async with self._lock:
            self._reset_if_new_day()
            self.count += calls
            logger.debug(f"📊 OpenWeather API calls today: {self.count}/{self.limit}")
            return self.count

    def stats(self) -> Dict[str, Any]:
        return {
            "calls_today": self.count,
            "daily_limit": self.limit,
            "remaining": self.remaining,
            "reset_date": self.reset_date.isoformat(),
        }
