import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from forecast_app.config import Settings, settings
from .cache import WeatherCache, create_cache_backend
from .prompt import PromptBuilder
from .providers import build_providers
from .quota import QuotaGuard
from .recommendation import AdviceResult, AdviceService, parse_advice
from .weather import WeatherAPI, WeatherSnapshot

logger = logging.getLogger(__name__)


@dataclass
class Forecast:
    weather: WeatherSnapshot
    advice: AdviceResult


class ForecastService:
    """
    Caller-facing entry point: cached weather plus AI advice per city.

    Constructed once per process and shared by every request handler.
    """

    def __init__(self, weather_cache: WeatherCache, advice_service: AdviceService):
        self.weather_cache = weather_cache
        self.advice_service = advice_service

    async def __aenter__(self):
        await self.weather_cache.weather_api.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def quota(self) -> QuotaGuard:
        return self.weather_cache.quota

    async def get_weather(self, city: str) -> Optional[WeatherSnapshot]:
        """None means the city is unknown or the upstream failed; raises QuotaExceededError."""
        return await self.weather_cache.get_weather(city)

    async def get_advice(self, weather: WeatherSnapshot) -> str:
        return await self.advice_service.get_advice(weather)

    async def get_forecast(self, city: str) -> Optional[Forecast]:
        weather = await self.get_weather(city)
        if weather is None:
            return None
        advice = await self.get_advice(weather)
        return Forecast(weather=weather, advice=parse_advice(advice))

    async def cleanup_expired(self) -> Dict[str, int]:
        return {
            "weather": await self.weather_cache.cleanup_expired(),
            "advice": await self.advice_service.cleanup_expired(),
        }

    async def stats(self) -> Dict[str, Any]:
        stats = await self.weather_cache.get_cache_stats()
        stats["providers"] = [provider.name for provider in self.advice_service.providers]
        return stats

    async def close(self):
        await self.weather_cache.weather_api.__aexit__(None, None, None)
        backends = {id(self.weather_cache.backend): self.weather_cache.backend,
                    id(self.advice_service.backend): self.advice_service.backend}
        for backend in backends.values():
            close = getattr(backend, "close", None)
            if close is not None:
                await close()


async def create_forecast_service(config: Optional[Settings] = None) -> ForecastService:
    config = config or settings
    if not config.OPENWEATHER_API_KEY:
        logger.error("OPENWEATHER_API_KEY is not set, weather lookups will be refused")

    backend = await create_cache_backend(config.REDIS_URL)
    weather_cache = WeatherCache(
        weather_api=WeatherAPI(
            api_key=config.OPENWEATHER_API_KEY,
            base_url=config.OPENWEATHER_BASE_URL,
            timeout=config.HTTP_TIMEOUT,
        ),
        quota=QuotaGuard(limit=config.WEATHER_DAILY_LIMIT),
        backend=backend,
        ttl=config.WEATHER_CACHE_TTL,
    )
    advice_service = AdviceService(
        providers=build_providers(config),
        prompt_builder=PromptBuilder(config.PROMPT_TEMPLATE_PATH),
        backend=backend,
        ttl=config.ADVICE_CACHE_TTL,
        sliding_ttl=config.ADVICE_SLIDING_TTL,
        fallback_ttl=config.ADVICE_FALLBACK_TTL,
    )

    logger.info(f"Forecast service ready ({type(backend).__name__}, quota {config.WEATHER_DAILY_LIMIT}/day)")
    return ForecastService(weather_cache, advice_service)
