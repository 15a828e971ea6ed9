import logging
import math
import re
from datetime import timedelta
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from forecast_app.config import settings
from .cache import KeyedLock, MemoryCache
from .errors import MalformedProviderOutput
from .prompt import PromptBuilder
from .providers import AIProvider
from .weather import WeatherSnapshot

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


class AdviceResult(BaseModel):
    """Advice wire format: a flat object with exactly three strings."""

    model_config = ConfigDict(extra="forbid", strict=True)

    summary: str
    outfit: str
    safety: str


def extract_json(text: str) -> str:
    """Strips a wrapping Markdown fence and any prose around the outermost {...} block."""
    cleaned = _FENCE_RE.sub("", text or "").strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start >= 0 and end > start:
        return cleaned[start:end + 1]
    return cleaned


def validate_advice(text: str) -> str:
    """
    Extracts the advice JSON from provider output.

    Returns:
        The extracted JSON text, unchanged

    Raises:
        MalformedProviderOutput: not a flat summary/outfit/safety object
    """
    candidate = extract_json(text)
    try:
        AdviceResult.model_validate_json(candidate)
    except ValidationError as e:
        raise MalformedProviderOutput(f"{e.error_count()} validation error(s): {candidate[:200]!r}") from e
    return candidate


def parse_advice(text: str) -> AdviceResult:
    return AdviceResult.model_validate_json(text)


def temperature_bucket(temperature: float, step: int = 5) -> int:
    """Nearest multiple of step, halves rounded up (22.5 -> 25, -22.5 -> -20)."""
    return int(math.floor(temperature / step + 0.5) * step)


def fallback_advice(weather: WeatherSnapshot) -> str:
    return AdviceResult(
        summary=f"Enjoy the atmosphere in {weather.city}.",
        outfit="Wear comfortable clothes suitable for the weather.",
        safety="No specific hazards.",
    ).model_dump_json()


class AdviceService:
    """Fashion advice from the first AI provider that answers with valid JSON."""

    def __init__(
        self,
        providers: List[AIProvider],
        prompt_builder: Optional[PromptBuilder] = None,
        backend=None,
        ttl: Optional[int] = None,
        sliding_ttl: Optional[int] = None,
        fallback_ttl: Optional[int] = None,
    ):
        self.providers = list(providers)
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.backend = backend or MemoryCache()
        self.cache_prefix = "advice:"
        self.ttl = timedelta(seconds=ttl or settings.ADVICE_CACHE_TTL)
        self.sliding_ttl = timedelta(seconds=sliding_ttl or settings.ADVICE_SLIDING_TTL)
        self.fallback_ttl = timedelta(seconds=fallback_ttl or settings.ADVICE_FALLBACK_TTL)
        self._inflight = KeyedLock()

    def cache_key(self, weather: WeatherSnapshot) -> str:
        return (
            f"{self.cache_prefix}{weather.city.strip().lower()}:"
            f"{weather.current_condition.strip().lower()}:"
            f"{temperature_bucket(weather.current_temp)}"
        )

    async def get_advice(self, weather: WeatherSnapshot) -> str:
        """
        Advice JSON for a weather snapshot. Never raises for upstream failures:
        when no provider succeeds a generic payload is returned.
        """
        key = self.cache_key(weather)

        cached = await self.backend.get(key)
        if cached is not None:
            logger.info(f"✅ Advice cache HIT for {key}")
            return cached

        async with self._inflight.acquire(key):
            cached = await self.backend.get(key)
            if cached is not None:
                logger.info(f"✅ Advice cache HIT for {key} after concurrent generation")
                return cached

            prompt = self.prompt_builder.build(weather)

            for provider in self.providers:
                advice = await self._try_provider(provider, weather, prompt)
                if advice is None:
                    continue

                await self.backend.set(key, advice, self.ttl, sliding=self.sliding_ttl)
                logger.info(f"💾 Cached advice from {provider.name} for {key}")
                return advice

            logger.warning(f"All AI providers failed for {weather.city}, serving fallback advice")
            advice = fallback_advice(weather)
            await self.backend.set(key, advice, self.fallback_ttl)
            return advice

    async def _try_provider(self, provider: AIProvider, weather: WeatherSnapshot, prompt: str) -> Optional[str]:
        logger.info(f"🤖 Trying provider: {provider.name}...")
        try:
            result = await provider.generate(weather, prompt)
        except Exception as e:
            logger.error(f"❌ {provider.name} failed: {e!r}")
            return None

        if result == "":
            logger.debug(f"{provider.name} is not configured, skipped")
            return None
        if result is None or not result.strip():
            logger.warning(f"⚠️ {provider.name} returned no text")
            return None

        try:
            return validate_advice(result)
        except MalformedProviderOutput as e:
            logger.error(f"❌ {provider.name} returned malformed advice: {e}")
            return None

    async def cleanup_expired(self) -> int:
        return await self.backend.cleanup_expired()
