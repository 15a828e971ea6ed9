import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp
import openai
from openai import AsyncOpenAI

from forecast_app.config import Settings, settings
from .weather import WeatherSnapshot

logger = logging.getLogger(__name__)


def after_think(text: str) -> str:
    last_think_pos = text.rfind("</think>")
    if last_think_pos == -1:
        return text.strip()
    return text[last_think_pos + len("</think>"):].strip()


class AIProvider:
    """
    Text-completion backend producing weather advice.

    generate() returns the raw completion text, an empty string when the
    provider has no credential configured, or None when the call failed.
    """

    name = "AI provider"
    temperature: Optional[float] = None

    async def generate(self, weather: WeatherSnapshot, prompt: str) -> Optional[str]:
        raise NotImplementedError

    def _resolve_temperature(self, temperature: Optional[float]) -> float:
        if temperature is not None:
            return temperature
        if self.temperature is not None:
            return self.temperature
        return settings.AI_TEMPERATURE

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"


class OpenAICompatibleProvider(AIProvider):
    """Backend speaking the OpenAI chat-completions protocol."""

    base_url = "https://api.openai.com/v1"
    model = "gpt-4o-mini"

    def __init__(
        self,
        api_key: Optional[str],
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.api_key = api_key or ""
        self.model = model or self.model
        self.base_url = base_url or self.base_url
        self.temperature = self._resolve_temperature(temperature)
        self.timeout = timeout or settings.HTTP_TIMEOUT * 3
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            # one attempt per aggregation call, the aggregator moves on by itself
            self._client = AsyncOpenAI(
                base_url=self.base_url,
                api_key=self.api_key,
                max_retries=0,
                timeout=self.timeout,
            )
        return self._client

    def build_messages(self, prompt: str) -> List[Dict[str, str]]:
        return [{"role": "user", "content": prompt}]

    async def generate(self, weather: WeatherSnapshot, prompt: str) -> Optional[str]:
        if not self.api_key:
            return ""

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(prompt),
                temperature=self.temperature,
            )
        except openai.OpenAIError as e:
            logger.warning(f"⚠️ {self.name} failed for {weather.city}: {e}")
            return None

        if not response.choices:
            logger.warning(f"⚠️ {self.name} returned no choices for {weather.city}")
            return None

        text = after_think(response.choices[0].message.content or "")
        if not text:
            logger.warning(f"⚠️ {self.name} returned an empty completion for {weather.city}")
            return None
        return text


class CerebrasProvider(OpenAICompatibleProvider):
    name = "Cerebras"
    base_url = "https://api.cerebras.ai/v1"
    model = "llama3.1-8b"


class GroqProvider(OpenAICompatibleProvider):
    name = "Groq"
    base_url = "https://api.groq.com/openai/v1"
    model = "llama-3.1-8b-instant"


class DeepSeekProvider(OpenAICompatibleProvider):
    name = "DeepSeek"
    base_url = "https://api.deepseek.com"
    model = "deepseek-chat"


class MistralProvider(OpenAICompatibleProvider):
    name = "Mistral AI"
    base_url = "https://api.mistral.ai/v1"
    model = "mistral-small-latest"


class HuggingFaceProvider(OpenAICompatibleProvider):
    name = "HuggingFace"
    base_url = "https://router.huggingface.co/v1"
    model = "deepseek-ai/DeepSeek-R1-0528:together"
    temperature = 0.6


class GeminiProvider(AIProvider):
    """Google Gemini through its native generateContent endpoint."""

    name = "Gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta"
    model = "gemini-2.0-flash"

    def __init__(
        self,
        api_key: Optional[str],
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key or ""
        self.model = model or self.model
        self.base_url = (base_url or self.base_url).rstrip("/")
        self.temperature = self._resolve_temperature(temperature)
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.HTTP_TIMEOUT * 3)

    @property
    def url(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def build_body(self, prompt: str) -> Dict[str, Any]:
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": self.temperature},
        }

    async def generate(self, weather: WeatherSnapshot, prompt: str) -> Optional[str]:
        if not self.api_key:
            return ""

        headers = {"x-goog-api-key": self.api_key}
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.url, json=self.build_body(prompt), headers=headers) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.warning(f"⚠️ {self.name} error {response.status} for {weather.city}: {error_text}")
                        return None
                    data = await response.json(content_type=None)

            text = data["candidates"][0]["content"]["parts"][0]["text"].strip()
            if not text:
                logger.warning(f"⚠️ {self.name} returned an empty completion for {weather.city}")
                return None
            return text

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"⚠️ {self.name} failed for {weather.city}: {e!r}")
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"⚠️ {self.name} returned an unexpected payload for {weather.city}: {e!r}")
        return None


PROVIDERS = {
    "cerebras": (CerebrasProvider, "CEREBRAS_API_KEY"),
    "groq": (GroqProvider, "GROQ_API_KEY"),
    "deepseek": (DeepSeekProvider, "DEEPSEEK_API_KEY"),
    "mistral": (MistralProvider, "MISTRAL_API_KEY"),
    "huggingface": (HuggingFaceProvider, "HUGGINGFACE_API_KEY"),
    "gemini": (GeminiProvider, "GEMINI_API_KEY"),
}


def build_providers(config: Optional[Settings] = None) -> List[AIProvider]:
    """Instantiates the providers listed in AI_PROVIDER_ORDER, in that order."""
    config = config or settings
    providers: List[AIProvider] = []

    for name in config.provider_order:
        if name not in PROVIDERS:
            logger.warning(f"Unknown AI provider '{name}' in AI_PROVIDER_ORDER, skipped")
            continue
        provider_cls, key_name = PROVIDERS[name]
        providers.append(
            provider_cls(
                api_key=getattr(config, key_name),
                temperature=config.AI_TEMPERATURE if provider_cls.temperature is None else None,
            )
        )

    logger.info(f"AI providers in priority order: {', '.join(p.name for p in providers) or 'none'}")
    return providers
