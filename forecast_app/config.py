from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    BOT_TOKEN: str = ""

    OPENWEATHER_API_KEY: str = ""
    OPENWEATHER_BASE_URL: str = "https://api.openweathermap.org/data/2.5"
    WEATHER_DAILY_LIMIT: int = 900  # OpenWeather hard limit is 1000
    WEATHER_CACHE_TTL: int = 300
    HTTP_TIMEOUT: float = 10.0

    CEREBRAS_API_KEY: str = ""
    GROQ_API_KEY: str = ""
    DEEPSEEK_API_KEY: str = ""
    MISTRAL_API_KEY: str = ""
    HUGGINGFACE_API_KEY: str = ""
    GEMINI_API_KEY: str = ""
    AI_PROVIDER_ORDER: str = "cerebras,groq,deepseek,mistral,huggingface,gemini"
    AI_TEMPERATURE: float = 0.7

    ADVICE_CACHE_TTL: int = 600
    ADVICE_SLIDING_TTL: int = 300
    ADVICE_FALLBACK_TTL: int = 120
    PROMPT_TEMPLATE_PATH: Optional[str] = None

    REDIS_URL: Optional[str] = None
    WARMUP_CITIES: str = ""

    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = "forecast_bot.log"

    class Config:
        env_file = ".env"

    @property
    def provider_order(self) -> List[str]:
        return [name.strip().lower() for name in self.AI_PROVIDER_ORDER.split(",") if name.strip()]

    @property
    def warmup_cities(self) -> List[str]:
        return [city.strip() for city in self.WARMUP_CITIES.split(",") if city.strip()]


settings = Settings()
