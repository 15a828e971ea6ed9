from .weather import WeatherAPI, WeatherSnapshot, DayPart
from .cache import WeatherCache, MemoryCache, RedisCache
from .quota import QuotaGuard
from .providers import AIProvider, build_providers
from .recommendation import AdviceService, AdviceResult
from .advisor import ForecastService, Forecast, create_forecast_service
from .errors import ForecastError, QuotaExceededError, WeatherNotConfiguredError

__all__ = [
    'WeatherAPI',
    'WeatherSnapshot',
    'DayPart',
    'WeatherCache',
    'MemoryCache',
    'RedisCache',
    'QuotaGuard',
    'AIProvider',
    'build_providers',
    'AdviceService',
    'AdviceResult',
    'ForecastService',
    'Forecast',
    'create_forecast_service',
    'ForecastError',
    'QuotaExceededError',
    'WeatherNotConfiguredError',
]
