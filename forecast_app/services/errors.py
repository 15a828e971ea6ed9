class ForecastError(Exception):
    """Base class for errors raised by the forecast services."""


class QuotaExceededError(ForecastError):
    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(
            f"Daily weather API quota exceeded ({count}/{limit}). Please try again tomorrow."
        )


class MalformedProviderOutput(ForecastError):
    """AI provider returned text that is not a valid advice JSON object."""


class UpstreamError(ForecastError):
    """Non-2xx answer from an upstream HTTP API."""

    def __init__(self, status: int, message: str = ""):
        self.status = status
        super().__init__(f"Upstream returned error {status}: {message}")


class WeatherNotConfiguredError(ForecastError, ValueError):
    """OPENWEATHER_API_KEY is missing."""
