import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from aioresponses import aioresponses

from forecast_app.config import settings
from forecast_app.services.weather import DayPart, WeatherSnapshot


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeWeatherAPI:
    """Stands in for WeatherAPI: counts fetches and reports the air quality call through on_call."""

    def __init__(self, snapshot=None, delay: float = 0):
        self.snapshot = snapshot
        self.delay = delay
        self.fetch_calls = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed = True

    async def fetch(self, city, on_call=None):
        self.fetch_calls.append(city)
        # the real client yields on its first request
        await asyncio.sleep(0)
        if on_call is not None:
            await on_call(1)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.snapshot


@pytest.fixture(autouse=True)
def mock_api_keys(monkeypatch):
    monkeypatch.setattr(settings, "OPENWEATHER_API_KEY", "fake_key")
    for name in ("CEREBRAS_API_KEY", "GROQ_API_KEY", "DEEPSEEK_API_KEY",
                 "MISTRAL_API_KEY", "HUGGINGFACE_API_KEY", "GEMINI_API_KEY"):
        monkeypatch.setattr(settings, name, "")


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 12, 24, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def mock_aioresponse():
    with aioresponses() as m:
        yield m


@pytest.fixture
def snapshot():
    return WeatherSnapshot(
        city="Paris",
        country="FR",
        current_temp=21.3,
        current_condition="Clear",
        description="clear sky",
        humidity=55,
        wind_speed=3.4,
        aqi=2,
        max_temp=24.0,
        min_temp=15.0,
        visibility=10.0,
        sunrise="7:45 AM",
        sunset="8:10 PM",
        day_length="12h 25m",
        day_parts=(
            DayPart(label="Morning", temp=17.0, condition="Clear"),
            DayPart(label="Afternoon", temp=23.0, condition="Clouds"),
            DayPart(label="Evening", temp=19.0, condition="Clear"),
        ),
    )


@pytest.fixture
def dubai_current():
    return {
        "name": "Dubai",
        "sys": {"country": "AE", "sunrise": 1672531200, "sunset": 1672574400},
        "main": {"temp": 30.5, "humidity": 40, "temp_min": 28, "temp_max": 32},
        "wind": {"speed": 5.5},
        "weather": [{"main": "Clear", "description": "clear sky"}],
        "coord": {"lat": 25.2, "lon": 55.2},
        "visibility": 10000,
        "timezone": 14400,
    }


@pytest.fixture
def dubai_forecast():
    def entry(temp, temp_min, temp_max, condition):
        return {
            "main": {"temp": temp, "temp_min": temp_min, "temp_max": temp_max},
            "weather": [{"main": condition}],
        }

    return {
        "list": [
            entry(30, 29, 31, "Sun"),
            entry(32, 31, 33, "Sun"),
            entry(34, 33, 35, "Sun"),
            entry(29, 28, 30, "Sun"),
            entry(28, 27, 29, "Moon"),
            entry(27, 26, 28, "Moon"),
            entry(26, 25, 27, "Moon"),
            entry(25, 24, 26, "Moon"),
            # beyond the 24h window, must be ignored
            entry(45, 10, 50, "Storm"),
        ]
    }


@pytest_asyncio.fixture
async def fake_redis():
    from fakeredis.aioredis import FakeRedis

    client = FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
