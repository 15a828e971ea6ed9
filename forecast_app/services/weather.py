import asyncio
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp

from forecast_app.config import settings
from .errors import ForecastError, UpstreamError, WeatherNotConfiguredError

logger = logging.getLogger(__name__)

CallHook = Callable[[int], Awaitable[Any]]

FORECAST_WINDOW = 8  # 8 x 3h entries = next 24 hours
DAY_PART_SLOTS = (("Morning", 0), ("Afternoon", 2), ("Evening", 4))
DEFAULT_AQI = 1
MANDATORY_CALLS = 2  # current conditions + forecast


@dataclass(frozen=True)
class DayPart:
    label: str
    temp: float
    condition: str


@dataclass(frozen=True)
class WeatherSnapshot:
    city: str
    country: str = ""
    current_temp: float = 0.0
    current_condition: str = "Clear"
    description: str = ""
    humidity: int = 0
    wind_speed: float = 0.0
    aqi: int = DEFAULT_AQI
    max_temp: float = 0.0
    min_temp: float = 0.0
    visibility: float = 0.0
    sunrise: str = ""
    sunset: str = ""
    day_length: str = ""
    day_parts: Tuple[DayPart, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["day_parts"] = [asdict(part) for part in self.day_parts]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeatherSnapshot":
        data = dict(data)
        parts = tuple(DayPart(**part) for part in data.pop("day_parts", []) or [])
        return cls(day_parts=parts, **data)


def _format_clock(moment: datetime) -> str:
    return moment.strftime("%I:%M %p").lstrip("0")


def _sun_times(sunrise: int, sunset: int, offset_seconds: int) -> Tuple[str, str, str]:
    tz = timezone(timedelta(seconds=offset_seconds))
    rise = datetime.fromtimestamp(sunrise, tz)
    fall = datetime.fromtimestamp(sunset, tz)

    length = int((fall - rise).total_seconds())
    hours, rest = divmod(max(length, 0), 3600)
    day_length = f"{hours}h {rest // 60}m"

    return _format_clock(rise), _format_clock(fall), day_length


def _condition(entry: Dict[str, Any], key: str = "main", default: str = "Clear") -> str:
    weather = entry.get("weather") or [{}]
    return weather[0].get(key) or default


def build_snapshot(current: Dict[str, Any], forecast: Dict[str, Any], aqi: int = DEFAULT_AQI) -> WeatherSnapshot:
    """
    Maps raw OpenWeather payloads into a WeatherSnapshot.

    Args:
        current: /weather response
        forecast: /forecast response (3-hour cadence)
        aqi: Air quality index 1..5

    Returns:
        WeatherSnapshot

    Raises:
        KeyError, IndexError, TypeError, ValueError on malformed payloads
    """
    main = current["main"]
    window: List[Dict[str, Any]] = (forecast.get("list") or [])[:FORECAST_WINDOW]

    if window:
        max_temp = max(float(item["main"]["temp_max"]) for item in window)
        min_temp = min(float(item["main"]["temp_min"]) for item in window)
    else:
        max_temp = float(main["temp_max"])
        min_temp = float(main["temp_min"])

    day_parts: Tuple[DayPart, ...] = ()
    if len(window) >= 5:
        day_parts = tuple(
            DayPart(label=label, temp=float(window[index]["main"]["temp"]), condition=_condition(window[index]))
            for label, index in DAY_PART_SLOTS
        )

    sys_data = current.get("sys") or {}
    sunrise, sunset, day_length = _sun_times(
        int(sys_data.get("sunrise", 0)),
        int(sys_data.get("sunset", 0)),
        int(current.get("timezone", 0)),
    )

    return WeatherSnapshot(
        city=current["name"],
        country=sys_data.get("country", ""),
        current_temp=float(main["temp"]),
        current_condition=_condition(current),
        description=_condition(current, "description"),
        humidity=int(main["humidity"]),
        wind_speed=float((current.get("wind") or {}).get("speed", 0.0)),
        aqi=aqi,
        max_temp=max_temp,
        min_temp=min_temp,
        visibility=int(current.get("visibility", 0)) / 1000.0,
        sunrise=sunrise,
        sunset=sunset,
        day_length=day_length,
        day_parts=day_parts,
    )


class WeatherAPI:
    """OpenWeatherMap client: current conditions, forecast and air pollution."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENWEATHER_API_KEY
        self.base_url = (base_url or settings.OPENWEATHER_BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.HTTP_TIMEOUT)
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            await self.session.close()
            self.session = None

    async def fetch(self, city: str, on_call: Optional[CallHook] = None) -> Optional[WeatherSnapshot]:
        """
        Fetches and normalizes the weather for a city.

        Returns None when the city is unknown or any mandatory upstream call
        fails. The MANDATORY_CALLS requests are left to the caller to count;
        the optional air quality request is reported through on_call(1) when
        it is attempted.
        """
        if not self.api_key:
            raise WeatherNotConfiguredError("OpenWeather API key not configured")

        if self.session is not None:
            return await self._fetch(self.session, city, on_call)

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            return await self._fetch(session, city, on_call)

    async def _fetch(
        self, session: aiohttp.ClientSession, city: str, on_call: Optional[CallHook]
    ) -> Optional[WeatherSnapshot]:
        try:
            results = await asyncio.gather(
                self._get_json(session, "weather", {"q": city, "units": "metric"}),
                self._get_json(session, "forecast", {"q": city, "units": "metric"}),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            current, forecast = results

            aqi = await self._fetch_aqi(session, current, on_call)
            snapshot = build_snapshot(current, forecast, aqi)

        except UpstreamError as e:
            if e.status == 404:
                logger.info(f"City not found upstream: {city}")
            else:
                logger.error(f"❌ Error fetching weather for {city}: {e}")
            return None
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"❌ Network error fetching weather for {city}: {e!r}")
            return None
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error(f"❌ Malformed weather payload for {city}: {e!r}")
            return None

        return snapshot

    async def _fetch_aqi(
        self, session: aiohttp.ClientSession, current: Dict[str, Any], on_call: Optional[CallHook]
    ) -> int:
        coord = current.get("coord") or {}
        if "lat" not in coord or "lon" not in coord:
            logger.warning(f"No coordinates for {current.get('name')}, AQI defaults to {DEFAULT_AQI}")
            return DEFAULT_AQI

        try:
            data = await self._get_json(
                session, "air_pollution", {"lat": coord["lat"], "lon": coord["lon"]}, on_call
            )
            return int(data["list"][0]["main"]["aqi"])
        except (ForecastError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Air quality request failed, AQI defaults to {DEFAULT_AQI}: {e!r}")
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"Malformed air quality payload, AQI defaults to {DEFAULT_AQI}: {e!r}")
        return DEFAULT_AQI

    async def _get_json(
        self,
        session: aiohttp.ClientSession,
        endpoint: str,
        params: Dict[str, Any],
        on_call: Optional[CallHook] = None,
    ) -> Dict[str, Any]:
        if on_call is not None:
            await on_call(1)

        url = f"{self.base_url}/{endpoint}"
        query = {**params, "appid": self.api_key}

        async with session.get(url, params=query) as response:
            if response.status != 200:
                error_text = await response.text()
                logger.debug(f"OpenWeather {endpoint} error {response.status}: {error_text}")
                raise UpstreamError(response.status, error_text)

            data = await response.json(content_type=None)
            if not isinstance(data, dict):
                raise ValueError(f"Unexpected {endpoint} payload type: {type(data).__name__}")
            return data
