import logging

from aiogram import Dispatcher, F, html
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import Message

from forecast_app.services.advisor import ForecastService
from forecast_app.services.errors import QuotaExceededError, WeatherNotConfiguredError
from forecast_app.services.recommendation import AdviceResult, parse_advice
from forecast_app.services.weather import WeatherSnapshot

logger = logging.getLogger(__name__)

AQI_LABELS = {1: "Good", 2: "Fair", 3: "Moderate", 4: "Poor", 5: "Very poor"}

HELP_TEXT = (
    "Send me a city and I will tell you what the weather is like and what to wear.\n\n"
    "/weather &lt;city&gt; - current weather and the next 24 hours\n"
    "/advice &lt;city&gt; - weather plus an outfit recommendation\n"
    "/stats - cache and API quota usage"
)
QUOTA_TEXT = "The daily weather quota is used up. Please try again tomorrow."
UNAVAILABLE_TEXT = "The weather service is not configured yet. Please try again later."

dp = Dispatcher(storage=MemoryStorage())


def format_weather(weather: WeatherSnapshot) -> str:
    lines = [
        html.bold(f"{html.quote(weather.city)}, {html.quote(weather.country)}"),
        f"{weather.current_temp:.1f}°C, {html.quote(weather.description or weather.current_condition)}",
        f"High / low: {weather.max_temp:.0f}°C / {weather.min_temp:.0f}°C",
        f"Humidity: {weather.humidity}%",
        f"Wind: {weather.wind_speed:.1f} m/s",
        f"Visibility: {weather.visibility:.1f} km",
        f"Air quality: {AQI_LABELS.get(weather.aqi, weather.aqi)}",
        f"Sunrise {weather.sunrise}, sunset {weather.sunset} ({weather.day_length} of daylight)",
    ]
    if weather.day_parts:
        lines.append("")
        lines.extend(
            f"{part.label}: {part.temp:.0f}°C, {html.quote(part.condition)}" for part in weather.day_parts
        )
    return "\n".join(lines)


def format_advice(advice: AdviceResult) -> str:
    return (
        f"{html.quote(advice.summary)}\n\n"
        f"{html.bold('Outfit:')} {html.quote(advice.outfit)}\n"
        f"{html.bold('Safety:')} {html.quote(advice.safety)}"
    )


async def _load_weather(message: Message, city: str, forecast_service: ForecastService):
    if not city:
        await message.answer("Please add a city, for example: /weather London")
        return None

    try:
        weather = await forecast_service.get_weather(city)
    except QuotaExceededError as e:
        logger.warning(f"Quota exceeded for chat {message.chat.id}: {e}")
        await message.answer(QUOTA_TEXT)
        return None
    except WeatherNotConfiguredError as e:
        logger.error(f"Weather lookup refused: {e}")
        await message.answer(UNAVAILABLE_TEXT)
        return None

    if weather is None:
        await message.answer(f"City {html.quote(city)} not found.")
        return None
    return weather


@dp.message(CommandStart())
async def command_start_handler(message: Message) -> None:
    await message.answer(f"Hi! I'm the weather stylist bot.\n\n{HELP_TEXT}")


@dp.message(Command("help"))
async def help_handler(message: Message) -> None:
    await message.answer(HELP_TEXT)


@dp.message(Command("weather"))
async def weather_handler(message: Message, command: CommandObject, forecast_service: ForecastService) -> None:
    weather = await _load_weather(message, (command.args or "").strip(), forecast_service)
    if weather is not None:
        await message.answer(format_weather(weather))


@dp.message(Command("advice"))
async def advice_handler(message: Message, command: CommandObject, forecast_service: ForecastService) -> None:
    await _send_advice(message, (command.args or "").strip(), forecast_service)


@dp.message(Command("stats"))
async def stats_handler(message: Message, forecast_service: ForecastService) -> None:
    stats = await forecast_service.stats()
    quota = stats["quota"]
    await message.answer(
        f"Weather API calls today: {quota['calls_today']}/{quota['daily_limit']}\n"
        f"Cache: {stats['cache']['backend']}, {stats['cache']['entries']} entries\n"
        f"AI providers: {', '.join(stats['providers']) or 'none'}"
    )


@dp.message(F.text & ~F.text.startswith("/"))
async def city_message_handler(message: Message, forecast_service: ForecastService) -> None:
    await _send_advice(message, message.text.strip(), forecast_service)


async def _send_advice(message: Message, city: str, forecast_service: ForecastService) -> None:
    weather = await _load_weather(message, city, forecast_service)
    if weather is None:
        return

    advice = parse_advice(await forecast_service.get_advice(weather))
    await message.answer(f"{format_weather(weather)}\n\n{format_advice(advice)}")
