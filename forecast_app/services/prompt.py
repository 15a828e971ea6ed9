import logging
from pathlib import Path
from typing import Optional

from forecast_app.config import settings
from .weather import WeatherSnapshot

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_PATH = Path(__file__).resolve().parent.parent / "templates" / "ai_prompt.txt"

FALLBACK_TEMPLATE = (
    "You are a weather advisor. Provide advice for {{City}} with {{Temp}}°C. "
    'Return a flat JSON object with the string keys "summary", "outfit" and "safety".'
)


class PromptBuilder:
    """Fills the advice prompt template with snapshot values."""

    def __init__(self, template_path: Optional[str] = None):
        path = template_path or settings.PROMPT_TEMPLATE_PATH
        self.template_path = Path(path) if path else DEFAULT_TEMPLATE_PATH
        self._template: Optional[str] = None

    @property
    def template(self) -> str:
        if self._template is None:
            try:
                self._template = self.template_path.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning(f"Prompt template {self.template_path} unavailable ({e}), using built-in template")
                self._template = FALLBACK_TEMPLATE
        return self._template

    def build(self, weather: WeatherSnapshot) -> str:
        replacements = {
            "{{City}}": weather.city,
            "{{Country}}": weather.country,
            "{{Temp}}": f"{weather.current_temp:.0f}",
            "{{Condition}}": weather.current_condition,
            "{{Humidity}}": str(weather.humidity),
            "{{Wind}}": f"{weather.wind_speed:.1f}",
            "{{AQI}}": str(weather.aqi),
        }

        prompt = self.template
        for placeholder, value in replacements.items():
            prompt = prompt.replace(placeholder, value)
        return prompt
