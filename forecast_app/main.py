import asyncio
import logging
from contextlib import asynccontextmanager

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from forecast_app.config import settings
from forecast_app.bot.client import dp
from forecast_app.scheduler import initialize_scheduler
from forecast_app.services.advisor import create_forecast_service


def setup_logging():
    handlers = [logging.StreamHandler()]
    if settings.LOG_FILE:
        handlers.append(logging.FileHandler(settings.LOG_FILE, encoding='utf-8'))

    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan():
    forecast_service = await create_forecast_service(settings)

    async with forecast_service:
        bot = Bot(
            token=settings.BOT_TOKEN,
            default=DefaultBotProperties(parse_mode=ParseMode.HTML)
        )

        scheduler = initialize_scheduler(forecast_service)
        scheduler.start()

        try:
            yield {"bot": bot, "scheduler": scheduler, "forecast_service": forecast_service}
        finally:
            scheduler.shutdown()
            await bot.session.close()


async def main():
    setup_logging()
    async with lifespan() as context:
        dp["forecast_service"] = context["forecast_service"]
        try:
            await dp.start_polling(context["bot"])
        except Exception as e:
            logger.error(f"Critical error: {e}")
            raise


if __name__ == "__main__":
    asyncio.run(main())
