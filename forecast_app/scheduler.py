import logging
from datetime import timezone
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from forecast_app.config import settings
from forecast_app.services.advisor import ForecastService

logger = logging.getLogger(__name__)


class TaskScheduler:
    """Periodic maintenance around the forecast service caches."""

    def __init__(self, forecast_service: ForecastService, warmup_cities: Optional[List[str]] = None):
        self.forecast_service = forecast_service
        self.warmup_cities = warmup_cities if warmup_cities is not None else settings.warmup_cities
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.job_defaults = {
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 300
        }

    def initialize(self):
        logger.info("🔄 Initializing task scheduler...")

        self.scheduler = AsyncIOScheduler(job_defaults=self.job_defaults, timezone=timezone.utc)
        self._setup_jobs()

        logger.info(f"✅ Scheduler initialized with {len(self.scheduler.get_jobs())} jobs")

    def _setup_jobs(self):
        self.scheduler.add_job(
            self._cleanup_expired_cache,
            IntervalTrigger(minutes=10),
            id='cleanup_cache',
            name='Expired cache cleanup',
            replace_existing=True
        )

        self.scheduler.add_job(
            self._log_system_stats,
            IntervalTrigger(hours=1),
            id='system_stats',
            name='Cache and quota statistics',
            replace_existing=True
        )

        if self.warmup_cities:
            # right after the quota counter rolls over at UTC midnight
            self.scheduler.add_job(
                self._update_weather_cache,
                CronTrigger(hour=0, minute=5, timezone=timezone.utc),
                id='update_weather_cache',
                name='Weather cache warm-up',
                replace_existing=True
            )

    async def _cleanup_expired_cache(self) -> Dict[str, int]:
        removed = await self.forecast_service.cleanup_expired()
        logger.info(f"🧹 Cache cleanup finished: {removed}")
        return removed

    async def _log_system_stats(self) -> Dict[str, Any]:
        stats = await self.forecast_service.stats()
        quota = stats["quota"]
        logger.info(
            f"📊 System stats: cache {stats['cache']['backend']} ({stats['cache']['entries']} entries), "
            f"OpenWeather calls {quota['calls_today']}/{quota['daily_limit']}"
        )
        return stats

    async def _update_weather_cache(self) -> Dict[str, int]:
        if not self.warmup_cities:
            logger.info("No cities configured for cache warm-up")
            return {"success": 0, "failed": 0}
        return await self.forecast_service.weather_cache.update_cities_cache(self.warmup_cities)

    def start(self):
        if self.scheduler and not self.scheduler.running:
            self.scheduler.start()
            logger.info("🚀 Task scheduler started")
            for job in self.scheduler.get_jobs():
                logger.info(f"  • {job.name} ({job.id}) - next run: {job.next_run_time}")

    def shutdown(self):
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("🛑 Task scheduler stopped")

    async def run_immediate(self, task_name: str) -> Any:
        """
        Runs a job right away.

        Args:
            task_name: cleanup_cache, system_stats or update_cache
        """
        if task_name == 'cleanup_cache':
            return await self._cleanup_expired_cache()
        elif task_name == 'system_stats':
            return await self._log_system_stats()
        elif task_name == 'update_cache':
            return await self._update_weather_cache()
        else:
            raise ValueError(f"Unknown task: {task_name}")

    def get_scheduler_info(self) -> Dict[str, Any]:
        if not self.scheduler:
            return {"status": "not_initialized"}

        jobs = self.scheduler.get_jobs()
        return {
            "status": "running" if self.scheduler.running else "stopped",
            "job_count": len(jobs),
            "jobs": [
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
                    "trigger": str(job.trigger)
                }
                for job in jobs
            ]
        }


def initialize_scheduler(forecast_service: ForecastService) -> TaskScheduler:
    scheduler = TaskScheduler(forecast_service)
    scheduler.initialize()
    return scheduler
