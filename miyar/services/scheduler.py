"""
Learning Scheduler — owns the background jobs of the learning pipeline.

Runs in its own process (see miyar.scheduler_main), never inside a web
worker.

Jobs:
1. Learning run (weekly cron, LEARNING_CRON) — full LearningPipeline.run
2. Alert evaluation (every ALERT_INTERVAL_MINUTES) — AlertPipeline.run
3. Expire stale alerts (every ALERT_EXPIRY_INTERVAL_MINUTES)
"""

from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from miyar.config import Settings, settings as default_settings
from miyar.exceptions import ConfigurationError
from miyar.pipeline.runner import AlertPipeline, LearningPipeline, PipelineRunReport

logger = structlog.get_logger(__name__)


class LearningScheduler:
    """
    Explicit owner of the scheduled jobs; start() and stop() are the only
    lifecycle. The pipelines stay stateless and run once per tick.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        config: Optional[Settings] = None,
        learning: Optional[LearningPipeline] = None,
        alerts: Optional[AlertPipeline] = None,
    ):
        self.config = config or default_settings
        self.alerts = alerts or AlertPipeline(session_factory, self.config)
        self.learning = learning or LearningPipeline(
            session_factory, self.config, alert_pipeline=self.alerts,
        )
        self.scheduler = AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self):
        """Register and start all scheduled jobs."""
        if self.scheduler.running:
            logger.warning("learning_scheduler_already_running")
            return

        try:
            learning_trigger = CronTrigger.from_crontab(self.config.learning_cron)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid LEARNING_CRON expression: {self.config.learning_cron!r}",
                config_key="LEARNING_CRON",
                cause=e,
            ) from e

        self.scheduler.add_job(
            self.run_learning,
            learning_trigger,
            id="learning_run",
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.run_alerts,
            IntervalTrigger(minutes=self.config.alert_interval_minutes),
            id="alert_evaluation",
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.expire_alerts,
            IntervalTrigger(minutes=self.config.alert_expiry_interval_minutes),
            id="expire_alerts",
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            "learning_scheduler_started",
            learning_cron=self.config.learning_cron,
            alert_interval_minutes=self.config.alert_interval_minutes,
        )

    def stop(self):
        """Gracefully stop the scheduler."""
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=True)
        logger.info("learning_scheduler_stopped")

    async def run_learning(self) -> Optional[PipelineRunReport]:
        """Zero-argument trigger; safe to re-run, every write is deduplicated."""
        try:
            return await self.learning.run()
        except Exception as e:
            logger.error("learning_run_failed", error=str(e))
            return None

    async def run_alerts(self) -> Optional[PipelineRunReport]:
        try:
            return await self.alerts.run()
        except Exception as e:
            logger.error("alert_evaluation_failed", error=str(e))
            return None

    async def expire_alerts(self) -> int:
        return await self.alerts.expire_stale()
