"""Daily trigger for the scheduled expiry alert."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from insurance_tracker.alerts import AlertPipeline
from insurance_tracker.config import Config

logger = logging.getLogger(__name__)

JOB_ID = "daily-insurance-alert"


def build_scheduler(pipeline: AlertPipeline, config: Config) -> BackgroundScheduler:
    """A stopped scheduler with one cron job at ``alert_time`` in the configured zone."""
    hour, minute = config.alert_hour_minute
    scheduler = BackgroundScheduler(timezone=config.tz)
    scheduler.add_job(
        pipeline.run_scheduled,
        CronTrigger(hour=hour, minute=minute, timezone=config.tz),
        id=JOB_ID,
        name="Scheduled insurance expiry alert",
        misfire_grace_time=3600,
        coalesce=True,
    )
    logger.info("Scheduled daily alert at %s %s", config.alert_time, config.timezone)
    return scheduler
