"""Cron scheduling — APScheduler + JSON file bridge."""

from relaybot.core.cron.scheduler import CronScheduler
from relaybot.core.cron.store import CronStore
from relaybot.core.cron.types import CronJob, build_trigger, validate_schedule

__all__ = ["CronScheduler", "CronStore", "CronJob", "build_trigger", "validate_schedule"]
