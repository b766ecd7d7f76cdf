"""Exception hierarchy."""

from __future__ import annotations


class RelayBotError(Exception):
    """Base class for relaybot errors."""


class InvalidScheduleError(RelayBotError, ValueError):
    """Cron expression rejected at add-time."""

    def __init__(self, schedule: str, reason: str = ""):
        self.schedule = schedule
        msg = f"Invalid cron schedule: {schedule}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class CronStoreError(RelayBotError):
    """Persisted cron file exists but cannot be parsed."""


class ConfigError(RelayBotError):
    """Config file missing, unreadable or not a YAML mapping."""
