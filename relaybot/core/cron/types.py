"""Cron job types and schedule validation."""

from __future__ import annotations

import time

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from relaybot.agent.types import Destination
from relaybot.errors import InvalidScheduleError

# Standard cron numbering: 0 and 7 are Sunday. APScheduler counts from Monday.
_DOW_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]


def _now_ms() -> int:
    return int(time.time() * 1000)


class CronJob(BaseModel):
    """Recurring request. Serialized with camelCase keys (crons.json)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    schedule: str
    prompt: str
    channel_type: str
    chat_id: str
    enabled: bool = True
    created_at: int = Field(default_factory=_now_ms)  # epoch ms

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @property
    def destination(self) -> Destination:
        return Destination(self.channel_type, self.chat_id)

    def matches(self, id_or_prefix: str) -> bool:
        """Exact id or non-empty id prefix."""
        return bool(id_or_prefix) and (
            self.id == id_or_prefix or self.id.startswith(id_or_prefix)
        )


def build_trigger(schedule: str, timezone: str | None = None) -> CronTrigger:
    """Parse a five-field (m h dom mon dow) or six-field (s m h dom mon dow) expression.

    Raises InvalidScheduleError for anything else.
    """
    fields = schedule.split()
    if len(fields) == 5:
        second = "0"
        minute, hour, day, month, dow = fields
    elif len(fields) == 6:
        second, minute, hour, day, month, dow = fields
    else:
        raise InvalidScheduleError(schedule, f"expected 5 or 6 fields, got {len(fields)}")

    day_of_week = _translate_dow(schedule, dow)
    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
            timezone=timezone,
        )
    except ValueError as e:
        raise InvalidScheduleError(schedule, str(e)) from e


def validate_schedule(schedule: str) -> bool:
    try:
        build_trigger(schedule)
    except InvalidScheduleError:
        return False
    return True


def _translate_dow(schedule: str, field: str) -> str:
    """Rewrite numeric day-of-week values to names APScheduler reads the cron way."""
    if not any(ch.isdigit() for ch in field):
        return field

    names: list[str] = []
    for part in field.split(","):
        base, slash, step = part.partition("/")
        if not slash and (base == "*" or not base.replace("-", "").isdigit()):
            names.append(part)
            continue
        if slash and (not step.isdigit() or int(step) == 0):
            raise InvalidScheduleError(schedule, f"bad day-of-week step: {part}")

        if base == "*":
            days = range(0, 7, int(step))
        elif "-" in base:
            first, _, last = base.partition("-")
            if not (first.isdigit() and last.isdigit()):
                raise InvalidScheduleError(schedule, f"bad day-of-week range: {part}")
            days = range(int(first), int(last) + 1, int(step) if slash else 1)
        elif base.isdigit():
            days = range(int(base), 8, int(step)) if slash else range(int(base), int(base) + 1)
        else:
            raise InvalidScheduleError(schedule, f"bad day-of-week: {part}")

        for d in days:
            if d > 7:
                raise InvalidScheduleError(schedule, f"day-of-week out of range: {d}")
            names.append(_DOW_NAMES[d % 7])

    if not names:
        raise InvalidScheduleError(schedule, f"empty day-of-week: {field}")
    return ",".join(dict.fromkeys(names))
