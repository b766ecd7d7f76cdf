"""CronStore — the full cron job set as one JSON array on disk."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from relaybot.core.cron.types import CronJob
from relaybot.errors import CronStoreError


class CronStore:
    """Whole-file persistence: every save rewrites the set atomically."""

    def __init__(self, path: str | Path = "data/crons.json"):
        self.path = Path(path)

    def load(self) -> list[CronJob]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except json.JSONDecodeError as e:
            raise CronStoreError(f"Corrupt cron file {self.path}: {e}") from e
        if not isinstance(raw, list):
            raise CronStoreError(f"Cron file {self.path} is not a JSON array")
        try:
            return [CronJob.model_validate(item) for item in raw]
        except ValidationError as e:
            raise CronStoreError(f"Invalid cron record in {self.path}: {e}") from e

    def save(self, jobs: list[CronJob]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(
            [job.model_dump(by_alias=True) for job in jobs],
            indent=2,
            ensure_ascii=False,
        )
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".crons-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.debug(f"Saved {len(jobs)} cron jobs to {self.path}")
