"""Daily conversation log: one markdown file per day, pruned by age."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from pathlib import Path

from loguru import logger

ENTRY_CHARS = 100


class DailyLog:
    """``YYYY-MM-DD.md`` files under one directory, one line per turn."""

    def __init__(self, directory: str | Path = "data/logs"):
        self.directory = Path(directory)

    def path_for(self, day: date) -> Path:
        return self.directory / f"{day.isoformat()}.md"

    def append(self, speaker: str, text: str) -> None:
        """Add ``- [HH:MM:SS] [speaker] text`` to today's file."""
        now = datetime.now()
        path = self.path_for(now.date())
        self.directory.mkdir(parents=True, exist_ok=True)
        header = "" if path.exists() else f"# {now.date().isoformat()}\n\n"
        entry = text[:ENTRY_CHARS].replace("\n", " ")
        with open(path, "a", encoding="utf-8") as f:
            f.write(f"{header}- [{now.strftime('%H:%M:%S')}] [{speaker}] {entry}\n")

    def clean_old(self, retention_days: int) -> int:
        """Delete day files older than ``retention_days``. Returns files removed."""
        if not self.directory.is_dir():
            return 0
        cutoff = date.today() - timedelta(days=retention_days)
        removed = 0
        for path in self.directory.glob("*.md"):
            try:
                day = date.fromisoformat(path.stem)
            except ValueError:
                continue  # not a day file
            if day < cutoff:
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info(f"Removed {removed} daily log(s) older than {retention_days} days")
        return removed
