"""Persona and long-term memory as markdown files."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

SECTIONS = ("soul", "user", "mood")

_DEFAULTS = {
    "soul": "# relaybot\n- Assistant for workplace tasks\n- Friendly yet professional tone\n",
    "user": "# User Info\n- (Not yet configured)\n",
    "mood": "# Current State\n- Mood: Neutral\n",
}


class PersonaFiles:
    """SOUL.md / USER.md / MOOD.md / MEMORY.md under one directory."""

    def __init__(self, directory: str | Path = "data/persona"):
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self.directory / f"{name.upper()}.md"

    def read(self, section: str) -> str:
        if section not in SECTIONS:
            raise ValueError(f"Unknown persona section: {section}")
        path = self._path(section)
        if not path.exists():
            self.write(section, _DEFAULTS[section])
            return _DEFAULTS[section]
        return path.read_text(encoding="utf-8")

    def write(self, section: str, content: str) -> None:
        if section not in SECTIONS:
            raise ValueError(f"Unknown persona section: {section}")
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path(section).write_text(content, encoding="utf-8")

    def load(self) -> dict[str, str]:
        return {s: self.read(s) for s in SECTIONS}

    # ── Memory ──────────────────────────────────────────────

    def read_memory(self) -> str:
        path = self._path("memory")
        return path.read_text(encoding="utf-8").strip() if path.exists() else ""

    def append_memory(self, text: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M")
        with open(self._path("memory"), "a", encoding="utf-8") as f:
            f.write(f"- [{stamp}] {text}\n")

    def clear_memory(self) -> None:
        self._path("memory").unlink(missing_ok=True)
