"""relaybot configuration schema — YAML + Pydantic + env override."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from relaybot.errors import ConfigError

CONFIG_ENV_VAR = "RELAYBOT_CONFIG"

# Tried in order when no path is given; none of them has to exist.
CONFIG_CANDIDATES = ("config.yaml", "~/.relaybot/config.yaml")

DEFAULT_SAFETY_KEYWORDS = [
    "rm", "drop", "delete", "reset", "deploy", "push",
    "force", "merge", "rebase",
    "삭제", "제거", "초기화",
]


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class RunnerConfig(BaseModel):
    """External reasoning process (runner.*)."""

    command: str = "claude"
    timeout_s: float = 300.0
    kill_grace_s: float = 5.0
    working_dir: str = "~"
    disallowed_tools: list[str] = Field(default_factory=list)
    projects: dict[str, str] = Field(default_factory=dict)  # repo name → working dir


class SafetyConfig(BaseModel):
    """Keyword gate in front of the queue."""

    enabled: bool = True
    confirm_timeout_s: float = 120.0
    keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_SAFETY_KEYWORDS))


class SchedulerConfig(BaseModel):
    enabled: bool = True
    crons_path: str = "data/crons.json"
    timezone: str | None = None


class MemoryConfig(BaseModel):
    enabled: bool = True
    history_limit: int = 20
    persona_dir: str = "data/persona"
    daily_log_dir: str = "data/logs"
    log_retention_days: int = 30


# Channels
class ConsoleChannelConfig(BaseModel):
    enabled: bool = True
    allow_from: list[str] = Field(default_factory=list)


class ChannelsConfig(BaseModel):
    console: ConsoleChannelConfig = Field(default_factory=ConsoleChannelConfig)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str | None = None
    rotation: str = "10 MB"


# Database
class DatabaseConfig(BaseModel):
    path: str = "data/relaybot.db"


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings, env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        RELAYBOT_RUNNER__TIMEOUT_S=600
        RELAYBOT_SAFETY__ENABLED=false
        RELAYBOT_DATABASE__PATH=data/prod.db
    """

    model_config = SettingsConfigDict(
        env_prefix="RELAYBOT_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML arrives as init kwargs; env must win over it.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def load(cls, path: str | Path | None = None) -> Config:
        """Build the config from a YAML file plus env overrides.

        A path given explicitly (argument or ``RELAYBOT_CONFIG``) must exist.
        Without one, the first existing entry of ``CONFIG_CANDIDATES`` is
        used, and plain defaults if there is none.
        """
        source = find_config_file(path)
        return cls(**_read_yaml(source)) if source else cls()

    # ── Computed properties ─────────────────────────────────

    @property
    def db_path(self) -> Path:
        return Path(self.database.path)

    @property
    def crons_path(self) -> Path:
        return Path(self.scheduler.crons_path)

    @property
    def persona_path(self) -> Path:
        return Path(self.memory.persona_dir)

    @property
    def daily_log_path(self) -> Path:
        return Path(self.memory.daily_log_dir)

    @property
    def default_working_dir(self) -> Path:
        return self.resolve_working_dir(self.runner.working_dir)

    @staticmethod
    def resolve_working_dir(path: str) -> Path:
        """Expand ``~`` and return an absolute path."""
        return Path(path).expanduser().resolve()

    def project_working_dir(self, chat_id: str) -> Path | None:
        """Working dir for ``owner/repo#N`` conversations, from ``runner.projects``."""
        repo, sep, number = chat_id.rpartition("#")
        if not sep or not number.isdigit() or repo.count("/") != 1:
            return None
        configured = self.runner.projects.get(repo)
        return self.resolve_working_dir(configured) if configured else None


def find_config_file(path: str | Path | None = None) -> Path | None:
    explicit = path or os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        resolved = Path(explicit).expanduser()
        if not resolved.is_file():
            raise ConfigError(f"Config file not found: {resolved}")
        return resolved

    for candidate in CONFIG_CANDIDATES:
        resolved = Path(candidate).expanduser()
        if resolved.is_file():
            return resolved
    return None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping, got {type(data).__name__}")
    return data
