"""relaybot configuration."""

from relaybot.core.config.schema import Config, find_config_file

__all__ = ["Config", "find_config_file"]
