"""Channel interface, registry and the built-in console adapter."""

from relaybot.core.channels.base import Channel, ChannelRegistry, IncomingMessage, check_allowlist
from relaybot.core.channels.console import ConsoleChannel

__all__ = ["Channel", "ChannelRegistry", "ConsoleChannel", "IncomingMessage", "check_allowlist"]
