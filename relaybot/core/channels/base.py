"""Channel base — the interface the pipeline talks to, plus the live registry."""

from __future__ import annotations

import time
from typing import Awaitable, Callable, Protocol, runtime_checkable

from loguru import logger
from pydantic import BaseModel, Field

from relaybot.core.config.schema import ChannelsConfig


class IncomingMessage(BaseModel):
    """Inbound message as delivered by a channel adapter."""

    id: str
    channel: str
    chat_id: str
    sender_id: str
    sender_name: str = ""
    text: str
    thread_id: str | None = None
    files: list[str] = Field(default_factory=list)
    timestamp: float = Field(default_factory=time.time)


MessageHandlerFn = Callable[[IncomingMessage], Awaitable[None]]
SendCallback = Callable[[str, str, str], Awaitable[None]]


@runtime_checkable
class Channel(Protocol):
    """What a chat platform adapter must provide."""

    kind: str

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def send_text(self, chat_id: str, text: str, thread_id: str | None = None) -> str:
        """Post a message and return its id."""
        ...

    async def edit_message(self, chat_id: str, message_id: str, text: str) -> None: ...

    async def send_file(self, chat_id: str, path: str, thread_id: str | None = None) -> None: ...

    async def send_confirm(self, chat_id: str, text: str, thread_id: str | None = None) -> bool:
        """Ask a yes/no question. Adapters apply their own timeout and deny on expiry."""
        ...

    def on_message(self, handler: MessageHandlerFn) -> None: ...


class ChannelRegistry:
    """Live channels by kind, looked up at send time."""

    def __init__(self):
        self._channels: dict[str, Channel] = {}

    def register(self, channel: Channel) -> None:
        self._channels[channel.kind] = channel
        logger.debug(f"Channel registered: {channel.kind}")

    def unregister(self, kind: str) -> None:
        self._channels.pop(kind, None)

    def get(self, kind: str) -> Channel | None:
        return self._channels.get(kind)

    def __iter__(self):
        return iter(list(self._channels.values()))

    def __len__(self) -> int:
        return len(self._channels)

    async def send(self, kind: str, chat_id: str, text: str) -> None:
        """Send-callback for the cron scheduler. Unknown kinds are dropped."""
        channel = self._channels.get(kind)
        if channel is None:
            logger.debug(f"No live '{kind}' channel, dropping message for {chat_id}")
            return
        await channel.send_text(chat_id, text)


def check_allowlist(
    channels_config: ChannelsConfig, channel: str, sender_id: str
) -> bool:
    """Check if sender is in the channel's allow_from list.

    Empty allow_from list means allow everyone.
    """
    channel_cfg = getattr(channels_config, channel, None)
    if channel_cfg is None:
        return False

    allow_from = getattr(channel_cfg, "allow_from", [])
    if not allow_from:
        return True  # Empty list = no restriction

    return sender_id in allow_from
