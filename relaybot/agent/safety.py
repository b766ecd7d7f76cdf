"""Safety gate — keyword denylist + fail-closed confirmation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from relaybot.core.channels.base import Channel
    from relaybot.core.config.schema import Config

PREVIEW_CHARS = 100


@dataclass(frozen=True)
class SafetyVerdict:
    safe: bool
    matched_keywords: list[str] = field(default_factory=list)


class SafetyGate:
    """Decides whether a request may run without explicit approval."""

    def __init__(
        self,
        keywords: list[str],
        enabled: bool = True,
        confirm_timeout_s: float = 120.0,
    ):
        self.keywords = list(keywords)
        self.enabled = enabled
        self.confirm_timeout_s = confirm_timeout_s

    @classmethod
    def from_config(cls, config: Config) -> SafetyGate:
        return cls(
            keywords=config.safety.keywords,
            enabled=config.safety.enabled,
            confirm_timeout_s=config.safety.confirm_timeout_s,
        )

    def check_safety(self, text: str) -> SafetyVerdict:
        """Case-insensitive substring match against the keyword list."""
        if not self.enabled:
            return SafetyVerdict(safe=True)
        lower = text.lower()
        matched = [kw for kw in self.keywords if kw.lower() in lower]
        return SafetyVerdict(safe=not matched, matched_keywords=matched)

    async def request_approval(
        self,
        channel: Channel,
        chat_id: str,
        text: str,
        matched_keywords: list[str],
        thread_id: str | None = None,
    ) -> bool:
        """Ask the channel for a yes/no, bounded by the gate's own deadline.

        Anything other than an explicit ``True`` before the deadline is a deny.
        """
        prompt = format_warning(text, matched_keywords)
        try:
            approved = await asyncio.wait_for(
                channel.send_confirm(chat_id, prompt, thread_id),
                timeout=self.confirm_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Approval timed out for {chat_id} ({self.confirm_timeout_s}s)")
            return False
        except Exception as e:
            logger.warning(f"Approval request failed for {chat_id}: {e}")
            return False

        logger.info(f"Approval for {chat_id}: {'granted' if approved is True else 'denied'}")
        return approved is True


def format_warning(text: str, matched_keywords: list[str]) -> str:
    preview = text[:PREVIEW_CHARS] + ("..." if len(text) > PREVIEW_CHARS else "")
    return (
        f"⚠️ Risky request detected: [{', '.join(matched_keywords)}]\n"
        f'Request: "{preview}"\n\n'
        f"Proceed?"
    )
