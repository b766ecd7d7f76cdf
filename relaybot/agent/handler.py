"""MessageHandler — inbound message → safety gate → queue → delivery."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from loguru import logger

from relaybot.agent.commands import CommandRouter, is_command
from relaybot.agent.directives import apply_directives
from relaybot.agent.types import Destination

if TYPE_CHECKING:
    from relaybot.agent.context import PromptBuilder
    from relaybot.agent.queue import JobQueue
    from relaybot.agent.safety import SafetyGate
    from relaybot.core.channels.base import Channel, IncomingMessage
    from relaybot.core.config.schema import Config
    from relaybot.core.cron.scheduler import CronScheduler
    from relaybot.memory.daily_log import DailyLog
    from relaybot.memory.store import MemoryStore

PROCESSING_TEXT = "Processing..."
DENIED_TEXT = "Request denied."
EMPTY_RESPONSE = "(empty response)"
EXECUTION_LOG_CHARS = 1000


class MessageHandler:
    """
    Per-channel request pipeline.

    Flow:
        1. ``!commands`` → CommandRouter, reply, done
        2. Safety gate → approval prompt for risky text (deny → reply, done)
        3. "Processing..." placeholder, prompt build, enqueue
        4. Await the job, strip + execute cron directives
        5. Edit the placeholder with the final text, log transcript/execution

    Every request ends with exactly one terminal message.
    """

    def __init__(
        self,
        channel: Channel,
        config: Config,
        queue: JobQueue,
        gate: SafetyGate,
        prompt_builder: PromptBuilder,
        commands: CommandRouter,
        scheduler: CronScheduler | None = None,
        db: MemoryStore | None = None,
        daily_log: DailyLog | None = None,
    ):
        self.channel = channel
        self.config = config
        self.queue = queue
        self.gate = gate
        self.prompt_builder = prompt_builder
        self.commands = commands
        self.scheduler = scheduler
        self.db = db
        self.daily_log = daily_log

    async def __call__(self, msg: IncomingMessage) -> None:
        await self.handle(msg)

    async def handle(self, msg: IncomingMessage) -> None:
        chat_id, text, thread_id = msg.chat_id, msg.text, msg.thread_id
        self._log_turn(msg.sender_name or msg.sender_id, text)

        if is_command(text):
            self._record(msg.channel, chat_id, "user", text)
            try:
                reply = self.commands.dispatch(text, chat_id, msg.channel)
            except Exception as e:
                logger.error(f"Command failed for {chat_id}: {e}")
                reply = f"Command failed: {e}"
            await self.channel.send_text(chat_id, reply, thread_id)
            return

        verdict = self.gate.check_safety(text)
        if not verdict.safe:
            logger.info(f"Risky request from {chat_id}: {verdict.matched_keywords}")
            approved = await self.gate.request_approval(
                self.channel, chat_id, text, verdict.matched_keywords, thread_id
            )
            if not approved:
                self._record(msg.channel, chat_id, "user", text)
                await self.channel.send_text(chat_id, DENIED_TEXT, thread_id)
                return

        pending_id = await self.channel.send_text(chat_id, PROCESSING_TEXT, thread_id)
        start = time.monotonic()
        try:
            await self._run(msg, pending_id, start)
        except Exception as e:
            logger.exception(f"Unexpected error handling message from {chat_id}")
            await self.channel.edit_message(chat_id, pending_id, f"Unexpected error: {e}")

    async def _run(self, msg: IncomingMessage, pending_id: str, start: float) -> None:
        chat_id, text = msg.chat_id, msg.text
        prompt = self.prompt_builder.build(text, chat_id)
        self._record(msg.channel, chat_id, "user", text)

        handle = self.queue.enqueue(
            prompt,
            Destination(msg.channel, chat_id),
            self.config.project_working_dir(chat_id),
        )
        if handle.position > 1:
            await self.channel.edit_message(
                chat_id, pending_id, f"Waiting in queue... (position {handle.position})"
            )

        result = await handle.result()
        duration_ms = int((time.monotonic() - start) * 1000)

        if result.error:
            await self.channel.edit_message(chat_id, pending_id, f"Error: {result.error}")
            self._log_execution(text, result.error, result.status, msg.channel, chat_id, duration_ms)
            return

        applied = apply_directives(
            result.output or EMPTY_RESPONSE, self.scheduler, msg.channel, chat_id
        )
        response = applied.text or EMPTY_RESPONSE
        await self.channel.edit_message(chat_id, pending_id, response)

        self._record(msg.channel, chat_id, "assistant", response)
        self._log_turn("relaybot", response)
        self._log_execution(
            text, response[:EXECUTION_LOG_CHARS], "success", msg.channel, chat_id, duration_ms
        )

    # ── Transcript ──────────────────────────────────────────

    def _record(self, channel: str, chat_id: str, role: str, content: str) -> None:
        if self.db is None:
            return
        try:
            self.db.add_message(channel, chat_id, role, content)
        except Exception as e:
            logger.warning(f"Failed to record {role} message for {chat_id}: {e}")

    def _log_execution(
        self, prompt: str, output: str, status: str, channel: str, chat_id: str, duration_ms: int
    ) -> None:
        if self.db is None:
            return
        try:
            self.db.log_execution(prompt, output, status, channel, chat_id, duration_ms)
        except Exception as e:
            logger.warning(f"Failed to log execution for {chat_id}: {e}")

    def _log_turn(self, speaker: str, text: str) -> None:
        if self.daily_log is None:
            return
        try:
            self.daily_log.append(speaker, text)
        except Exception as e:
            logger.warning(f"Failed to write daily log: {e}")
