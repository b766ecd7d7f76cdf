"""RelayBot — builds the pipeline components and runs them together."""

from __future__ import annotations

from loguru import logger

from relaybot.agent.commands import CommandRouter
from relaybot.agent.context import PromptBuilder
from relaybot.agent.handler import MessageHandler
from relaybot.agent.queue import JobQueue
from relaybot.agent.runner import ProcessRunner
from relaybot.agent.safety import SafetyGate
from relaybot.core.channels.base import Channel, ChannelRegistry, IncomingMessage, check_allowlist
from relaybot.core.config.schema import Config
from relaybot.core.cron.scheduler import CronScheduler
from relaybot.core.cron.store import CronStore
from relaybot.memory.daily_log import DailyLog
from relaybot.memory.persona import PersonaFiles
from relaybot.memory.store import MemoryStore


class RelayBot:
    """One runner, one queue, one scheduler; any number of channels."""

    def __init__(self, config: Config):
        self.config = config
        self.runner = ProcessRunner.from_config(config)
        self.queue = JobQueue(self.runner)
        self.gate = SafetyGate.from_config(config)
        self.channels = ChannelRegistry()

        self.db: MemoryStore | None = None
        self.persona: PersonaFiles | None = None
        self.daily_log: DailyLog | None = None
        if config.memory.enabled:
            self.db = MemoryStore(str(config.db_path))
            self.persona = PersonaFiles(config.persona_path)
            self.daily_log = DailyLog(config.daily_log_path)

        self.prompt_builder = PromptBuilder(
            persona=self.persona,
            db=self.db,
            history_limit=config.memory.history_limit,
        )

        self.scheduler: CronScheduler | None = None
        if config.scheduler.enabled:
            self.scheduler = CronScheduler(
                CronStore(config.crons_path),
                self.queue,
                prompt_builder=self.prompt_builder.build,
                timezone=config.scheduler.timezone,
            )
            self.scheduler.set_send_callback(self.channels.send)
            self.prompt_builder.scheduler = self.scheduler

        self.commands = CommandRouter(
            self.queue, scheduler=self.scheduler, persona=self.persona, db=self.db
        )

    def add_channel(self, channel: Channel) -> MessageHandler:
        """Register a channel and wire its inbound messages into the pipeline."""
        handler = MessageHandler(
            channel,
            self.config,
            self.queue,
            self.gate,
            self.prompt_builder,
            self.commands,
            scheduler=self.scheduler,
            db=self.db,
            daily_log=self.daily_log,
        )

        async def on_message(msg: IncomingMessage) -> None:
            if not check_allowlist(self.config.channels, msg.channel, msg.sender_id):
                logger.warning(f"{msg.channel}: sender {msg.sender_id} not in allow_from, ignored")
                return
            await handler.handle(msg)

        channel.on_message(on_message)
        self.channels.register(channel)
        return handler

    async def start(self) -> None:
        if self.db is not None:
            self.db.prune(self.config.memory.log_retention_days)
        if self.daily_log is not None:
            self.daily_log.clean_old(self.config.memory.log_retention_days)
        if self.scheduler is not None:
            await self.scheduler.start()
        for channel in self.channels:
            await channel.start()
        logger.info(f"relaybot is ready ({len(self.channels)} channel(s))")

    async def stop(self) -> None:
        logger.info("relaybot shutting down")
        await self.queue.shutdown()
        if self.scheduler is not None:
            await self.scheduler.stop()
        for channel in self.channels:
            try:
                await channel.stop()
            except Exception as e:
                logger.error(f"[{channel.kind}] stop error: {e}")
        logger.info("relaybot stopped")
