"""Console channel — local terminal adapter (rich)."""

from __future__ import annotations

import asyncio
import itertools
import threading
import uuid

from loguru import logger
from rich.console import Console
from rich.markup import escape

from relaybot.core.channels.base import IncomingMessage, MessageHandlerFn

_YES = {"y", "yes"}
_PROMPT = "[bold blue]You:[/bold blue] "


class ConsoleChannel:
    """Reads requests from stdin and prints replies.

    One daemon thread owns stdin and feeds every line into a queue. The read
    loop and approval prompts both take lines from that queue, so an answer
    that arrives after a confirm timed out is read as the next request.
    Messages are handled one at a time.
    """

    kind = "console"

    def __init__(
        self,
        console: Console | None = None,
        chat_id: str = "local",
        sender_id: str = "local",
        confirm_timeout_s: float = 60.0,
    ):
        self.console = console or Console()
        self.chat_id = chat_id
        self.sender_id = sender_id
        self.confirm_timeout_s = confirm_timeout_s
        self._handler: MessageHandlerFn | None = None
        self._ids = itertools.count(1)
        self._task: asyncio.Task | None = None
        self._lines: asyncio.Queue[str | None] = asyncio.Queue()
        self._reader: threading.Thread | None = None

    def on_message(self, handler: MessageHandlerFn) -> None:
        self._handler = handler

    async def start(self) -> None:
        self._task = asyncio.create_task(self._read_loop())
        logger.info("Console channel started")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("Console channel stopped")

    async def wait_closed(self) -> None:
        """Block until stdin closes or the user types exit."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    # ── Outbound ────────────────────────────────────────────

    async def send_text(self, chat_id: str, text: str, thread_id: str | None = None) -> str:
        message_id = str(next(self._ids))
        self.console.print(f"[bold cyan]relaybot:[/bold cyan] {escape(text)}", highlight=False)
        return message_id

    async def edit_message(self, chat_id: str, message_id: str, text: str) -> None:
        self.console.print(f"[bold cyan]relaybot:[/bold cyan] {escape(text)}", highlight=False)

    async def send_file(self, chat_id: str, path: str, thread_id: str | None = None) -> None:
        self.console.print(f"[bold cyan]relaybot:[/bold cyan] {escape('[file] ' + path)}", highlight=False)

    async def send_confirm(self, chat_id: str, text: str, thread_id: str | None = None) -> bool:
        self.console.print(f"[yellow]{escape(text)}[/yellow]", highlight=False)
        try:
            answer = await asyncio.wait_for(
                self._next_line(escape("[y/N] ")), timeout=self.confirm_timeout_s
            )
        except asyncio.TimeoutError:
            self.console.print("(no answer, denied)")
            return False
        if answer is None:
            return False
        return answer.strip().lower() in _YES

    # ── Inbound ─────────────────────────────────────────────

    def _start_reader(self) -> None:
        if self._reader is not None:
            return
        loop = asyncio.get_running_loop()
        self._reader = threading.Thread(
            target=self._read_stdin, args=(loop,), name="console-stdin", daemon=True
        )
        self._reader.start()

    def _read_stdin(self, loop: asyncio.AbstractEventLoop) -> None:
        """Reader thread: push each line, then None once stdin closes."""
        while True:
            try:
                line: str | None = self.console.input()
            except (EOFError, KeyboardInterrupt):
                line = None
            try:
                loop.call_soon_threadsafe(self._lines.put_nowait, line)
            except RuntimeError:
                return  # event loop already closed
            if line is None:
                return

    async def _next_line(self, prompt: str) -> str | None:
        """Next stdin line, or None at end of input."""
        self._start_reader()
        self.console.print(prompt, end="")
        line = await self._lines.get()
        if line is None:
            self._lines.put_nowait(None)  # stays at EOF for later readers
        return line

    async def _read_loop(self) -> None:
        while True:
            line = await self._next_line(_PROMPT)
            if line is None:
                self.console.print("\nBye!")
                return

            text = line.strip()
            if not text:
                continue
            if text.lower() in ("exit", "quit"):
                self.console.print("Bye!")
                return
            await self.dispatch(text)

    async def dispatch(self, text: str) -> None:
        """Feed one line through the registered handler."""
        if self._handler is None:
            logger.warning("Console message dropped: no handler registered")
            return
        await self._handler(
            IncomingMessage(
                id=str(uuid.uuid4()),
                channel=self.kind,
                chat_id=self.chat_id,
                sender_id=self.sender_id,
                text=text,
            )
        )
