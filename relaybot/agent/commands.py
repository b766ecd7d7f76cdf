"""Chat commands (``!status``, ``!cron`` ...) handled without the external process."""

from __future__ import annotations

import shlex
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from relaybot.errors import InvalidScheduleError

if TYPE_CHECKING:
    from relaybot.agent.queue import JobQueue
    from relaybot.core.cron.scheduler import CronScheduler
    from relaybot.memory.persona import PersonaFiles
    from relaybot.memory.store import MemoryStore

PREFIX = "!"

HELP_TEXT = """Commands:
!cd <path>                       change working directory
!pwd                             current working directory
!status                          runner and queue state
!system                          queue and recent executions
!running                         running job and waiting prompts
!cancel [id]                     stop the running job, or drop a queued one
!cron                            list cron jobs
!cron add "<schedule>" "<prompt>"
!cron remove <id>
!cron toggle <id>
!memory [text]                   show or append memory
!forget                          clear memory
!persona [soul|user|mood <text>] show or update persona
!history [n]                     recent conversation
!help                            this message"""

CRON_USAGE = 'Usage: !cron <add|remove|toggle|list>\n!cron add "<schedule>" "<prompt>"'


def is_command(text: str) -> bool:
    return text.startswith(PREFIX)


class CommandRouter:
    """Dispatch ``!commands`` for one conversation."""

    def __init__(
        self,
        queue: JobQueue,
        scheduler: CronScheduler | None = None,
        persona: PersonaFiles | None = None,
        db: MemoryStore | None = None,
    ):
        self.queue = queue
        self.runner = queue.runner
        self.scheduler = scheduler
        self.persona = persona
        self.db = db
        self._handlers: dict[str, Callable[[str, str, str], str]] = {
            "cd": self._cd,
            "pwd": lambda *_: str(self.runner.working_dir),
            "status": self._status,
            "system": self._system,
            "running": self._running,
            "cancel": self._cancel,
            "cron": self._cron,
            "memory": self._memory,
            "forget": self._forget,
            "persona": self._persona,
            "history": self._history,
            "help": lambda *_: HELP_TEXT,
        }

    def dispatch(self, text: str, chat_id: str, channel: str) -> str:
        """Run a command and return the reply text."""
        body = text[len(PREFIX):].strip()
        parts = body.split(maxsplit=1)
        cmd = parts[0].lower() if parts else ""
        args = parts[1].strip() if len(parts) > 1 else ""

        handler = self._handlers.get(cmd)
        if handler is None:
            return f"Unknown command: {cmd}\nType !help for available commands"
        return handler(args, chat_id, channel)

    # ── Runner / queue ──────────────────────────────────────

    def _cd(self, args: str, chat_id: str, channel: str) -> str:
        if not args:
            return "Usage: !cd <path>"
        target = (self.runner.working_dir / Path(args).expanduser()).resolve()
        if not target.is_dir():
            return f"Path not found: {target}"
        self.runner.working_dir = target
        return f"-> {target}"

    def _system(self, args: str, chat_id: str, channel: str) -> str:
        lines = [
            "System Info",
            f"  Working directory: {self.runner.working_dir}",
            f"  Queue: {len(self.queue)} item(s)",
            "",
            "Recent executions:",
        ]
        if self.db is None:
            lines.append("  (history is disabled)")
            return "\n".join(lines)
        executions = self.db.get_recent_executions(5)
        if not executions:
            lines.append("  (none)")
        for e in executions:
            stamp = datetime.fromtimestamp(e["timestamp"]).strftime("%H:%M:%S")
            lines.append(f"  [{stamp}] {e['status']} ({e['duration_ms']}ms)")
        return "\n".join(lines)

    def _status(self, args: str, chat_id: str, channel: str) -> str:
        lines = [
            f"Status: {'Running' if self.runner.is_running() else 'Idle'}",
            f"Queue: {len(self.queue)} item(s)",
            f"Working directory: {self.runner.working_dir}",
        ]
        if self.scheduler is not None:
            active = sum(1 for j in self.scheduler.list_jobs() if j.enabled)
            lines.append(f"Cron: {active} active job(s)")
        return "\n".join(lines)

    def _running(self, args: str, chat_id: str, channel: str) -> str:
        pending = self.queue.pending()
        running = self.runner.is_running()
        if not running and not pending:
            return "No task is currently running."

        lines: list[str] = []
        if running:
            lines.append(f"Running: {self.runner.current_job_id}")
        if pending:
            lines.append(f"Queue ({len(pending)} item(s)):")
            for i, job in enumerate(pending, 1):
                lines.append(f"  {i}. [{job.id[:8]}] {job.prompt[-50:]}...")
        return "\n".join(lines)

    def _cancel(self, args: str, chat_id: str, channel: str) -> str:
        if args:
            matches = [j for j in self.queue.pending() if j.id.startswith(args)]
            if matches and self.queue.remove_from_queue(matches[0].id):
                return f"Removed from queue: {matches[0].id[:8]}"
            return f"Not in queue: {args}"
        if self.runner.cancel_current():
            return "Running task cancelled."
        return "No task is currently running."

    # ── Cron ────────────────────────────────────────────────

    def _cron(self, args: str, chat_id: str, channel: str) -> str:
        if self.scheduler is None:
            return "Scheduler is disabled."
        if not args or args == "list":
            jobs = self.scheduler.list_jobs()
            if not jobs:
                return "No cron jobs registered."
            return "\n".join(
                f"{'ON' if j.enabled else 'OFF'} [{j.short_id}] {j.schedule} -> {j.prompt[:40]}"
                for j in jobs
            )

        try:
            tokens = shlex.split(args)
        except ValueError:
            return CRON_USAGE
        if not tokens:
            return CRON_USAGE
        sub, rest = tokens[0], tokens[1:]

        if sub == "add":
            if len(rest) != 2:
                return 'Usage: !cron add "<schedule>" "<prompt>"'
            try:
                job = self.scheduler.add_job(rest[0], rest[1], channel, chat_id)
            except InvalidScheduleError as e:
                return str(e)
            return f"Cron job added: {job.short_id} ({job.schedule})"
        if sub == "remove":
            if not rest:
                return "Usage: !cron remove <id>"
            removed = self.scheduler.remove_job(rest[0])
            return f"Cron job removed: {rest[0]}" if removed else f"Not found: {rest[0]}"
        if sub == "toggle":
            if not rest:
                return "Usage: !cron toggle <id>"
            toggled = self.scheduler.toggle_job(rest[0])
            if toggled is None:
                return f"Not found: {rest[0]}"
            return f"Cron job {'enabled' if toggled.enabled else 'disabled'}: {rest[0]}"
        return CRON_USAGE

    # ── Memory / persona / history ──────────────────────────

    def _memory(self, args: str, chat_id: str, channel: str) -> str:
        if self.persona is None:
            return "Memory is disabled."
        if not args:
            return self.persona.read_memory() or "(empty)"
        self.persona.append_memory(args)
        return f"Memory added: {args}"

    def _forget(self, args: str, chat_id: str, channel: str) -> str:
        if self.persona is None:
            return "Memory is disabled."
        self.persona.clear_memory()
        return "Memory cleared."

    def _persona(self, args: str, chat_id: str, channel: str) -> str:
        if self.persona is None:
            return "Memory is disabled."
        if not args:
            p = self.persona.load()
            return f"[SOUL]\n{p['soul']}\n\n[USER]\n{p['user']}\n\n[MOOD]\n{p['mood']}"

        section, _, content = args.partition(" ")
        section = section.lower()
        if section not in ("soul", "user", "mood") or not content.strip():
            return "Usage: !persona <soul|user|mood> <content>"
        self.persona.write(section, content.strip())
        return f"{section.upper()} updated."

    def _history(self, args: str, chat_id: str, channel: str) -> str:
        if self.db is None:
            return "History is disabled."
        limit = int(args) if args.isdigit() and int(args) > 0 else 10
        rows = self.db.get_recent_messages(chat_id, limit)
        if not rows:
            return "No conversation history."
        return "\n".join(
            f"[{datetime.fromtimestamp(r['timestamp']).strftime('%H:%M:%S')}] "
            f"{r['role']}: {r['content'][:100]}"
            for r in rows
        )
