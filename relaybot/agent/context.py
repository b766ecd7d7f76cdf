"""PromptBuilder — assembles the full prompt from persona, memory and history."""

from __future__ import annotations

from typing import TYPE_CHECKING

from relaybot.agent.directives import format_cron_job

if TYPE_CHECKING:
    from relaybot.core.cron.scheduler import CronScheduler
    from relaybot.memory.persona import PersonaFiles
    from relaybot.memory.store import MemoryStore

CRON_INSTRUCTIONS = (
    "You can manage recurring tasks for this conversation by adding tags to your reply.\n"
    'Add:    <!--CRON_JOB:{"schedule": "<cron expression>", "prompt": "<task>"}-->\n'
    'Remove: <!--CRON_REMOVE:{"id": "<job id or prefix>"}-->\n'
    "List:   <!--CRON_LIST-->\n"
    "Schedules use 5 fields (min hour day month weekday) or 6 with seconds first."
)


class PromptBuilder:
    """
    Builds the prompt string handed to the external process.

    Sections, in order (empty ones are skipped):
      1. [SOUL] / [USER INFO] / [MOOD]  — persona files
      2. [MEMORY]                       — long-term memory file
      3. [CONVERSATION HISTORY]         — recent transcript for the chat
      4. [CRON]                         — directive grammar + current jobs
      5. [CURRENT MESSAGE]              — the literal request
    """

    def __init__(
        self,
        persona: PersonaFiles | None = None,
        db: MemoryStore | None = None,
        scheduler: CronScheduler | None = None,
        history_limit: int = 20,
    ):
        self.persona = persona
        self.db = db
        self.scheduler = scheduler
        self.history_limit = history_limit

    def __call__(self, user_text: str, chat_id: str) -> str:
        return self.build(user_text, chat_id)

    def build(self, user_text: str, chat_id: str) -> str:
        parts: list[str] = []

        if self.persona is not None:
            p = self.persona.load()
            for title, key in (("SOUL", "soul"), ("USER INFO", "user"), ("MOOD", "mood")):
                if p[key].strip():
                    parts.append(f"[{title}]\n{p[key].strip()}")
            memory = self.persona.read_memory()
            if memory:
                parts.append(f"[MEMORY]\n{memory}")

        if self.db is not None and self.history_limit > 0:
            recent = self.db.get_recent_messages(chat_id, self.history_limit)
            if recent:
                history = "\n".join(
                    f"{'User' if r['role'] == 'user' else 'Assistant'}: {r['content']}"
                    for r in recent
                )
                parts.append(f"[CONVERSATION HISTORY]\n{history}")

        if self.scheduler is not None:
            parts.append(self._cron_section(chat_id))

        parts.append(f"[CURRENT MESSAGE]\nUser: {user_text}")
        return "\n\n".join(parts)

    def _cron_section(self, chat_id: str) -> str:
        jobs = self.scheduler.list_jobs(chat_id)
        current = "\n".join(format_cron_job(j) for j in jobs) if jobs else "- (none)"
        return f"[CRON]\n{CRON_INSTRUCTIONS}\n\nCurrent jobs:\n{current}"
