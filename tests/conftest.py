"""Shared fakes for pipeline tests."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from relaybot.agent.types import ExecutionResult


class FakeRunner:
    """Stands in for ProcessRunner; records call order and concurrency."""

    def __init__(self, delay: float = 0.01):
        self.delay = delay
        self.working_dir = Path(".")
        self.started: list[str] = []
        self.calls: list[tuple[str, str, Path | None]] = []
        self.active = 0
        self.max_active = 0
        self.results: dict[str, ExecutionResult] = {}
        self.release: asyncio.Event | None = None
        self.current: str | None = None

    async def run(self, prompt, job_id, working_dir=None):
        self.started.append(prompt)
        self.calls.append((prompt, job_id, working_dir))
        self.active += 1
        self.current = job_id
        self.max_active = max(self.max_active, self.active)
        try:
            if self.release is not None:
                await self.release.wait()
            else:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
            self.current = None
        if "boom" in prompt:
            raise RuntimeError("runner exploded")
        for key, result in self.results.items():
            if key in prompt:
                return result
        return ExecutionResult(output=f"done: {prompt}")

    def is_running(self) -> bool:
        return self.active > 0

    @property
    def current_job_id(self):
        return self.current

    def cancel_current(self) -> bool:
        return False


class FakeChannel:
    """In-memory channel: records everything sent."""

    kind = "console"

    def __init__(self, approve: bool = True):
        self.approve = approve
        self.sent: list[tuple[str, str]] = []
        self.edits: list[tuple[str, str, str]] = []
        self.confirms: list[str] = []
        self.handler = None
        self._next = 0

    async def start(self):
        pass

    async def stop(self):
        pass

    async def send_text(self, chat_id, text, thread_id=None):
        self._next += 1
        self.sent.append((chat_id, text))
        return str(self._next)

    async def edit_message(self, chat_id, message_id, text):
        self.edits.append((chat_id, message_id, text))

    async def send_file(self, chat_id, path, thread_id=None):
        self.sent.append((chat_id, f"[file] {path}"))

    async def send_confirm(self, chat_id, text, thread_id=None):
        self.confirms.append(text)
        return self.approve

    def on_message(self, handler):
        self.handler = handler

    @property
    def last_text(self) -> str:
        """Final visible text: latest edit, or latest send if never edited."""
        if self.edits:
            return self.edits[-1][2]
        return self.sent[-1][1]


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def fake_channel():
    return FakeChannel()
