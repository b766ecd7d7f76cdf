"""Queue/runner data model."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

CANCELLED_FROM_QUEUE = "Cancelled from queue"
CANCELLED_WHILE_RUNNING = "Cancelled"


@dataclass(frozen=True)
class Destination:
    """Where output goes: channel kind + conversation id."""

    channel: str
    chat_id: str

    def __str__(self) -> str:
        return f"{self.channel}:{self.chat_id}"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one external-process invocation. Immutable."""

    output: str = ""
    error: str | None = None
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status(self) -> str:
        """Execution-history status: success | error | timeout | cancelled."""
        if self.timed_out:
            return "timeout"
        if self.cancelled:
            return "cancelled"
        return "success" if self.error is None else "error"

    @classmethod
    def cancelled_from_queue(cls) -> ExecutionResult:
        return cls(error=CANCELLED_FROM_QUEUE, cancelled=True)


@dataclass
class Job:
    """One queued request. Owned by the queue until handed to the runner."""

    id: str
    prompt: str
    destination: Destination
    future: asyncio.Future
    working_dir: Path | None = None

    def resolve(self, result: ExecutionResult) -> bool:
        """Complete the job's handle. Returns False if it was already settled."""
        if self.future.done():
            return False
        self.future.set_result(result)
        return True

    def fail(self, exc: BaseException) -> bool:
        if self.future.done():
            return False
        self.future.set_exception(exc)
        return True


@dataclass(frozen=True)
class EnqueuedJob:
    """Handle returned by ``JobQueue.enqueue``.

    ``position`` is a 1-based snapshot taken at enqueue time.
    """

    id: str
    position: int
    future: asyncio.Future = field(repr=False)

    async def result(self) -> ExecutionResult:
        return await self.future
