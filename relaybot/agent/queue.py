"""JobQueue — strictly serial FIFO in front of the ProcessRunner."""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from pathlib import Path

from loguru import logger

from relaybot.agent.runner import ProcessRunner
from relaybot.agent.types import Destination, EnqueuedJob, ExecutionResult, Job


class JobQueue:
    """Single-consumer queue: at most one job is inside the runner at a time.

    Producers (channel handlers, cron fires) call ``enqueue`` from the event
    loop. ``enqueue`` and ``remove_from_queue`` never await, so on a single
    loop they are mutually exclusive with the worker's pop without a lock.
    """

    def __init__(self, runner: ProcessRunner):
        self.runner = runner
        self._pending: deque[Job] = deque()
        self._current: Job | None = None
        self._worker: asyncio.Task | None = None

    # ── Producers ────────────────────────────────────────────

    def enqueue(
        self,
        prompt: str,
        destination: Destination,
        working_dir: str | Path | None = None,
    ) -> EnqueuedJob:
        """Append a job; start the worker if idle.

        Returns a handle whose ``position`` counts the running job, so
        ``1`` means the job starts right away.
        """
        loop = asyncio.get_running_loop()
        job = Job(
            id=str(uuid.uuid4()),
            prompt=prompt,
            destination=destination,
            future=loop.create_future(),
            working_dir=Path(working_dir) if working_dir else None,
        )
        self._pending.append(job)
        position = len(self._pending) + (1 if self._current else 0)
        logger.info(f"Enqueued job {job.id[:8]} for {destination} (position {position})")

        if self._worker is None:
            self._worker = loop.create_task(self._drain())
        return EnqueuedJob(id=job.id, position=position, future=job.future)

    def remove_from_queue(self, job_id: str) -> bool:
        """Cancel a job that has not started yet.

        Running jobs are out of reach here; use ``ProcessRunner.cancel_current``.
        """
        for job in self._pending:
            if job.id == job_id:
                self._pending.remove(job)
                job.resolve(ExecutionResult.cancelled_from_queue())
                logger.info(f"Removed job {job_id[:8]} from queue")
                return True
        return False

    # ── Introspection ────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._pending)

    def pending(self) -> list[Job]:
        """Snapshot of waiting jobs, head first."""
        return list(self._pending)

    @property
    def current_job(self) -> Job | None:
        return self._current

    @property
    def is_processing(self) -> bool:
        return self._worker is not None

    # ── Worker ───────────────────────────────────────────────

    async def _drain(self) -> None:
        try:
            while self._pending:
                job = self._pending.popleft()
                self._current = job
                try:
                    result = await self.runner.run(job.prompt, job.id, job.working_dir)
                except asyncio.CancelledError:
                    job.resolve(ExecutionResult(error="Queue shut down", cancelled=True))
                    raise
                except Exception as e:
                    logger.error(f"Job {job.id[:8]} raised in runner: {e}")
                    job.fail(e)
                else:
                    job.resolve(result)
                finally:
                    self._current = None
        finally:
            self._worker = None

    async def shutdown(self, timeout_s: float = 10.0) -> None:
        """Cancel everything waiting, stop the running process, wait for the worker."""
        while self._pending:
            job = self._pending.popleft()
            job.resolve(ExecutionResult.cancelled_from_queue())
        self.runner.cancel_current()

        worker = self._worker
        if worker is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(worker), timeout=timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Queue worker did not finish in time, cancelling")
            worker.cancel()
            await asyncio.gather(worker, return_exceptions=True)
        logger.info("JobQueue stopped")
