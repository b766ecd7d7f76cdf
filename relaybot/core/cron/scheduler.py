"""CronScheduler — APScheduler + JSON file bridge feeding the job queue."""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from relaybot.agent.types import EnqueuedJob, ExecutionResult
from relaybot.core.cron.store import CronStore
from relaybot.core.cron.types import CronJob, build_trigger
from relaybot.errors import InvalidScheduleError

if TYPE_CHECKING:
    from relaybot.agent.queue import JobQueue
    from relaybot.core.channels.base import SendCallback

PromptBuilderFn = Callable[[str, str], str]


def format_cron_output(result: ExecutionResult) -> str:
    if result.error:
        return f"[Cron] Error: {result.error}"
    return f"[Cron] {result.output}"


class CronScheduler:
    """Bridge between the persisted cron set and APScheduler.

    The JSON file is the source of truth. Every mutation rewrites it first
    and only then updates the live trigger registry, so an enabled job has
    exactly one trigger and a disabled one has none. On fire, the job's
    prompt is enqueued and the result is sent back through the send
    callback without holding up the scheduler.
    """

    def __init__(
        self,
        store: CronStore,
        queue: JobQueue,
        prompt_builder: PromptBuilderFn | None = None,
        timezone: str | None = None,
    ):
        self.store = store
        self.queue = queue
        self.prompt_builder = prompt_builder
        self.timezone = timezone
        self._send: SendCallback | None = None
        self._deliveries: set[asyncio.Task] = set()
        self._scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )

    def set_send_callback(self, callback: SendCallback | None) -> None:
        self._send = callback

    # ── Lifecycle ────────────────────────────────────────────

    async def start(self) -> None:
        """Register every enabled persisted job and start the scheduler."""
        jobs = self.store.load()
        active = 0
        for job in jobs:
            if job.enabled and self._register(job):
                active += 1
        self._scheduler.start()
        logger.info(f"CronScheduler started with {active}/{len(jobs)} active jobs")

    async def stop(self) -> None:
        """Shutdown the scheduler; in-flight deliveries finish on their own."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("CronScheduler stopped")

    # ── Mutations ────────────────────────────────────────────

    def add_job(
        self, schedule: str, prompt: str, channel_type: str, chat_id: str
    ) -> CronJob:
        """Validate, persist, then schedule. Raises InvalidScheduleError."""
        trigger = build_trigger(schedule, self.timezone)
        job = CronJob(
            id=str(uuid.uuid4()),
            schedule=schedule,
            prompt=prompt,
            channel_type=channel_type,
            chat_id=chat_id,
        )
        jobs = self.store.load()
        jobs.append(job)
        self.store.save(jobs)

        self._register(job, trigger)
        logger.info(f"Cron job added: {job.short_id} ({schedule}) → {job.destination}")
        return job

    def remove_job(self, id_or_prefix: str) -> CronJob | None:
        """Delete the first job whose id matches (exact or prefix)."""
        jobs = self.store.load()
        removed = next((j for j in jobs if j.matches(id_or_prefix)), None)
        if removed is None:
            return None
        self.store.save([j for j in jobs if j.id != removed.id])

        self._unregister(removed.id)
        logger.info(f"Cron job removed: {removed.short_id}")
        return removed

    def toggle_job(self, id_or_prefix: str) -> CronJob | None:
        """Flip ``enabled``; add or drop the live trigger to match."""
        jobs = self.store.load()
        job = next((j for j in jobs if j.matches(id_or_prefix)), None)
        if job is None:
            return None
        job.enabled = not job.enabled
        self.store.save(jobs)

        if job.enabled:
            self._register(job)
        else:
            self._unregister(job.id)
        logger.info(f"Cron job {'enabled' if job.enabled else 'disabled'}: {job.short_id}")
        return job

    def list_jobs(self, chat_id: str | None = None) -> list[CronJob]:
        jobs = self.store.load()
        if chat_id is None:
            return jobs
        return [j for j in jobs if j.chat_id == chat_id]

    def is_scheduled(self, job_id: str) -> bool:
        return self._scheduler.get_job(job_id) is not None

    # ── Registry ─────────────────────────────────────────────

    def _register(self, job: CronJob, trigger: CronTrigger | None = None) -> bool:
        try:
            trigger = trigger or build_trigger(job.schedule, self.timezone)
            self._scheduler.add_job(
                self._fire,
                trigger=trigger,
                id=job.id,
                args=[job],
                replace_existing=True,
            )
        except InvalidScheduleError as e:
            logger.error(f"Failed to register cron job {job.short_id}: {e}")
            return False
        return True

    def _unregister(self, job_id: str) -> None:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            pass  # disabled jobs have no trigger

    # ── Execution ────────────────────────────────────────────

    async def _fire(self, job: CronJob) -> None:
        """Trigger callback: enqueue and return; delivery runs as its own task."""
        logger.info(f"Cron trigger: {job.short_id} → {job.destination}")
        try:
            prompt = (
                self.prompt_builder(job.prompt, job.chat_id)
                if self.prompt_builder
                else job.prompt
            )
            handle = self.queue.enqueue(prompt, job.destination)
        except Exception as e:
            logger.error(f"Cron job {job.short_id} could not be enqueued: {e}")
            return

        task = asyncio.create_task(self._deliver(job, handle))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, job: CronJob, handle: EnqueuedJob) -> None:
        try:
            result = await handle.result()
            text = format_cron_output(result)
            if self._send is None:
                logger.debug(f"Cron job {job.short_id}: no send callback, result dropped")
                return
            await self._send(job.channel_type, job.chat_id, text)
            logger.info(f"Cron job {job.short_id} → sent to {job.destination} ({result.status})")
        except Exception as e:
            logger.error(f"Error executing cron job {job.short_id}: {e}")
