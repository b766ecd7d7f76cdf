"""ProcessRunner — supervises the single external reasoning process."""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from relaybot.agent.types import CANCELLED_WHILE_RUNNING, ExecutionResult

if TYPE_CHECKING:
    from relaybot.core.config.schema import Config

# Checked in order against lowercased stderr; first hit wins.
_ERROR_MARKERS: list[tuple[str, tuple[str, ...]]] = [
    ("auth_error", ("auth", "unauthorized")),
    ("rate_limit", ("rate", "throttl")),
    ("timeout", ("timeout",)),
]

MAX_STDERR_IN_ERROR = 200
_READ_CHUNK = 4096


def classify_error(stderr: str, code: int | None) -> str:
    """Map a failed exit to a coarse error kind by scanning stderr."""
    lower = stderr.lower()
    for kind, markers in _ERROR_MARKERS:
        if any(m in lower for m in markers):
            return kind
    code_text = "unknown" if code is None else str(code)
    return f"exit_code_{code_text}: {stderr[:MAX_STDERR_IN_ERROR]}"


class ProcessRunner:
    """Runs one external process at a time.

    Serialization is the queue's job; calling ``run`` while another run is
    active is a caller bug. Process outcomes never raise: spawn failures,
    non-zero exits, timeouts and cancellation all come back as an
    ``ExecutionResult``.
    """

    def __init__(
        self,
        command: str = "claude",
        timeout_s: float = 300.0,
        working_dir: str | Path = "~",
        disallowed_tools: list[str] | None = None,
        kill_grace_s: float = 5.0,
    ):
        self.command = command
        self.timeout_s = timeout_s
        self.working_dir = Path(working_dir).expanduser()
        self.disallowed_tools = list(disallowed_tools or [])
        self.kill_grace_s = kill_grace_s
        self._process: asyncio.subprocess.Process | None = None
        self._job_id: str | None = None
        self._cancelled = False

    @classmethod
    def from_config(cls, config: Config) -> ProcessRunner:
        return cls(
            command=config.runner.command,
            timeout_s=config.runner.timeout_s,
            working_dir=config.runner.working_dir,
            disallowed_tools=config.runner.disallowed_tools,
            kill_grace_s=config.runner.kill_grace_s,
        )

    # ── State ────────────────────────────────────────────────

    def is_running(self) -> bool:
        return self._process is not None

    @property
    def current_job_id(self) -> str | None:
        return self._job_id

    def cancel_current(self) -> bool:
        """Terminate the active process. Returns False when nothing is running."""
        proc = self._process
        if proc is None:
            return False
        logger.info(f"Cancelling running job {self._job_id}")
        self._cancelled = True
        _terminate(proc)
        self._clear()
        return True

    def _clear(self) -> None:
        self._process = None
        self._job_id = None

    # ── Execution ────────────────────────────────────────────

    def build_args(self, prompt: str) -> list[str]:
        args = [self.command, "-p", prompt, "--output-format", "text"]
        if self.disallowed_tools:
            args += ["--disallowedTools", *self.disallowed_tools]
        return args

    async def run(
        self, prompt: str, job_id: str, working_dir: str | Path | None = None
    ) -> ExecutionResult:
        """Run the external process for one job and wait for its outcome."""
        cwd = Path(working_dir).expanduser() if working_dir else self.working_dir
        env = {k: v for k, v in os.environ.items() if k != "CLAUDECODE"}

        try:
            proc = await asyncio.create_subprocess_exec(
                *self.build_args(prompt),
                cwd=str(cwd),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except Exception as e:
            logger.error(f"Job {job_id}: spawn failed: {e}")
            return ExecutionResult(output="", error=f"Spawn error: {e}")

        self._process = proc
        self._job_id = job_id
        self._cancelled = False
        logger.info(f"Job {job_id}: started pid={proc.pid} cwd={cwd}")

        stdout: list[str] = []
        stderr: list[str] = []
        readers = [
            asyncio.create_task(_drain(proc.stdout, stdout)),
            asyncio.create_task(_drain(proc.stderr, stderr)),
        ]

        try:
            await asyncio.wait_for(proc.wait(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"Job {job_id}: timed out after {self.timeout_s}s")
            if self._process is proc:
                self._clear()
            await self._reap(proc, readers)
            return ExecutionResult(
                output="".join(stdout), error="Timed out", timed_out=True
            )
        except asyncio.CancelledError:
            logger.warning(f"Job {job_id}: task cancelled, stopping pid={proc.pid}")
            if self._process is proc:
                self._clear()
            self._cancelled = False
            await self._reap(proc, readers)
            raise

        await _stop_readers(readers, self.kill_grace_s)
        cancelled = self._cancelled
        if self._process is proc:
            self._clear()
        self._cancelled = False

        out = "".join(stdout).strip()
        if cancelled:
            logger.info(f"Job {job_id}: cancelled (exit {proc.returncode})")
            return ExecutionResult(output=out, error=CANCELLED_WHILE_RUNNING, cancelled=True)
        if proc.returncode == 0:
            logger.info(f"Job {job_id}: finished ({len(out)} chars)")
            return ExecutionResult(output=out)

        error = classify_error("".join(stderr), proc.returncode)
        logger.warning(f"Job {job_id}: exit {proc.returncode} → {error[:80]}")
        return ExecutionResult(output=out, error=error)

    async def _reap(
        self, proc: asyncio.subprocess.Process, readers: list[asyncio.Task]
    ) -> None:
        """Terminate, escalate to kill after the grace period, stop the readers."""
        _terminate(proc)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace_s)
        except asyncio.TimeoutError:
            logger.warning(f"pid={proc.pid} ignored SIGTERM, killing")
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
        await _stop_readers(readers, min(self.kill_grace_s, 1.0))


def _terminate(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.send_signal(signal.SIGTERM)
    except ProcessLookupError:
        pass


async def _drain(stream: asyncio.StreamReader | None, sink: list[str]) -> None:
    """Read a pipe chunk by chunk so partial output survives a timeout."""
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        sink.append(chunk.decode("utf-8", errors="replace"))


async def _stop_readers(readers: list[asyncio.Task], grace_s: float) -> None:
    """Let the pipe readers hit EOF, then cancel whatever is left.

    Grandchildren can hold the pipes open after the process itself exits.
    """
    if grace_s > 0:
        await asyncio.wait(readers, timeout=grace_s)
    for task in readers:
        task.cancel()
    await asyncio.gather(*readers, return_exceptions=True)
