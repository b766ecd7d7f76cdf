"""relaybot CLI — Typer-based command-line interface."""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from relaybot import __version__

app = typer.Typer(
    name="relaybot",
    help="relaybot - chat bot backed by a single external reasoning process",
    no_args_is_help=True,
)

console = Console()

ConfigOption = typer.Option(None, "--config", "-c", help="Path to config.yaml")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"relaybot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """relaybot - chat bot backed by a single external reasoning process."""


def _load(config_path: Path | None):
    from relaybot.core.config import Config
    from relaybot.core.log import setup_logging
    from relaybot.errors import ConfigError

    try:
        config = Config.load(config_path)
    except ConfigError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    setup_logging(config)
    return config


# ════════════════════════════════════════════════════════════
# run: console channel + scheduler
# ════════════════════════════════════════════════════════════


@app.command()
def run(config_path: Path | None = ConfigOption) -> None:
    """Start the bot with the console channel and the cron scheduler."""
    from relaybot.app import RelayBot
    from relaybot.core.channels.console import ConsoleChannel

    config = _load(config_path)

    async def _main() -> None:
        bot = RelayBot(config)
        channel = ConsoleChannel(console, confirm_timeout_s=config.safety.confirm_timeout_s)
        if config.channels.console.enabled:
            bot.add_channel(channel)
        await bot.start()

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        waiters = [asyncio.create_task(stop.wait())]
        if config.channels.console.enabled:
            waiters.append(asyncio.create_task(channel.wait_closed()))
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for w in waiters:
            w.cancel()
        await bot.stop()

    console.print("[bold]relaybot[/bold] (type 'exit' or 'quit' to leave)\n")
    asyncio.run(_main())


# ════════════════════════════════════════════════════════════
# chat: one request through the full pipeline
# ════════════════════════════════════════════════════════════


@app.command()
def chat(
    message: str = typer.Option(..., "--message", "-m", help="Message to send"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Send a single message through the safety gate and queue."""
    from relaybot.app import RelayBot
    from relaybot.core.channels.console import ConsoleChannel

    config = _load(config_path)

    async def _once() -> None:
        bot = RelayBot(config)
        channel = ConsoleChannel(console, confirm_timeout_s=config.safety.confirm_timeout_s)
        bot.add_channel(channel)
        try:
            await channel.dispatch(message)
        finally:
            await bot.stop()

    asyncio.run(_once())


# ════════════════════════════════════════════════════════════
# status: config + transcript info
# ════════════════════════════════════════════════════════════


@app.command()
def status(config_path: Path | None = ConfigOption) -> None:
    """Show configuration, cron and execution status."""
    from relaybot.core.cron.store import CronStore
    from relaybot.memory.store import MemoryStore

    config = _load(config_path)
    jobs = CronStore(config.crons_path).load()

    table = Table(title="relaybot status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("Command", config.runner.command)
    table.add_row("Timeout", f"{config.runner.timeout_s:g}s")
    table.add_row("Working dir", str(config.default_working_dir))
    table.add_row("Safety", "on" if config.safety.enabled else "off")
    table.add_row("Cron file", str(config.crons_path))
    table.add_row("Cron jobs", f"{sum(j.enabled for j in jobs)} enabled / {len(jobs)}")

    if config.memory.enabled:
        db = MemoryStore(str(config.db_path))
        recent = db.get_recent_executions(limit=1)
        table.add_row("DB Path", str(config.db_path))
        table.add_row("Last execution", recent[0]["status"] if recent else "-")

    console.print(table)


# ════════════════════════════════════════════════════════════
# cron: cron job management (sub-command group)
# ════════════════════════════════════════════════════════════

cron_app = typer.Typer(help="Manage cron jobs (takes effect on next start)")
app.add_typer(cron_app, name="cron")


def _offline_scheduler(config_path: Path | None):
    """Scheduler over the cron file, never started; only persists changes."""
    from relaybot.agent.queue import JobQueue
    from relaybot.agent.runner import ProcessRunner
    from relaybot.core.cron.scheduler import CronScheduler
    from relaybot.core.cron.store import CronStore

    config = _load(config_path)
    return CronScheduler(
        CronStore(config.crons_path),
        JobQueue(ProcessRunner.from_config(config)),
        timezone=config.scheduler.timezone,
    )


@cron_app.command("list")
def cron_list(config_path: Path | None = ConfigOption) -> None:
    """List all cron jobs."""
    jobs = _offline_scheduler(config_path).list_jobs()

    if not jobs:
        console.print("[dim]No cron jobs found.[/dim]")
        return

    table = Table(title="Cron Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Schedule", style="yellow")
    table.add_column("Prompt", style="white")
    table.add_column("Destination", style="blue")
    table.add_column("Enabled", style="green")

    for job in jobs:
        table.add_row(
            job.short_id, job.schedule, job.prompt, str(job.destination), str(job.enabled)
        )

    console.print(table)


@cron_app.command("add")
def cron_add(
    schedule: str = typer.Argument(help="Cron expression, e.g. '0 9 * * *'"),
    prompt: str = typer.Argument(help="Prompt to run on each trigger"),
    channel: str = typer.Option("console", "--channel", help="Destination channel kind"),
    chat_id: str = typer.Option("local", "--chat", help="Destination conversation id"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Add a cron job."""
    from relaybot.errors import InvalidScheduleError

    try:
        job = _offline_scheduler(config_path).add_job(schedule, prompt, channel, chat_id)
    except InvalidScheduleError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Cron job added:[/green] {job.short_id} ({job.schedule})")


@cron_app.command("remove")
def cron_remove(
    job_id: str = typer.Argument(help="Cron job ID or prefix"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Remove a cron job by ID."""
    if _offline_scheduler(config_path).remove_job(job_id):
        console.print(f"[green]Removed cron job:[/green] {job_id}")
    else:
        console.print(f"[red]Cron job not found:[/red] {job_id}")
        raise typer.Exit(code=1)


@cron_app.command("toggle")
def cron_toggle(
    job_id: str = typer.Argument(help="Cron job ID or prefix"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Enable or disable a cron job."""
    job = _offline_scheduler(config_path).toggle_job(job_id)
    if job is None:
        console.print(f"[red]Cron job not found:[/red] {job_id}")
        raise typer.Exit(code=1)
    console.print(f"[green]Cron job {'enabled' if job.enabled else 'disabled'}:[/green] {job.short_id}")
