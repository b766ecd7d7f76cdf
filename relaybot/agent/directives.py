"""Cron directives embedded in model output.

The model can ask for cron changes by writing HTML-comment tags into its
answer. They are parsed out, stripped from the text the user sees, and
executed against the CronScheduler:

    <!--CRON_JOB:{"schedule": "0 9 * * *", "prompt": "daily report"}-->
    <!--CRON_REMOVE:{"id": "1a2b3c4d"}-->
    <!--CRON_LIST-->

Execution order is always adds, then removes, then list, wherever the
tags appear.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from loguru import logger

if TYPE_CHECKING:
    from relaybot.core.cron.scheduler import CronScheduler
    from relaybot.core.cron.types import CronJob

TAG_OPEN = "<!--"
TAG_CLOSE = "-->"
ADD_TAG = "CRON_JOB:"
REMOVE_TAG = "CRON_REMOVE:"
LIST_TAG = "CRON_LIST"


@dataclass(frozen=True)
class AddCron:
    schedule: str
    prompt: str


@dataclass(frozen=True)
class RemoveCron:
    id: str


@dataclass(frozen=True)
class ListCrons:
    pass


Directive = Union[AddCron, RemoveCron, ListCrons]


@dataclass
class ParseResult:
    directives: list[Directive]
    cleaned: str


@dataclass
class DirectiveOutcome:
    directive: Directive
    success: bool
    message: str


@dataclass
class AppliedDirectives:
    text: str
    outcomes: list[DirectiveOutcome] = field(default_factory=list)


# ── Parsing ──────────────────────────────────────────────────


def parse_directives(text: str) -> ParseResult:
    """Extract directives and return them with the tag-free text."""
    adds: list[Directive] = []
    removes: list[Directive] = []
    wants_list = False
    kept: list[str] = []

    pos = 0
    while True:
        start = text.find(TAG_OPEN, pos)
        if start == -1:
            break
        body_start = start + len(TAG_OPEN)
        end = text.find(TAG_CLOSE, body_start)
        if end == -1:
            break
        body = text[body_start:end]

        if TAG_OPEN in body or not _is_cron_tag(body):
            # Literal "<!--" or an ordinary comment: keep the opener and
            # rescan after it so a later tag is still found.
            kept.append(text[pos:body_start])
            pos = body_start
            continue

        if body.startswith(ADD_TAG):
            directive = _parse_add(body[len(ADD_TAG):])
            if directive:
                adds.append(directive)
        elif body.startswith(REMOVE_TAG):
            directive = _parse_remove(body[len(REMOVE_TAG):])
            if directive:
                removes.append(directive)
        else:
            wants_list = True

        kept.append(text[pos:start])
        pos = end + len(TAG_CLOSE)

    kept.append(text[pos:])
    directives = adds + removes + ([ListCrons()] if wants_list else [])
    return ParseResult(directives=directives, cleaned=collapse_blank_lines("".join(kept)))


def _is_cron_tag(body: str) -> bool:
    return body.startswith((ADD_TAG, REMOVE_TAG)) or body == LIST_TAG


def _load_payload(raw: str) -> dict | None:
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.debug(f"Skipping malformed directive payload: {raw[:80]}")
        return None
    return payload if isinstance(payload, dict) else None


def _parse_add(raw: str) -> AddCron | None:
    payload = _load_payload(raw)
    if not payload:
        return None
    schedule, prompt = payload.get("schedule"), payload.get("prompt")
    if isinstance(schedule, str) and schedule and isinstance(prompt, str) and prompt:
        return AddCron(schedule=schedule, prompt=prompt)
    return None


def _parse_remove(raw: str) -> RemoveCron | None:
    payload = _load_payload(raw)
    if not payload:
        return None
    job_id = payload.get("id")
    if isinstance(job_id, str) and job_id:
        return RemoveCron(id=job_id)
    return None


def collapse_blank_lines(text: str) -> str:
    """Collapse runs of 3+ newlines into one blank line, then trim."""
    lines = text.split("\n")
    out: list[str] = []
    blanks = 0
    for line in lines:
        if line == "":
            blanks += 1
            if blanks > 1:
                continue
        else:
            blanks = 0
        out.append(line)
    return "\n".join(out).strip()


# ── Execution ────────────────────────────────────────────────


def format_cron_job(job: CronJob) -> str:
    status = "ON" if job.enabled else "OFF"
    return f"- `{job.schedule}` | {job.prompt} | {status} | ID: {job.short_id}"


def execute_directives(
    directives: list[Directive],
    scheduler: CronScheduler,
    channel_type: str,
    chat_id: str,
) -> list[DirectiveOutcome]:
    """Run each directive; one failure never stops the rest."""
    outcomes: list[DirectiveOutcome] = []
    for directive in directives:
        try:
            outcomes.append(_execute_one(directive, scheduler, channel_type, chat_id))
        except Exception as e:
            logger.error(f"Directive {directive} failed: {e}")
            outcomes.append(DirectiveOutcome(directive, False, f"Cron directive failed: {e}"))
    return outcomes


def _execute_one(
    directive: Directive, scheduler: CronScheduler, channel_type: str, chat_id: str
) -> DirectiveOutcome:
    if isinstance(directive, AddCron):
        try:
            job = scheduler.add_job(directive.schedule, directive.prompt, channel_type, chat_id)
        except Exception as e:
            return DirectiveOutcome(directive, False, f"Failed to register cron: {e}")
        return DirectiveOutcome(
            directive, True, f"Cron registered: `{job.schedule}` (ID: {job.short_id})"
        )

    if isinstance(directive, RemoveCron):
        if scheduler.remove_job(directive.id):
            return DirectiveOutcome(directive, True, f"Cron removed: {directive.id}")
        return DirectiveOutcome(directive, False, f"Cron not found: {directive.id}")

    jobs = scheduler.list_jobs(chat_id)
    if not jobs:
        return DirectiveOutcome(directive, True, "No cron jobs registered.")
    return DirectiveOutcome(directive, True, "\n".join(format_cron_job(j) for j in jobs))


def apply_directives(
    text: str, scheduler: CronScheduler | None, channel_type: str, chat_id: str
) -> AppliedDirectives:
    """Parse, execute, and build the text shown to the user.

    Failures become ``⚠`` lines and list results are appended verbatim,
    after the cleaned text.
    """
    parsed = parse_directives(text)
    if not parsed.directives:
        return AppliedDirectives(text=parsed.cleaned)
    if scheduler is None:
        logger.warning("Cron directives found but no scheduler is running")
        return AppliedDirectives(text=parsed.cleaned)

    outcomes = execute_directives(parsed.directives, scheduler, channel_type, chat_id)
    extras: list[str] = []
    for outcome in outcomes:
        if not outcome.success:
            extras.append(f"⚠ {outcome.message}")
        elif isinstance(outcome.directive, ListCrons):
            extras.append(outcome.message)

    result = parsed.cleaned
    if extras:
        result = f"{result}\n\n" + "\n".join(extras) if result else "\n".join(extras)
    return AppliedDirectives(text=result, outcomes=outcomes)
