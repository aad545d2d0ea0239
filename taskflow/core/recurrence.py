"""
TaskFlow Notifier — Recurrence Expander.

Runs once a day. Every recurring template is expanded into concrete TODO
tasks for the next 24 hours. A template never gets two occurrences on the
same calendar day, so re-running the job over the same window is a no-op.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, tzinfo
from typing import TYPE_CHECKING

from dateutil.rrule import rrule, rrulestr

from taskflow.core.clock import day_bounds, local_tz, utcnow

if TYPE_CHECKING:
    from taskflow.data.db import TaskDB
    from taskflow.data.models import Task

logger = logging.getLogger(__name__)

WINDOW = timedelta(hours=24)


def occurrences_in_window(
    rule_text: str, start: datetime, end: datetime, tz: tzinfo | None = None,
) -> list[datetime]:
    """Rule occurrences in the half-open window [start, end).

    Accepts a bare "FREQ=..." rule or a full "DTSTART:...\\nRRULE:..." block.
    A rule without DTSTART is anchored at start; a DTSTART without a zone is
    read as wall-clock time in tz (default: start's zone). Raises ValueError
    (or TypeError for mixed naive/aware datetimes) on a rule it cannot use.
    """
    # rrule works at whole-second resolution; shift both ends alike
    shift = timedelta(microseconds=start.microsecond)
    start, end = start - shift, end - shift

    rule = rrulestr(rule_text, dtstart=start)
    if isinstance(rule, rrule) and rule._dtstart.tzinfo is None:
        rule = rule.replace(dtstart=rule._dtstart.replace(tzinfo=tz or start.tzinfo))
    return [occ for occ in rule.between(start, end, inc=True) if occ < end]


def generate_recurring_tasks(
    task_db: TaskDB,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> dict[str, int]:
    """Create the missing occurrences for every recurring template.

    Returns {"templates": n, "generated": n, "skipped_rules": n, "failed": n}.
    A bad rule or a store error on one template is logged and the run moves
    on to the next template.
    """
    if now is None:
        now = utcnow()
    now = now.replace(microsecond=0)
    if tz is None:
        tz = local_tz()

    window_end = now + WINDOW
    templates = task_db.list_recurring_templates()
    logger.info("Recurring generator: %d template(s)", len(templates))

    generated = 0
    bad_rules = 0
    failed = 0
    for template in templates:
        try:
            occurrences = occurrences_in_window(
                template.recurrence_rule, now, window_end, tz,
            )
        except (ValueError, TypeError) as exc:
            bad_rules += 1
            logger.error(
                "Invalid RRULE for task #%d (%r): %s",
                template.id, template.recurrence_rule, exc,
            )
            continue

        try:
            for occurrence in occurrences:
                if _materialize(task_db, template, occurrence, tz):
                    generated += 1
        except Exception as exc:
            failed += 1
            logger.error("Failed to generate occurrences for task #%d: %s", template.id, exc)

    logger.info(
        "Recurring generator done: %d instance(s) created, %d template(s) failed",
        generated, failed,
    )
    return {
        "templates": len(templates),
        "generated": generated,
        "skipped_rules": bad_rules,
        "failed": failed,
    }


def _materialize(
    task_db: TaskDB, template: Task, occurrence: datetime, tz: tzinfo,
) -> bool:
    """Create the occurrence unless the template already has one that day."""
    day_start, day_end = day_bounds(occurrence, tz)
    if task_db.find_occurrence(template.id, day_start, day_end) is not None:
        logger.debug(
            "Task #%d already has an occurrence on %s", template.id, day_start.date(),
        )
        return False

    instance = task_db.create_occurrence(template, occurrence)
    logger.info(
        "Created instance #%d of '%s' for %s",
        instance.id, template.title, occurrence.isoformat(),
    )
    return True
