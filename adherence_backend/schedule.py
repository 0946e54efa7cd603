"""
Daily reminder schedule.

Turns a medication's reminder times and active date range into the
reminder instants for one calendar day. Nothing here reads the clock:
callers pass the day, so "what was due yesterday" is the same call as
"what is due today".
"""
import re
from datetime import date, datetime, time, timezone
from typing import Iterable, List

from .models import Medication, Reminder

CLOCK_TIME_RE = re.compile(r"(?i)^\s*(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\s*$")


def parse_reminder_time(value: str) -> time:
    """Parse "HH:MM" (24h) or "h[:mm] am/pm" into a time of day.

    Raises ValueError for anything that is not a real clock time.
    """
    if not isinstance(value, str):
        raise ValueError(f"Reminder time must be a string, got {value!r}")
    match = CLOCK_TIME_RE.match(value)
    if not match:
        raise ValueError(f"Invalid reminder time {value!r}")
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    ampm = match.group(3)
    if ampm:
        if not 1 <= hour <= 12:
            raise ValueError(f"Invalid reminder time {value!r}")
        ampm = ampm.lower()
        if hour == 12:
            hour = 0
        if ampm == "pm":
            hour += 12
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid reminder time {value!r}")
    return time(hour, minute)


def format_reminder_time(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def normalize_reminder_time(value: str) -> str:
    return format_reminder_time(parse_reminder_time(value))


def combine(day: date, time_of_day: time) -> datetime:
    return datetime.combine(day, time_of_day, tzinfo=timezone.utc)


def reminders_for_day(medication: Medication, day: date) -> List[Reminder]:
    """Reminders for ``day``, ascending by time of day.

    Empty outside the medication's active range. Duplicate reminder times
    produce duplicate reminders; the catalog reports them as a warning.
    """
    if not medication.is_active_on(day):
        return []
    times = sorted(parse_reminder_time(t) for t in medication.reminder_times)
    return [
        Reminder(
            medication_id=medication.id,
            date=day,
            time=format_reminder_time(t),
            scheduled_time=combine(day, t),
        )
        for t in times
    ]


def reminders_for_medications(medications: Iterable[Medication], day: date) -> List[Reminder]:
    """All reminders of ``day`` ordered by time, then medication name."""
    items = []
    for med in medications:
        for reminder in reminders_for_day(med, day):
            items.append((reminder.scheduled_time, med.name, med.id, reminder))
    items.sort(key=lambda x: (x[0], x[1], x[2]))
    return [reminder for _, _, _, reminder in items]
