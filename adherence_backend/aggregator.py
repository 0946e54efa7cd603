"""
Adherence statistics, computed on read from dose events.

Adherence rate is taken / (taken + missed) as a whole percentage, rounded
half up; pending doses stay out of the denominator.
"""
from collections import OrderedDict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Optional

from .models import (
    AdherenceSummary,
    DailyAdherence,
    DoseEvent,
    DoseStatus,
    Medication,
    MedicationAdherence,
)

UNKNOWN_MEDICATION_NAME = "Unknown Medication"

ADHERENCE_LABELS = (
    (90, "Excellent"),
    (75, "Good"),
    (50, "Fair"),
)


def adherence_rate(taken: int, missed: int) -> int:
    denominator = taken + missed
    if denominator == 0:
        return 0
    # integer round-half-up of 100 * taken / denominator
    return (200 * taken + denominator) // (2 * denominator)


def adherence_label(rate: int) -> str:
    for threshold, label in ADHERENCE_LABELS:
        if rate >= threshold:
            return label
    return "Poor"


def summarize(events: Iterable[DoseEvent]) -> AdherenceSummary:
    counts = {status: 0 for status in DoseStatus}
    total = 0
    for event in events:
        counts[event.status] += 1
        total += 1
    taken = counts[DoseStatus.TAKEN]
    missed = counts[DoseStatus.MISSED]
    return AdherenceSummary(
        total=total,
        taken=taken,
        missed=missed,
        pending=counts[DoseStatus.PENDING],
        adherence_rate=adherence_rate(taken, missed),
    )


def summarize_by_medication(
    events: Iterable[DoseEvent],
    medications: Mapping[str, Medication],
) -> List[MedicationAdherence]:
    """Per-medication summaries, best adherence first.

    ``medications`` maps id to the live medication. Events pointing at a
    medication that no longer exists are pooled into one
    "Unknown Medication" entry so historical totals are kept.
    """
    grouped: Dict[Optional[str], List[DoseEvent]] = OrderedDict()
    for event in events:
        bucket = event.medication_id if event.medication_id in medications else None
        grouped.setdefault(bucket, []).append(event)

    entries = []
    for medication_id, bucket_events in grouped.items():
        stats = summarize(bucket_events)
        medication = medications.get(medication_id) if medication_id is not None else None
        entries.append(MedicationAdherence(
            medication_id=medication_id,
            name=medication.name if medication else UNKNOWN_MEDICATION_NAME,
            medication=medication,
            stats=stats,
            label=adherence_label(stats.adherence_rate),
        ))
    entries.sort(key=lambda e: (-e.stats.adherence_rate, e.name, e.medication_id or ""))
    return entries


def daily_trend(events: Iterable[DoseEvent], end_date: date, days: int = 7) -> List[DailyAdherence]:
    """One row per day for the ``days`` days ending on ``end_date``, oldest first."""
    start_date = end_date - timedelta(days=days - 1)
    by_day: Dict[date, List[DoseEvent]] = {
        start_date + timedelta(days=offset): [] for offset in range(days)
    }
    for event in events:
        day = event.scheduled_time.date()
        if day in by_day:
            by_day[day].append(event)
    return [
        DailyAdherence(date=day, **summarize(day_events).model_dump())
        for day, day_events in by_day.items()
    ]
