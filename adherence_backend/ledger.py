"""
Dose ledger: the system of record for adherence history.

A dose is Pending until someone marks it Taken or Missed; Pending is
never written, it is the absence of an event. Re-marking a dose replaces
the stored decision, and concurrent marks of the same dose resolve to the
one with the latest server-assigned ``logged_at``.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from .errors import AuthorizationError, FutureMarkError, InvalidStatusError, NotFoundError
from .models import DateRange, DoseEvent, DoseStatus, Reminder, ensure_utc, utcnow
from .store import DoseEventStore

logger = logging.getLogger(__name__)

MARKABLE_STATUSES = (DoseStatus.TAKEN, DoseStatus.MISSED)


def parse_mark_status(value: Union[str, DoseStatus, None]) -> DoseStatus:
    if isinstance(value, DoseStatus):
        status = value
    elif isinstance(value, str):
        lookup = {s.value.lower(): s for s in DoseStatus}
        status = lookup.get(value.strip().lower())
    else:
        status = None
    if status not in MARKABLE_STATUSES:
        raise InvalidStatusError(f"Dose status must be Taken or Missed, got {value!r}")
    return status


class DoseLedger:
    def __init__(self, store: DoseEventStore):
        self.store = store

    async def mark_dose(
        self,
        user_id: str,
        medication_id: str,
        scheduled_time: datetime,
        status: Union[str, DoseStatus],
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DoseEvent:
        """Record the decision for one scheduled dose.

        Raises InvalidStatusError for anything but Taken/Missed,
        FutureMarkError when the dose is not due yet as of ``now`` and
        AuthorizationError when another user already marked the same dose.
        """
        status = parse_mark_status(status)
        now = ensure_utc(now) if now else utcnow()
        scheduled_time = ensure_utc(scheduled_time)
        if scheduled_time > now:
            raise FutureMarkError(
                f"Dose scheduled for {scheduled_time.isoformat()} cannot be marked before it is due"
            )
        event = DoseEvent(
            user_id=user_id,
            medication_id=medication_id,
            scheduled_time=scheduled_time,
            status=status,
            notes=notes,
            logged_at=now,
        )
        stored = await self.store.upsert(event)
        logger.info(
            "[ledger] user=%s medication=%s scheduled=%s status=%s",
            user_id, medication_id, scheduled_time.isoformat(), stored.status.value,
        )
        return stored

    async def update_log(
        self,
        user_id: str,
        event_id: str,
        status: Union[str, DoseStatus],
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DoseEvent:
        existing = await self.store.get(event_id)
        if existing is None:
            raise NotFoundError("Dose log not found")
        if existing.user_id != user_id:
            raise AuthorizationError("Dose log belongs to another user")
        return await self.mark_dose(
            user_id, existing.medication_id, existing.scheduled_time, status, notes, now=now
        )

    async def logs_for(
        self,
        user_id: str,
        medication_id: Optional[str] = None,
        date_range: Optional[DateRange] = None,
    ) -> List[DoseEvent]:
        return await self.store.find(user_id, medication_id=medication_id, date_range=date_range)

    async def reminder_status(self, user_id: str, medication_id: str, scheduled_time: datetime) -> DoseStatus:
        event = await self.store.get_by_key(medication_id, scheduled_time)
        if event is None or event.user_id != user_id:
            return DoseStatus.PENDING
        return event.status

    async def statuses_for(self, user_id: str, reminders: Iterable[Reminder]) -> Dict[tuple, DoseStatus]:
        """Status of each reminder keyed by (medication_id, scheduled_time)."""
        reminders = list(reminders)
        days = {r.date for r in reminders}
        if not days:
            return {}
        events = await self.store.find(user_id, date_range=DateRange(start=min(days), end=max(days)))
        stored = {e.key: e.status for e in events}
        return {
            (r.medication_id, r.scheduled_time): stored.get((r.medication_id, r.scheduled_time), DoseStatus.PENDING)
            for r in reminders
        }
