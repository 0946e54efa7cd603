"""
Medication catalog: validated CRUD over medication definitions, scoped to
the owning identity.
"""
import logging
from typing import Dict, List

from .errors import AuthorizationError, NotFoundError, ValidationError
from .models import Medication, MedicationCreate, utcnow
from .schedule import normalize_reminder_time
from .store import MedicationStore

logger = logging.getLogger(__name__)


def validate_medication(payload: MedicationCreate) -> MedicationCreate:
    """Check invariants and return a copy with normalised reminder times."""
    problems = []
    if not payload.name or not payload.name.strip():
        problems.append("name must not be empty")
    if payload.frequency <= 0:
        problems.append("frequency must be a positive number of hours")
    if payload.times_per_day <= 0:
        problems.append("times_per_day must be positive")
    if payload.start_date > payload.end_date:
        problems.append("start_date must not be after end_date")

    times = [t for t in payload.reminder_times if t and t.strip()]
    if not times:
        problems.append("at least one reminder time is required")
    normalized = []
    for raw in times:
        try:
            normalized.append(normalize_reminder_time(raw))
        except ValueError as exc:
            problems.append(str(exc))

    if problems:
        raise ValidationError("; ".join(problems))
    return payload.model_copy(update={"name": payload.name.strip(), "reminder_times": normalized})


def warnings_for(medication: MedicationCreate) -> List[str]:
    warnings = []
    count = len(medication.reminder_times)
    if count != medication.times_per_day:
        warnings.append(
            f"{count} reminder time(s) configured but times_per_day is {medication.times_per_day}"
        )
    duplicates = sorted({t for t in medication.reminder_times if medication.reminder_times.count(t) > 1})
    if duplicates:
        warnings.append(f"duplicate reminder times: {', '.join(duplicates)}")
    return warnings


class MedicationCatalog:
    def __init__(self, store: MedicationStore):
        self.store = store

    async def create(self, user_id: str, payload: MedicationCreate) -> Medication:
        data = validate_medication(payload)
        medication = Medication(user_id=user_id, **data.model_dump())
        await self.store.insert(medication)
        logger.info("[catalog] created medication %s (%s) for %s", medication.id, medication.name, user_id)
        self._log_warnings(medication)
        return medication

    async def get(self, user_id: str, medication_id: str) -> Medication:
        medication = await self.store.get(medication_id)
        if medication is None:
            raise NotFoundError("Medication not found")
        if medication.user_id != user_id:
            raise AuthorizationError("Medication belongs to another user")
        return medication

    async def list(self, user_id: str) -> List[Medication]:
        return await self.store.list(user_id)

    async def lookup(self, user_id: str) -> Dict[str, Medication]:
        return {med.id: med for med in await self.store.list(user_id)}

    async def update(self, user_id: str, medication_id: str, payload: MedicationCreate) -> Medication:
        current = await self.get(user_id, medication_id)
        data = validate_medication(payload)
        medication = current.model_copy(update={**data.model_dump(), "updated_at": utcnow()})
        await self.store.replace(medication)
        logger.info("[catalog] updated medication %s for %s", medication_id, user_id)
        self._log_warnings(medication)
        return medication

    async def delete(self, user_id: str, medication_id: str) -> None:
        await self.get(user_id, medication_id)
        if not await self.store.delete(medication_id):
            raise NotFoundError("Medication not found")
        logger.info("[catalog] deleted medication %s for %s", medication_id, user_id)

    @staticmethod
    def _log_warnings(medication: Medication) -> None:
        for warning in warnings_for(medication):
            logger.warning("[catalog] medication %s: %s", medication.id, warning)
