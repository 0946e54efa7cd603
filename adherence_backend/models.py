"""
Data models for the adherence backend.

Medications and dose events are the persisted records; reminders and the
adherence summaries are derived on read and never stored.
"""
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MedicationCategory(str, Enum):
    PAINKILLER = "Painkiller"
    ANTIBIOTIC = "Antibiotic"
    ANTI_INFLAMMATORY = "Anti-inflammatory"
    OTHER = "Other"


class DoseStatus(str, Enum):
    PENDING = "Pending"
    TAKEN = "Taken"
    MISSED = "Missed"


# Define Models
class MedicationCreate(BaseModel):
    name: str
    dosage: str  # free text, e.g. "500mg"
    category: MedicationCategory = MedicationCategory.OTHER
    frequency: int  # hours between doses, informational
    times_per_day: int
    reminder_times: List[str]  # ["08:00", "20:00"]
    start_date: date
    end_date: date
    instructions: Optional[str] = None


class Medication(MedicationCreate):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def is_active_on(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class MedicationOut(Medication):
    warnings: List[str] = Field(default_factory=list)


class Reminder(BaseModel):
    medication_id: str
    date: date
    time: str
    scheduled_time: datetime


class DoseEvent(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    medication_id: str
    scheduled_time: datetime
    status: DoseStatus
    notes: Optional[str] = None
    logged_at: datetime = Field(default_factory=utcnow)

    @property
    def key(self):
        return (self.medication_id, self.scheduled_time)


class DoseLogCreate(BaseModel):
    medication_id: str
    scheduled_time: datetime
    status: str  # validated by the ledger so bad values surface as InvalidStatusError
    notes: Optional[str] = None


class DoseLogUpdate(BaseModel):
    status: str
    notes: Optional[str] = None


class DateRange(BaseModel):
    """Inclusive calendar-date window; either bound may be open."""
    start: Optional[date] = None
    end: Optional[date] = None

    def contains(self, moment: datetime) -> bool:
        day = ensure_utc(moment).date()
        if self.start and day < self.start:
            return False
        if self.end and day > self.end:
            return False
        return True


class AdherenceSummary(BaseModel):
    total: int = 0
    taken: int = 0
    missed: int = 0
    pending: int = 0
    adherence_rate: int = 0


class MedicationAdherence(BaseModel):
    medication_id: Optional[str] = None  # None for the unknown-medication bucket
    name: str
    medication: Optional[Medication] = None
    stats: AdherenceSummary
    label: str


class DailyAdherence(AdherenceSummary):
    date: date


class TodayReminder(BaseModel):
    medication_id: str
    name: str
    dosage: str
    category: MedicationCategory
    instructions: Optional[str] = None
    time: str
    scheduled_time: datetime
    status: DoseStatus
    due: bool


class TodaySchedule(BaseModel):
    date: date
    items: List[TodayReminder]
