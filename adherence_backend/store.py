"""
Persistence for medications and dose events.

The core only talks to the abstract stores below. Two backends ship with
the service: an in-memory one (no database configured, tests) and a
MongoDB one on top of motor.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .errors import AuthorizationError
from .models import DateRange, DoseEvent, Medication, ensure_utc

logger = logging.getLogger(__name__)


class MedicationStore(ABC):
    name = "abstract"

    @abstractmethod
    async def insert(self, medication: Medication) -> Medication: ...

    @abstractmethod
    async def get(self, medication_id: str) -> Optional[Medication]: ...

    @abstractmethod
    async def list(self, user_id: str) -> List[Medication]: ...

    @abstractmethod
    async def replace(self, medication: Medication) -> Medication: ...

    @abstractmethod
    async def delete(self, medication_id: str) -> bool: ...


class DoseEventStore(ABC):
    name = "abstract"

    @abstractmethod
    async def upsert(self, event: DoseEvent) -> DoseEvent:
        """Write ``event`` under its (medication_id, scheduled_time) key.

        An existing event is replaced only when it was logged no later than
        ``event``; the stored event is returned either way and keeps the id
        it was first written with. Raises AuthorizationError when the key
        is held by another user's event.
        """

    @abstractmethod
    async def get(self, event_id: str) -> Optional[DoseEvent]: ...

    @abstractmethod
    async def get_by_key(self, medication_id: str, scheduled_time: datetime) -> Optional[DoseEvent]: ...

    @abstractmethod
    async def find(
        self,
        user_id: str,
        medication_id: Optional[str] = None,
        date_range: Optional[DateRange] = None,
    ) -> List[DoseEvent]:
        """Events newest scheduled time first."""


def _newest_first(events: List[DoseEvent]) -> List[DoseEvent]:
    return sorted(events, key=lambda e: (e.scheduled_time, e.medication_id), reverse=True)


class InMemoryMedicationStore(MedicationStore):
    name = "memory"

    def __init__(self):
        self._items: Dict[str, Medication] = {}
        self._lock = threading.RLock()

    async def insert(self, medication):
        with self._lock:
            self._items[medication.id] = medication.model_copy(deep=True)
        return medication

    async def get(self, medication_id):
        with self._lock:
            med = self._items.get(medication_id)
            return med.model_copy(deep=True) if med else None

    async def list(self, user_id):
        with self._lock:
            meds = [m.model_copy(deep=True) for m in self._items.values() if m.user_id == user_id]
        return sorted(meds, key=lambda m: m.created_at)

    async def replace(self, medication):
        with self._lock:
            self._items[medication.id] = medication.model_copy(deep=True)
        return medication

    async def delete(self, medication_id):
        with self._lock:
            return self._items.pop(medication_id, None) is not None


class InMemoryDoseEventStore(DoseEventStore):
    name = "memory"

    def __init__(self):
        self._by_key: Dict[Tuple[str, datetime], DoseEvent] = {}
        self._lock = threading.RLock()

    async def upsert(self, event):
        event = event.model_copy(update={"scheduled_time": ensure_utc(event.scheduled_time)})
        with self._lock:
            current = self._by_key.get(event.key)
            if current is not None:
                if current.user_id != event.user_id:
                    raise AuthorizationError("Dose belongs to another user")
                if current.logged_at > event.logged_at:
                    logger.debug("Dose %s already holds a newer mark", event.key)
                    return current.model_copy()
                event = event.model_copy(update={"id": current.id})
            self._by_key[event.key] = event
            return event.model_copy()

    async def get(self, event_id):
        with self._lock:
            for event in self._by_key.values():
                if event.id == event_id:
                    return event.model_copy()
        return None

    async def get_by_key(self, medication_id, scheduled_time):
        with self._lock:
            event = self._by_key.get((medication_id, ensure_utc(scheduled_time)))
            return event.model_copy() if event else None

    async def find(self, user_id, medication_id=None, date_range=None):
        with self._lock:
            events = [e.model_copy() for e in self._by_key.values() if e.user_id == user_id]
        if medication_id is not None:
            events = [e for e in events if e.medication_id == medication_id]
        if date_range is not None:
            events = [e for e in events if date_range.contains(e.scheduled_time)]
        return _newest_first(events)


# Helper functions
def prepare_for_mongo(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert enums and calendar dates to strings for MongoDB storage.

    Datetimes are left alone so range queries and sorting stay native.
    """
    for key, value in data.items():
        if isinstance(value, Enum):
            data[key] = value.value
        elif isinstance(value, date) and not isinstance(value, datetime):
            data[key] = value.isoformat()
    return data


def parse_from_mongo(item: Dict[str, Any]) -> Dict[str, Any]:
    """Drop Mongo's own key and make stored datetimes UTC-aware again."""
    item.pop("_id", None)
    for key, value in item.items():
        if isinstance(value, datetime):
            item[key] = ensure_utc(value)
    return item


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class MongoMedicationStore(MedicationStore):
    name = "mongo"

    def __init__(self, db):
        self.collection = db.medications

    async def ensure_indexes(self):
        await self.collection.create_index("id", unique=True)
        await self.collection.create_index([("user_id", 1)])

    async def insert(self, medication):
        await self.collection.insert_one(prepare_for_mongo(medication.model_dump()))
        return medication

    async def get(self, medication_id):
        doc = await self.collection.find_one({"id": medication_id})
        return Medication(**parse_from_mongo(doc)) if doc else None

    async def list(self, user_id):
        docs = await self.collection.find({"user_id": user_id}).sort("created_at", 1).to_list(1000)
        return [Medication(**parse_from_mongo(doc)) for doc in docs]

    async def replace(self, medication):
        await self.collection.replace_one({"id": medication.id}, prepare_for_mongo(medication.model_dump()))
        return medication

    async def delete(self, medication_id):
        result = await self.collection.delete_one({"id": medication_id})
        return result.deleted_count > 0


class MongoDoseEventStore(DoseEventStore):
    name = "mongo"

    def __init__(self, db):
        self.collection = db.dose_events

    async def ensure_indexes(self):
        await self.collection.create_index("id", unique=True)
        await self.collection.create_index(
            [("medication_id", 1), ("scheduled_time", 1)], unique=True
        )
        await self.collection.create_index([("user_id", 1), ("scheduled_time", -1)])

    async def upsert(self, event):
        key = {"medication_id": event.medication_id, "scheduled_time": ensure_utc(event.scheduled_time)}
        # Matches only the caller's own mark that is not newer; anything else
        # makes the upsert collide with the unique key index.
        query = {**key, "user_id": event.user_id, "logged_at": {"$lte": event.logged_at}}
        update = {
            "$set": {
                "status": event.status.value,
                "notes": event.notes,
                "logged_at": event.logged_at,
            },
            "$setOnInsert": {"id": event.id},
        }
        doc = None
        # Two first marks can both take the insert path; once the loser's
        # insert fails the key exists and the retry is decided by logged_at.
        for _ in range(2):
            try:
                doc = await self.collection.find_one_and_update(
                    query, update, upsert=True, return_document=ReturnDocument.AFTER
                )
                break
            except DuplicateKeyError:
                logger.debug("Dose %s collided with a concurrent mark", key)
        if doc is None:
            doc = await self.collection.find_one(key)
        if doc["user_id"] != event.user_id:
            raise AuthorizationError("Dose belongs to another user")
        return DoseEvent(**parse_from_mongo(doc))

    async def get(self, event_id):
        doc = await self.collection.find_one({"id": event_id})
        return DoseEvent(**parse_from_mongo(doc)) if doc else None

    async def get_by_key(self, medication_id, scheduled_time):
        doc = await self.collection.find_one(
            {"medication_id": medication_id, "scheduled_time": ensure_utc(scheduled_time)}
        )
        return DoseEvent(**parse_from_mongo(doc)) if doc else None

    async def find(self, user_id, medication_id=None, date_range=None):
        query: Dict[str, Any] = {"user_id": user_id}
        if medication_id is not None:
            query["medication_id"] = medication_id
        if date_range is not None and (date_range.start or date_range.end):
            bounds: Dict[str, Any] = {}
            if date_range.start:
                bounds["$gte"] = _day_start(date_range.start)
            if date_range.end:
                bounds["$lt"] = _day_start(date_range.end + timedelta(days=1))
            query["scheduled_time"] = bounds
        cursor = self.collection.find(query).sort([("scheduled_time", -1), ("medication_id", -1)])
        docs = await cursor.to_list(None)
        return [DoseEvent(**parse_from_mongo(doc)) for doc in docs]
