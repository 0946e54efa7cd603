"""
MongoDB stores against mongomock.

mongomock is synchronous; AsyncCollection exposes the handful of motor
coroutine methods the stores call.
"""
import asyncio
from datetime import date, datetime, timedelta, timezone

import mongomock
import pytest
from pymongo.errors import DuplicateKeyError

from adherence_backend.errors import AuthorizationError
from adherence_backend.models import DateRange, DoseEvent, DoseStatus, MedicationCategory
from adherence_backend.store import MongoDoseEventStore, MongoMedicationStore

from .conftest import OTHER_USER, USER

MORNING = datetime(2024, 1, 3, 8, 0, tzinfo=timezone.utc)
LOGGED = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def run(coro):
    return asyncio.run(coro)


class AsyncCursor:
    def __init__(self, cursor):
        self._cursor = cursor

    def sort(self, *args, **kwargs):
        self._cursor = self._cursor.sort(*args, **kwargs)
        return self

    async def to_list(self, length):
        docs = list(self._cursor)
        return docs if length is None else docs[:length]


class AsyncCollection:
    def __init__(self, collection):
        self.sync = collection

    async def create_index(self, *args, **kwargs):
        return self.sync.create_index(*args, **kwargs)

    async def insert_one(self, document):
        return self.sync.insert_one(document)

    async def find_one(self, *args, **kwargs):
        return self.sync.find_one(*args, **kwargs)

    def find(self, *args, **kwargs):
        return AsyncCursor(self.sync.find(*args, **kwargs))

    async def find_one_and_update(self, *args, **kwargs):
        return self.sync.find_one_and_update(*args, **kwargs)

    async def replace_one(self, *args, **kwargs):
        return self.sync.replace_one(*args, **kwargs)

    async def delete_one(self, *args, **kwargs):
        return self.sync.delete_one(*args, **kwargs)


class AsyncDatabase:
    def __init__(self, db):
        self.medications = AsyncCollection(db.medications)
        self.dose_events = AsyncCollection(db.dose_events)


@pytest.fixture
def db():
    return AsyncDatabase(mongomock.MongoClient().adherence_test)


@pytest.fixture
def dose_store(db):
    store = MongoDoseEventStore(db)
    run(store.ensure_indexes())
    return store


@pytest.fixture
def medication_store(db):
    store = MongoMedicationStore(db)
    run(store.ensure_indexes())
    return store


def dose(status, logged_at=LOGGED, user_id=USER, scheduled_time=MORNING, medication_id="med-1"):
    return DoseEvent(
        user_id=user_id,
        medication_id=medication_id,
        scheduled_time=scheduled_time,
        status=status,
        logged_at=logged_at,
    )


def test_remark_keeps_one_document_and_first_id(dose_store):
    first = run(dose_store.upsert(dose(DoseStatus.MISSED)))
    second = run(dose_store.upsert(dose(DoseStatus.TAKEN, logged_at=LOGGED + timedelta(minutes=1))))

    assert second.id == first.id
    assert second.status == DoseStatus.TAKEN
    assert second.scheduled_time == MORNING
    assert dose_store.collection.sync.count_documents({}) == 1


def test_older_mark_loses(dose_store):
    run(dose_store.upsert(dose(DoseStatus.MISSED, logged_at=LOGGED + timedelta(seconds=2))))

    stored = run(dose_store.upsert(dose(DoseStatus.TAKEN, logged_at=LOGGED + timedelta(seconds=1))))

    assert stored.status == DoseStatus.MISSED
    assert run(dose_store.get_by_key("med-1", MORNING)).status == DoseStatus.MISSED
    assert dose_store.collection.sync.count_documents({}) == 1


def test_other_user_cannot_overwrite_a_dose(dose_store):
    run(dose_store.upsert(dose(DoseStatus.TAKEN)))

    with pytest.raises(AuthorizationError):
        run(dose_store.upsert(dose(DoseStatus.MISSED, logged_at=LOGGED + timedelta(minutes=1),
                                   user_id=OTHER_USER)))

    stored = run(dose_store.get_by_key("med-1", MORNING))
    assert (stored.user_id, stored.status) == (USER, DoseStatus.TAKEN)


class RacingCollection(AsyncCollection):
    """Lets a competing first mark commit just before our insert lands."""

    def __init__(self, collection, competitor):
        super().__init__(collection)
        self.competitor = competitor

    async def find_one_and_update(self, *args, **kwargs):
        if self.competitor is not None:
            self.sync.insert_one(self.competitor)
            self.competitor = None
            raise DuplicateKeyError("E11000 duplicate key error")
        return await super().find_one_and_update(*args, **kwargs)


def test_newer_first_mark_wins_a_lost_insert_race(dose_store):
    competitor = {
        "id": "competitor",
        "user_id": USER,
        "medication_id": "med-1",
        "scheduled_time": MORNING,
        "status": "Missed",
        "notes": None,
        "logged_at": LOGGED,
    }
    dose_store.collection = RacingCollection(dose_store.collection.sync, competitor)

    stored = run(dose_store.upsert(dose(DoseStatus.TAKEN, logged_at=LOGGED + timedelta(seconds=1))))

    assert stored.status == DoseStatus.TAKEN
    assert stored.id == "competitor"
    assert dose_store.collection.sync.count_documents({}) == 1


def test_find_filters_and_orders(dose_store):
    late_evening = datetime(2024, 1, 5, 23, 30, tzinfo=timezone.utc)
    next_midnight = datetime(2024, 1, 6, 0, 0, tzinfo=timezone.utc)
    for when in (MORNING, late_evening, next_midnight):
        run(dose_store.upsert(dose(DoseStatus.TAKEN, scheduled_time=when)))
    run(dose_store.upsert(dose(DoseStatus.TAKEN, medication_id="med-2")))
    run(dose_store.upsert(dose(DoseStatus.TAKEN, medication_id="med-9", user_id=OTHER_USER)))

    everything = run(dose_store.find(USER))
    assert [(e.scheduled_time, e.medication_id) for e in everything] == [
        (next_midnight, "med-1"),
        (late_evening, "med-1"),
        (MORNING, "med-2"),
        (MORNING, "med-1"),
    ]
    assert all(e.scheduled_time.tzinfo is not None for e in everything)

    through_jan_5 = run(dose_store.find(USER, medication_id="med-1",
                                        date_range=DateRange(start=date(2024, 1, 4), end=date(2024, 1, 5))))
    assert [e.scheduled_time for e in through_jan_5] == [late_evening]

    from_jan_6 = run(dose_store.find(USER, date_range=DateRange(start=date(2024, 1, 6))))
    assert [e.scheduled_time for e in from_jan_6] == [next_midnight]


def test_get_by_id(dose_store):
    stored = run(dose_store.upsert(dose(DoseStatus.TAKEN)))

    assert run(dose_store.get(stored.id)).medication_id == "med-1"
    assert run(dose_store.get("missing")) is None


def test_medication_round_trip(medication_store, paracetamol):
    run(medication_store.insert(paracetamol))

    stored = medication_store.collection.sync.find_one({"id": paracetamol.id})
    assert stored["start_date"] == "2024-01-01"
    assert stored["category"] == "Painkiller"

    loaded = run(medication_store.get(paracetamol.id))
    assert loaded.start_date == date(2024, 1, 1)
    assert loaded.end_date == date(2024, 1, 7)
    assert loaded.category == MedicationCategory.PAINKILLER
    assert loaded.reminder_times == ["08:00", "20:00"]
    assert loaded.created_at.tzinfo is not None
    assert abs(loaded.created_at - paracetamol.created_at) < timedelta(milliseconds=1)


def test_medication_list_replace_delete(medication_store, paracetamol):
    run(medication_store.insert(paracetamol))
    changed = paracetamol.model_copy(update={"dosage": "1g", "category": MedicationCategory.OTHER})

    run(medication_store.replace(changed))

    assert [m.dosage for m in run(medication_store.list(USER))] == ["1g"]
    assert run(medication_store.get(paracetamol.id)).category == MedicationCategory.OTHER
    assert run(medication_store.list(OTHER_USER)) == []
    assert run(medication_store.delete(paracetamol.id)) is True
    assert run(medication_store.delete(paracetamol.id)) is False
    assert run(medication_store.get(paracetamol.id)) is None
