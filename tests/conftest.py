"""Shared fixtures: in-memory stores and a test client bound to them."""
from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from adherence_backend import server
from adherence_backend.catalog import MedicationCatalog
from adherence_backend.ledger import DoseLedger
from adherence_backend.models import Medication, MedicationCategory, MedicationCreate
from adherence_backend.store import InMemoryDoseEventStore, InMemoryMedicationStore

USER = "user-1"
OTHER_USER = "user-2"

# Comfortably after every scheduled time used in the tests
AS_OF = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def catalog():
    return MedicationCatalog(InMemoryMedicationStore())


@pytest.fixture
def ledger():
    return DoseLedger(InMemoryDoseEventStore())


@pytest.fixture
def paracetamol_payload():
    return MedicationCreate(
        name="Paracetamol",
        dosage="500mg",
        category=MedicationCategory.PAINKILLER,
        frequency=12,
        times_per_day=2,
        reminder_times=["08:00", "20:00"],
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 7),
    )


@pytest.fixture
def paracetamol(paracetamol_payload):
    return Medication(user_id=USER, **paracetamol_payload.model_dump())


@pytest.fixture
def api(monkeypatch):
    monkeypatch.setattr(server, "catalog", MedicationCatalog(InMemoryMedicationStore()))
    monkeypatch.setattr(server, "ledger", DoseLedger(InMemoryDoseEventStore()))
    return TestClient(server.app)
