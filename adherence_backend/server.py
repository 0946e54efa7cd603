from fastapi import FastAPI, APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import logging
from datetime import date, timedelta
from typing import List, Optional

from . import config
from .aggregator import daily_trend, summarize, summarize_by_medication
from .auth import get_current_user
from .catalog import MedicationCatalog, warnings_for
from .errors import AdherenceError, NotFoundError
from .ledger import DoseLedger
from .models import (
    AdherenceSummary,
    DailyAdherence,
    DateRange,
    DoseEvent,
    DoseLogCreate,
    DoseLogUpdate,
    MedicationAdherence,
    MedicationCreate,
    MedicationOut,
    TodayReminder,
    TodaySchedule,
    utcnow,
)
from .schedule import reminders_for_medications
from .store import (
    InMemoryDoseEventStore,
    InMemoryMedicationStore,
    MongoDoseEventStore,
    MongoMedicationStore,
)

client: Optional[AsyncIOMotorClient] = None

# Replaced by MongoDB-backed instances on startup when MONGO_URL is set
catalog = MedicationCatalog(InMemoryMedicationStore())
ledger = DoseLedger(InMemoryDoseEventStore())

# Create the main app without a prefix
app = FastAPI(title="Medication Adherence API")

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")

# Configure logging
config.configure_logging()
logger = logging.getLogger(__name__)


def medication_out(medication) -> MedicationOut:
    return MedicationOut(**medication.model_dump(), warnings=warnings_for(medication))


def requested_range(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    start_date_camel: Optional[date] = Query(None, alias="startDate", include_in_schema=False),
    end_date_camel: Optional[date] = Query(None, alias="endDate", include_in_schema=False),
) -> DateRange:
    """Inclusive date filter; the web client sends startDate/endDate"""
    return DateRange(start=start_date or start_date_camel, end=end_date or end_date_camel)


@app.exception_handler(AdherenceError)
async def adherence_error_handler(request: Request, exc: AdherenceError):
    logger.info("[error] %s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.kind})


@api_router.get("/")
async def root():
    return {"message": "Medication Adherence API"}


@api_router.get("/medications", response_model=List[MedicationOut])
async def get_medications(user_id: str = Depends(get_current_user)):
    """Get all medications of the caller"""
    return [medication_out(med) for med in await catalog.list(user_id)]


@api_router.get("/medications/{medication_id}", response_model=MedicationOut)
async def get_medication(medication_id: str, user_id: str = Depends(get_current_user)):
    """Get a specific medication by ID"""
    return medication_out(await catalog.get(user_id, medication_id))


@api_router.post("/medications", response_model=MedicationOut, status_code=201)
async def create_medication(medication: MedicationCreate, user_id: str = Depends(get_current_user)):
    return medication_out(await catalog.create(user_id, medication))


@api_router.put("/medications/{medication_id}", response_model=MedicationOut)
async def update_medication(medication_id: str, medication: MedicationCreate,
                            user_id: str = Depends(get_current_user)):
    """Replace all mutable fields; logged doses are left untouched"""
    return medication_out(await catalog.update(user_id, medication_id, medication))


@api_router.delete("/medications/{medication_id}")
async def delete_medication(medication_id: str, user_id: str = Depends(get_current_user)):
    """Delete a medication; its dose history is kept"""
    await catalog.delete(user_id, medication_id)
    return {"message": "Medication deleted successfully"}


@api_router.get("/adherence/today", response_model=TodaySchedule)
async def get_today_reminders(day: Optional[date] = Query(None, alias="date"),
                              user_id: str = Depends(get_current_user)):
    """Reminders of the day (today unless ``date`` is given) with their dose status"""
    now = utcnow()
    day = day or now.date()
    medications = await catalog.lookup(user_id)
    reminders = reminders_for_medications(medications.values(), day)
    statuses = await ledger.statuses_for(user_id, reminders)
    items = []
    for reminder in reminders:
        med = medications[reminder.medication_id]
        items.append(TodayReminder(
            medication_id=med.id,
            name=med.name,
            dosage=med.dosage,
            category=med.category,
            instructions=med.instructions,
            time=reminder.time,
            scheduled_time=reminder.scheduled_time,
            status=statuses[(reminder.medication_id, reminder.scheduled_time)],
            due=reminder.scheduled_time <= now,
        ))
    return TodaySchedule(date=day, items=items)


@api_router.post("/adherence/log", response_model=DoseEvent, status_code=201)
async def log_dose(payload: DoseLogCreate, user_id: str = Depends(get_current_user)):
    await catalog.get(user_id, payload.medication_id)
    return await ledger.mark_dose(
        user_id, payload.medication_id, payload.scheduled_time, payload.status, payload.notes
    )


@api_router.put("/adherence/log/{log_id}", response_model=DoseEvent)
async def update_dose_log(log_id: str, payload: DoseLogUpdate, user_id: str = Depends(get_current_user)):
    return await ledger.update_log(user_id, log_id, payload.status, payload.notes)


@api_router.get("/adherence/logs", response_model=List[DoseEvent])
async def get_dose_logs(date_range: DateRange = Depends(requested_range),
                        user_id: str = Depends(get_current_user)):
    return await ledger.logs_for(user_id, date_range=date_range)


@api_router.get("/adherence/medication/{medication_id}", response_model=List[DoseEvent])
async def get_medication_logs(medication_id: str, date_range: DateRange = Depends(requested_range),
                              user_id: str = Depends(get_current_user)):
    try:
        await catalog.get(user_id, medication_id)
    except NotFoundError:
        # deleted medications keep their history
        pass
    return await ledger.logs_for(user_id, medication_id=medication_id, date_range=date_range)


@api_router.get("/reports/stats", response_model=AdherenceSummary)
async def get_stats(date_range: DateRange = Depends(requested_range),
                    user_id: str = Depends(get_current_user)):
    events = await ledger.logs_for(user_id, date_range=date_range)
    return summarize(events)


@api_router.get("/reports/medication-wise", response_model=List[MedicationAdherence])
async def get_medication_wise(date_range: DateRange = Depends(requested_range),
                              user_id: str = Depends(get_current_user)):
    events = await ledger.logs_for(user_id, date_range=date_range)
    return summarize_by_medication(events, await catalog.lookup(user_id))


@api_router.get("/reports/weekly-trend", response_model=List[DailyAdherence])
async def get_weekly_trend(end_date: Optional[date] = None, days: int = Query(7, ge=1, le=90),
                           user_id: str = Depends(get_current_user)):
    end = end_date or utcnow().date()
    start = end - timedelta(days=days - 1)
    events = await ledger.logs_for(user_id, date_range=DateRange(start=start, end=end))
    return daily_trend(events, end, days=days)


@api_router.get("/health")
async def health():
    status = {
        "status": "ok",
        "store": ledger.store.name,
        "db": "connected" if client is not None else "disabled",
        "time": utcnow().isoformat(),
    }
    return status


# Include the router in the main app
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_db_client():
    global client, catalog, ledger
    if config.MONGO_URL:
        try:
            client = AsyncIOMotorClient(config.MONGO_URL, tz_aware=True)
            db = client[config.DB_NAME]
            medication_store = MongoMedicationStore(db)
            dose_store = MongoDoseEventStore(db)
            # Create helpful indexes
            await medication_store.ensure_indexes()
            await dose_store.ensure_indexes()
            catalog = MedicationCatalog(medication_store)
            ledger = DoseLedger(dose_store)
            logger.info("MongoDB connected and indexes ensured")
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise
    else:
        logger.warning("MONGO_URL not set; using in-memory stores, data will not survive a restart")


@app.on_event("shutdown")
async def shutdown_db_client():
    if client:
        client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
