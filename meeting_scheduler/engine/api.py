import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

import requests  # type: ignore
import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from meeting_scheduler.calendar_client import GoogleCalendarAdapter
from meeting_scheduler.config import ServerConfig, load_config
from meeting_scheduler.db import DatabaseInterface
from meeting_scheduler.engine.database import create_database
from meeting_scheduler.engine.oauth2 import (
    exchange_code_for_tokens,
    get_authorization_url,
    verify_state,
)
from meeting_scheduler.errors import (
    ConfigurationMissing,
    NotFound,
    SchedulingError,
    SlotTaken,
    TransientStoreError,
    ValidationFailed,
)
from meeting_scheduler.models import AvailabilityRule, DateRangeRule, WeekdayRule
from meeting_scheduler.notifications import EmailNotifier
from meeting_scheduler.scheduling.booking_flow import BookingFlow
from meeting_scheduler.scheduling.reservations import ReservationService
from meeting_scheduler.scheduling.service import Clock, SlotAvailabilityEngine
from meeting_scheduler.scheduling.validation import (
    NAME_MAX_LENGTH,
    NAME_MIN_LENGTH,
    is_valid_email,
    is_valid_username,
    validate_meeting_duration,
    validate_minimum_notice,
    validate_rules,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationFailed: status.HTTP_400_BAD_REQUEST,
    ConfigurationMissing: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
    SlotTaken: status.HTTP_409_CONFLICT,
    TransientStoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class EngineState:
    def __init__(self):
        self.config: Optional[ServerConfig] = None
        self.database: Optional[DatabaseInterface] = None
        self.calendar: Any = None
        self.notifier: Optional[EmailNotifier] = None
        self.engine: Optional[SlotAvailabilityEngine] = None
        self.reservations: Optional[ReservationService] = None
        self.booking_flow: Optional[BookingFlow] = None
        self.running = False

    def setup(
        self,
        config: ServerConfig,
        database: DatabaseInterface,
        calendar: Any = None,
        notifier: Optional[EmailNotifier] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        """Wire the scheduling services around an initialized database."""
        self.config = config
        self.database = database
        self.calendar = calendar or GoogleCalendarAdapter(database, config)
        self.notifier = notifier or EmailNotifier(config.smtp, config.timezone)
        self.engine = SlotAvailabilityEngine(
            database, self.calendar, config.timezone, clock=clock
        )
        self.reservations = ReservationService(database)
        self.booking_flow = BookingFlow(
            database, self.engine, self.reservations, self.calendar, self.notifier
        )

    def reset(self) -> None:
        self.__init__()


state = EngineState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting meeting-scheduler engine...")

    owns_database = state.database is None
    if owns_database:
        config = load_config()
        database = create_database(config.database)
        database.initialize()
        state.setup(config, database)

    state.running = True
    yield

    logger.info("Shutting down meeting-scheduler engine...")
    state.running = False

    if state.notifier:
        await state.notifier.drain()

    if owns_database and state.database:
        if isinstance(state.calendar, GoogleCalendarAdapter):
            state.calendar.close()
        state.database.close()
        state.reset()


app = FastAPI(title="Meeting Scheduler", lifespan=lifespan)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    content: dict[str, Any] = {"error": exc.error_type, "detail": exc.message}
    if isinstance(exc, ValidationFailed):
        content["errors"] = exc.errors
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content=content)


def _ready() -> None:
    if not state.database or not state.engine:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Engine not ready",
        )


async def _db(func: Callable[..., Any], *args: Any) -> Any:
    return await asyncio.to_thread(func, *args)


async def require_organizer_token(authorization: Optional[str] = Header(None)) -> None:
    """Guard for organizer-side endpoints when bearer auth is enabled."""
    if not state.config or not state.config.bearer_auth.enabled:
        return

    expected = state.config.bearer_auth.token or ""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )


organizer_auth = [Depends(require_organizer_token)]


# Request models
class OrganizerRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None


class AvailabilityRuleModel(BaseModel):
    weekday: Optional[int] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    start_time: str
    end_time: str


class AvailabilityRequest(BaseModel):
    organizer_id: int
    availability: list[AvailabilityRuleModel]


class MeetingSettingsRequest(BaseModel):
    organizer_id: int
    duration_minutes: int
    minimum_notice_hours: int = 0


class MeetingTypeRequest(BaseModel):
    organizer_id: int
    name: str
    slug: str
    duration_minutes: int
    is_default: bool = False


class BookingRequest(BaseModel):
    organizer_id: int
    attendee_name: Optional[str] = None
    attendee_email: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    duration: Optional[int] = None
    meeting_type: Optional[str] = None
    attendee_phone: Optional[str] = None


class OrganizerIdRequest(BaseModel):
    organizer_id: int


def _to_rules(items: list[AvailabilityRuleModel]) -> list[AvailabilityRule]:
    rules: list[AvailabilityRule] = []
    errors: dict[str, str] = {}
    for index, item in enumerate(items):
        if item.weekday is not None:
            rules.append(WeekdayRule(item.weekday, item.start_time, item.end_time))
        elif item.start_date and item.end_date:
            rules.append(
                DateRangeRule(item.start_date, item.end_date, item.start_time, item.end_time)
            )
        else:
            errors[f"availability[{index}]"] = (
                "Rule needs either a weekday or both start_date and end_date"
            )
    if errors:
        raise ValidationFailed(errors)
    validate_rules(rules)
    return rules


def _validate_meeting_type(req: MeetingTypeRequest) -> None:
    errors: dict[str, str] = {}
    if not req.name.strip():
        errors["name"] = "Name is required"
    if not is_valid_username(req.slug):
        errors["slug"] = "Slug may contain only lowercase letters, digits and dashes"
    try:
        validate_meeting_duration(req.duration_minutes)
    except ValidationFailed as e:
        errors.update(e.errors)
    if errors:
        raise ValidationFailed(errors)


# ============================================================================
# Status endpoints
# ============================================================================


@app.get("/health")
async def health():
    return {
        "service": "meeting-scheduler",
        "health": "healthy" if state.database else "stopped",
    }


# ============================================================================
# Organizers
# ============================================================================


@app.post(
    "/api/organizers",
    status_code=status.HTTP_201_CREATED,
    dependencies=organizer_auth,
)
async def create_organizer(req: OrganizerRequest):
    _ready()
    errors: dict[str, str] = {}
    if not is_valid_username(req.username):
        errors["username"] = "Username may contain only lowercase letters, digits and dashes"
    if not is_valid_email(req.email):
        errors["email"] = "Invalid email format"
    name = (req.name or "").strip()
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        errors["name"] = (
            f"Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters"
        )
    if errors:
        raise ValidationFailed(errors)

    organizer = await _db(state.database.create_organizer, req.username, req.email, name)
    logger.info(f"Created organizer {organizer.id} ({organizer.username})")
    return {"status": "ok", "organizer": organizer.to_dict()}


@app.get("/api/organizers/{username}")
async def get_organizer(username: str):
    _ready()
    organizer = await _db(state.database.get_organizer_by_username, username)
    if not organizer:
        raise NotFound(f"Organizer '{username}' not found")
    meeting_types = await _db(state.database.list_meeting_types, organizer.id)
    return {
        "status": "ok",
        "organizer": {
            "id": organizer.id,
            "username": organizer.username,
            "name": organizer.name,
        },
        "meeting_types": [t.to_dict() for t in meeting_types],
    }


# ============================================================================
# Availability rules and meeting settings
# ============================================================================


@app.get("/api/availability")
async def get_availability(organizer_id: int = Query(...)):
    _ready()
    await state.engine.get_organizer(organizer_id)
    rules = await _db(state.database.list_rules, organizer_id)
    return {"status": "ok", "availability": [rule.to_dict() for rule in rules]}


@app.put("/api/availability", dependencies=organizer_auth)
async def replace_availability(req: AvailabilityRequest):
    _ready()
    rules = _to_rules(req.availability)
    await state.engine.get_organizer(req.organizer_id)
    await _db(state.database.replace_rules, req.organizer_id, rules)
    logger.info(f"Replaced availability for organizer {req.organizer_id}: {len(rules)} rules")
    return {"status": "ok", "availability": [rule.to_dict() for rule in rules]}


@app.get("/api/meeting-settings")
async def get_meeting_settings(organizer_id: int = Query(...)):
    _ready()
    await state.engine.get_organizer(organizer_id)
    settings = await _db(state.database.get_settings, organizer_id)
    return {"status": "ok", "settings": settings.to_dict() if settings else None}


@app.put("/api/meeting-settings", dependencies=organizer_auth)
async def update_meeting_settings(req: MeetingSettingsRequest):
    _ready()
    errors: dict[str, str] = {}
    for check, value in (
        (validate_meeting_duration, req.duration_minutes),
        (validate_minimum_notice, req.minimum_notice_hours),
    ):
        try:
            check(value)
        except ValidationFailed as e:
            errors.update(e.errors)
    if errors:
        raise ValidationFailed(errors)

    await state.engine.get_organizer(req.organizer_id)
    settings = await _db(
        state.database.upsert_settings,
        req.organizer_id,
        req.duration_minutes,
        req.minimum_notice_hours,
    )
    return {"status": "ok", "settings": settings.to_dict()}


# ============================================================================
# Meeting types
# ============================================================================


@app.get("/api/meeting-types")
async def list_meeting_types(organizer_id: int = Query(...)):
    _ready()
    await state.engine.get_organizer(organizer_id)
    meeting_types = await _db(state.database.list_meeting_types, organizer_id)
    return {"status": "ok", "meeting_types": [t.to_dict() for t in meeting_types]}


@app.post(
    "/api/meeting-types",
    status_code=status.HTTP_201_CREATED,
    dependencies=organizer_auth,
)
async def create_meeting_type(req: MeetingTypeRequest):
    _ready()
    _validate_meeting_type(req)
    await state.engine.get_organizer(req.organizer_id)
    meeting_type = await _db(
        state.database.create_meeting_type,
        req.organizer_id,
        req.name.strip(),
        req.slug,
        req.duration_minutes,
        req.is_default,
    )
    return {"status": "ok", "meeting_type": meeting_type.to_dict()}


@app.get("/api/meeting-types/{slug}")
async def get_meeting_type(slug: str, organizer_id: int = Query(...)):
    _ready()
    meeting_type = await _db(state.database.get_meeting_type_by_slug, organizer_id, slug)
    if not meeting_type:
        raise NotFound(f"Meeting type '{slug}' not found")
    return {"status": "ok", "meeting_type": meeting_type.to_dict()}


@app.put("/api/meeting-types/{meeting_type_id}", dependencies=organizer_auth)
async def update_meeting_type(meeting_type_id: int, req: MeetingTypeRequest):
    _ready()
    _validate_meeting_type(req)
    meeting_type = await _db(
        state.database.update_meeting_type,
        meeting_type_id,
        req.name.strip(),
        req.slug,
        req.duration_minutes,
        req.is_default,
    )
    if not meeting_type:
        raise NotFound(f"Meeting type {meeting_type_id} not found")
    return {"status": "ok", "meeting_type": meeting_type.to_dict()}


@app.delete("/api/meeting-types/{meeting_type_id}", dependencies=organizer_auth)
async def delete_meeting_type(meeting_type_id: int):
    _ready()
    if not await _db(state.database.delete_meeting_type, meeting_type_id):
        raise NotFound(f"Meeting type {meeting_type_id} not found")
    return {"status": "ok"}


# ============================================================================
# Slots and bookings
# ============================================================================


@app.get("/api/availability/slots")
async def get_slots(
    organizer_id: int = Query(...),
    date: str = Query(...),
    duration: Optional[int] = Query(None),
    meeting_type: Optional[str] = Query(None),
):
    _ready()
    slots = await state.engine.get_slots_for_date(
        organizer_id, date, duration=duration, meeting_type_slug=meeting_type
    )
    return {"status": "ok", "date": date, "slots": [slot.to_dict() for slot in slots]}


@app.get("/api/availability/month")
async def get_month(
    organizer_id: int = Query(...),
    year: int = Query(...),
    month: int = Query(...),
    duration: Optional[int] = Query(None),
    meeting_type: Optional[str] = Query(None),
):
    _ready()
    days = await state.engine.get_slots_for_month(
        organizer_id, year, month, duration=duration, meeting_type_slug=meeting_type
    )
    return {"status": "ok", "year": year, "month": month, "days": days}


@app.post("/api/bookings", status_code=status.HTTP_201_CREATED)
async def create_booking(req: BookingRequest):
    _ready()
    booking = await state.booking_flow.book(
        req.organizer_id,
        req.attendee_name,
        req.attendee_email,
        req.date,
        req.time,
        duration=req.duration,
        meeting_type_slug=req.meeting_type,
        attendee_phone=req.attendee_phone,
    )
    return {"status": "ok", "booking": booking.to_dict()}


@app.get("/api/bookings", dependencies=organizer_auth)
async def list_bookings(
    organizer_id: int = Query(...),
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
):
    _ready()
    await state.engine.get_organizer(organizer_id)
    bookings = await _db(state.database.list_bookings, organizer_id, date_from, date_to)
    return {"status": "ok", "bookings": [b.to_dict() for b in bookings]}


# ============================================================================
# Google Calendar connection
# ============================================================================


@app.get("/api/calendar/status")
async def calendar_status(organizer_id: int = Query(...)):
    _ready()
    connected = await state.calendar.is_connected(organizer_id)
    return {"status": "ok", "connected": connected}


@app.post("/api/calendar/disconnect", dependencies=organizer_auth)
async def calendar_disconnect(req: OrganizerIdRequest):
    _ready()
    await state.calendar.disconnect(req.organizer_id)
    return {"status": "ok", "connected": False}


@app.get("/api/calendar/events", dependencies=organizer_auth)
async def calendar_events(
    organizer_id: int = Query(...), max_results: int = Query(10, ge=1, le=250)
):
    _ready()
    events = await state.calendar.list_upcoming_events(organizer_id, max_results)
    return {"status": "ok", "events": events}


def _google_config():
    if not state.config or not state.config.google:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Google OAuth is not configured",
        )
    return state.config.google


@app.get("/api/auth/google", dependencies=organizer_auth)
async def google_auth_url(organizer_id: int = Query(...)):
    _ready()
    oauth_config = _google_config()
    await state.engine.get_organizer(organizer_id)
    return {"status": "ok", "url": get_authorization_url(oauth_config, organizer_id)}


@app.get("/api/auth/google/callback")
async def google_auth_callback(
    code: Optional[str] = Query(None),
    state_param: Optional[str] = Query(None, alias="state"),
    error: Optional[str] = Query(None),
):
    _ready()
    oauth_config = _google_config()
    if error or not code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Authorization failed: {error or 'missing code'}",
        )
    organizer_id = verify_state(oauth_config, state_param)
    if organizer_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid OAuth state",
        )

    await state.engine.get_organizer(organizer_id)

    try:
        access_token, refresh_token, expiry = await asyncio.to_thread(
            exchange_code_for_tokens, oauth_config, code
        )
    except (ValueError, KeyError, requests.RequestException) as e:
        logger.error(f"Code exchange failed for organizer {organizer_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to exchange authorization code",
        )

    await _db(
        state.database.store_calendar_tokens,
        organizer_id,
        access_token,
        refresh_token,
        expiry,
    )
    logger.info(f"Connected Google Calendar for organizer {organizer_id}")
    return {"status": "ok", "organizer_id": organizer_id, "connected": True}


def run_engine():
    import argparse

    parser = argparse.ArgumentParser(description="Meeting Scheduler API")
    parser.add_argument(
        "--host", type=str, default="127.0.0.1", help="TCP host to bind to"
    )
    parser.add_argument("--port", type=int, default=8001, help="TCP port to bind to")
    args = parser.parse_args()

    logger.info(f"Starting Meeting Scheduler API on {args.host}:{args.port}")
    config = uvicorn.Config(app, host=args.host, port=args.port, log_level="info")
    server = uvicorn.Server(config)
    server.run()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_engine()
