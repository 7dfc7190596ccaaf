"""Booking reservation: the authoritative check-and-insert for a slot."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from meeting_scheduler.db.types import DatabaseInterface
from meeting_scheduler.errors import NotFound, SlotTaken
from meeting_scheduler.models import Booking
from meeting_scheduler.scheduling.validation import validate_booking_request

logger = logging.getLogger(__name__)


class ReservationService:
    """Reserves slots so that no two bookings of an organizer on a date overlap.

    Two layers keep concurrent reservations apart. Within this process an
    asyncio.Lock per (organizer, date) queues competing requests. Across
    processes the store re-checks conflicts and inserts inside one
    serialized transaction (insert_booking_if_free).

    A lock lives only while some reservation holds or awaits it.
    """

    def __init__(self, database: DatabaseInterface):
        self.database = database
        self._locks: dict[tuple[int, str], asyncio.Lock] = {}
        self._holders: dict[tuple[int, str], int] = {}

    @asynccontextmanager
    async def _slot_lock(self, organizer_id: int, booking_date: str) -> AsyncIterator[None]:
        key = (organizer_id, booking_date)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    async def reserve(
        self,
        organizer_id: int,
        attendee_name: str,
        attendee_email: str,
        booking_date: str,
        booking_time: str,
        duration_minutes: int,
        attendee_phone: Optional[str] = None,
    ) -> Booking:
        """
        Persist a booking if the interval is still free.

        Raises:
            ValidationFailed: Malformed input, nothing written
            NotFound: Organizer does not exist
            SlotTaken: Interval overlaps an existing booking, nothing written
        """
        validate_booking_request(
            attendee_name,
            attendee_email,
            booking_date,
            booking_time,
            duration_minutes,
            attendee_phone,
        )
        attendee_name = attendee_name.strip()
        attendee_phone = (attendee_phone or "").strip() or None

        organizer = await asyncio.to_thread(self.database.get_organizer, organizer_id)
        if not organizer:
            raise NotFound(f"Organizer {organizer_id} not found")

        async with self._slot_lock(organizer_id, booking_date):
            booking = await asyncio.to_thread(
                self.database.insert_booking_if_free,
                organizer_id,
                attendee_name,
                attendee_email,
                booking_date,
                booking_time,
                duration_minutes,
                attendee_phone,
            )

        if booking is None:
            logger.info(
                f"Slot {booking_date} {booking_time} ({duration_minutes} min) "
                f"already taken for organizer {organizer_id}"
            )
            raise SlotTaken()

        logger.info(
            f"Reserved booking {booking.id} for organizer {organizer_id} "
            f"on {booking.date} at {booking.time}"
        )
        return booking
