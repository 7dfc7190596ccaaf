"""Guest booking: reservation followed by best-effort calendar sync and email."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from meeting_scheduler.db.types import DatabaseInterface
from meeting_scheduler.errors import SchedulingError
from meeting_scheduler.models import Booking, Organizer
from meeting_scheduler.notifications import EmailNotifier
from meeting_scheduler.scheduling.reservations import ReservationService
from meeting_scheduler.scheduling.service import SlotAvailabilityEngine
from meeting_scheduler.scheduling.validation import validate_booking_request

logger = logging.getLogger(__name__)


class BookingFlow:
    def __init__(
        self,
        database: DatabaseInterface,
        engine: SlotAvailabilityEngine,
        reservations: ReservationService,
        calendar: Any,
        notifier: EmailNotifier,
    ):
        self.database = database
        self.engine = engine
        self.reservations = reservations
        self.calendar = calendar
        self.notifier = notifier

    async def book(
        self,
        organizer_id: int,
        attendee_name: str,
        attendee_email: str,
        booking_date: str,
        booking_time: str,
        duration: Optional[int] = None,
        meeting_type_slug: Optional[str] = None,
        attendee_phone: Optional[str] = None,
    ) -> Booking:
        """Reserve the slot, then sync the calendar and notify both parties.

        Only validation, lookup and reservation errors propagate. Once the
        booking is stored, calendar and email problems are logged and
        reported to the organizer instead.
        """
        validate_booking_request(
            attendee_name,
            attendee_email,
            booking_date,
            booking_time,
            duration,
            attendee_phone,
            duration_required=False,
        )
        organizer = await self.engine.get_organizer(organizer_id)
        duration, _ = await self.engine.resolve_meeting_parameters(
            organizer_id, duration, meeting_type_slug
        )

        booking = await self.reservations.reserve(
            organizer_id,
            attendee_name,
            attendee_email,
            booking_date,
            booking_time,
            duration,
            attendee_phone,
        )
        return await self._after_reservation(organizer, booking)

    async def _calendar_connected(self, organizer_id: int) -> bool:
        if self.calendar is None:
            return False
        try:
            return await self.calendar.is_connected(organizer_id)
        except SchedulingError as e:
            logger.error(f"Could not check calendar connection for organizer {organizer_id}: {e}")
            return False

    async def _after_reservation(self, organizer: Organizer, booking: Booking) -> Booking:
        meeting_link: Optional[str] = None

        if await self._calendar_connected(organizer.id):
            event = None
            reason = "The calendar service did not create the event"
            try:
                event = await self.calendar.create_event(
                    organizer.id,
                    booking.attendee_name,
                    booking.attendee_email,
                    booking.date,
                    booking.time,
                    booking.duration_minutes,
                    organizer.name,
                    organizer.email,
                    booking.attendee_phone,
                )
            except Exception as e:
                logger.error(f"Calendar event creation raised for booking {booking.id}: {e}")
                reason = str(e)

            if event:
                meeting_link = event.meeting_link or None
                try:
                    updated = await asyncio.to_thread(
                        self.database.attach_external_event,
                        booking.id,
                        event.event_id,
                        event.meeting_link,
                    )
                    booking = updated or booking
                except SchedulingError as e:
                    logger.error(
                        f"Event {event.event_id} created but not linked to booking {booking.id}: {e}"
                    )
            else:
                self.notifier.alert_organizer_of_error(organizer, booking, reason)
                self.notifier.notify_attendee(organizer, booking)
        else:
            # Without a calendar event Google sends no invitation
            self.notifier.notify_attendee(organizer, booking)

        self.notifier.notify_organizer(organizer, booking, meeting_link)
        return booking
