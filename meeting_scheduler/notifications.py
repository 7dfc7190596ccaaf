"""Booking notification emails.

Sending is fire-and-forget: each call schedules the SMTP exchange on a
worker thread and returns immediately. Delivery failures are logged.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional, Set

from meeting_scheduler.config import SmtpConfig
from meeting_scheduler.models import Booking, Organizer

logger = logging.getLogger(__name__)

SMTP_TIMEOUT = 30


class EmailNotifier:
    def __init__(self, smtp_config: SmtpConfig, organizer_timezone: str):
        self.smtp_config = smtp_config
        self.organizer_timezone = organizer_timezone
        self._pending: Set[asyncio.Task] = set()

    def _when(self, booking: Booking) -> str:
        return (
            f"{booking.date} at {booking.time} ({self.organizer_timezone}), "
            f"{booking.duration_minutes} minutes"
        )

    def _build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["Message-ID"] = make_msgid()
        message["From"] = self.smtp_config.from_address
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body, subtype="plain")
        return message

    def _send(self, message: EmailMessage) -> None:
        config = self.smtp_config
        try:
            with smtplib.SMTP(config.host, config.port, timeout=SMTP_TIMEOUT) as smtp:
                if config.use_tls:
                    smtp.starttls()
                if config.username and config.password:
                    smtp.login(config.username, config.password)
                smtp.send_message(message)
            logger.info(f"Sent '{message['Subject']}' to {message['To']}")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send '{message['Subject']}' to {message['To']}: {e}")

    def _dispatch(self, message: EmailMessage) -> None:
        if not self.smtp_config.enabled:
            logger.info(f"SMTP disabled, skipping '{message['Subject']}' to {message['To']}")
            return

        task = asyncio.get_running_loop().create_task(asyncio.to_thread(self._send, message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight sends. Used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def notify_organizer(
        self, organizer: Organizer, booking: Booking, meeting_link: Optional[str] = None
    ) -> None:
        lines = [
            f"Hello {organizer.name},",
            "",
            "You have a new booking.",
            "",
            f"Attendee: {booking.attendee_name} <{booking.attendee_email}>",
        ]
        if booking.attendee_phone:
            lines.append(f"Phone: {booking.attendee_phone}")
        lines.append(f"When: {self._when(booking)}")
        if meeting_link:
            lines.append(f"Video call: {meeting_link}")

        self._dispatch(
            self._build_message(organizer.email, "New meeting booking", "\n".join(lines))
        )

    def notify_attendee(
        self, organizer: Organizer, booking: Booking, meeting_link: Optional[str] = None
    ) -> None:
        lines = [
            f"Hello {booking.attendee_name},",
            "",
            f"Your meeting with {organizer.name} is confirmed.",
            "",
            f"When: {self._when(booking)}",
        ]
        if meeting_link:
            lines.append(f"Video call: {meeting_link}")
        lines += ["", f"Questions? Contact {organizer.email}."]

        self._dispatch(
            self._build_message(
                booking.attendee_email, "Meeting booking confirmation", "\n".join(lines)
            )
        )

    def alert_organizer_of_error(
        self, organizer: Organizer, booking: Booking, reason: str
    ) -> None:
        body = "\n".join(
            [
                f"Hello {organizer.name},",
                "",
                "A booking was saved but the calendar event could not be created.",
                f"Reason: {reason}",
                "",
                f"Attendee: {booking.attendee_name} <{booking.attendee_email}>",
                f"When: {self._when(booking)}",
                "",
                "The attendee was sent a confirmation email without a video link.",
            ]
        )
        self._dispatch(
            self._build_message(organizer.email, "Calendar sync failed for a booking", body)
        )
