"""Tests for booking notification emails."""

import logging
import smtplib
from unittest.mock import patch

import pytest

from meeting_scheduler.config import SmtpConfig
from meeting_scheduler.models import Booking, Organizer
from meeting_scheduler.notifications import EmailNotifier

ORGANIZER = Organizer(id=1, username="anna", email="anna@example.com", name="Anna Kowalska")
BOOKING = Booking(
    id=7,
    organizer_id=1,
    attendee_name="Jan Nowak",
    attendee_email="jan@example.com",
    date="2025-03-03",
    time="10:00",
    duration_minutes=30,
    attendee_phone="+48 600 000 000",
)


@pytest.fixture
def smtp_config():
    return SmtpConfig(
        enabled=True,
        host="smtp.example.com",
        port=587,
        username="scheduler@example.com",
        password="secret",
    )


@pytest.fixture
def mock_smtp():
    with patch("meeting_scheduler.notifications.smtplib.SMTP") as smtp_class:
        yield smtp_class


def _sent(mock_smtp):
    server = mock_smtp.return_value.__enter__.return_value
    return [c.args[0] for c in server.send_message.call_args_list]


@pytest.mark.asyncio
async def test_organizer_notification(smtp_config, mock_smtp):
    notifier = EmailNotifier(smtp_config, "Europe/Warsaw")

    notifier.notify_organizer(ORGANIZER, BOOKING, "https://meet.google.com/abc")
    await notifier.drain()

    mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=30)
    server = mock_smtp.return_value.__enter__.return_value
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("scheduler@example.com", "secret")

    (message,) = _sent(mock_smtp)
    assert message["To"] == "anna@example.com"
    assert message["Subject"] == "New meeting booking"
    body = message.get_content()
    assert "Jan Nowak <jan@example.com>" in body
    assert "+48 600 000 000" in body
    assert "2025-03-03 at 10:00 (Europe/Warsaw), 30 minutes" in body
    assert "https://meet.google.com/abc" in body


@pytest.mark.asyncio
async def test_attendee_confirmation_without_link(smtp_config, mock_smtp):
    notifier = EmailNotifier(smtp_config, "Europe/Warsaw")

    notifier.notify_attendee(ORGANIZER, BOOKING)
    await notifier.drain()

    (message,) = _sent(mock_smtp)
    assert message["To"] == "jan@example.com"
    assert message["Subject"] == "Meeting booking confirmation"
    assert "Anna Kowalska" in message.get_content()
    assert "Video call" not in message.get_content()


@pytest.mark.asyncio
async def test_error_alert_includes_reason(smtp_config, mock_smtp):
    notifier = EmailNotifier(smtp_config, "Europe/Warsaw")

    notifier.alert_organizer_of_error(ORGANIZER, BOOKING, "quota exceeded")
    await notifier.drain()

    (message,) = _sent(mock_smtp)
    assert message["To"] == "anna@example.com"
    assert "Reason: quota exceeded" in message.get_content()


@pytest.mark.asyncio
async def test_disabled_smtp_sends_nothing(mock_smtp):
    notifier = EmailNotifier(SmtpConfig(enabled=False), "Europe/Warsaw")

    notifier.notify_organizer(ORGANIZER, BOOKING)
    notifier.notify_attendee(ORGANIZER, BOOKING)
    await notifier.drain()

    mock_smtp.assert_not_called()


@pytest.mark.asyncio
async def test_delivery_failure_is_logged(smtp_config, mock_smtp, caplog):
    mock_smtp.side_effect = smtplib.SMTPConnectError(421, "Service not available")
    notifier = EmailNotifier(smtp_config, "Europe/Warsaw")

    with caplog.at_level(logging.ERROR, logger="meeting_scheduler.notifications"):
        notifier.notify_attendee(ORGANIZER, BOOKING)
        await notifier.drain()

    assert "Failed to send 'Meeting booking confirmation'" in caplog.text


@pytest.mark.asyncio
async def test_plain_smtp_without_login(mock_smtp):
    config = SmtpConfig(
        enabled=True, host="localhost", port=25, username="scheduler@localhost", use_tls=False
    )
    notifier = EmailNotifier(config, "Europe/Warsaw")

    notifier.notify_attendee(ORGANIZER, BOOKING)
    await notifier.drain()

    server = mock_smtp.return_value.__enter__.return_value
    server.starttls.assert_not_called()
    server.login.assert_not_called()
    server.send_message.assert_called_once()
