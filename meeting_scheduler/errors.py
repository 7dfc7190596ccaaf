"""Error taxonomy for scheduling operations."""

from typing import Dict, Optional


class SchedulingError(Exception):
    """Base class for errors surfaced by the scheduling core."""

    error_type = "scheduling_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(SchedulingError):
    """Organizer (or a named resource of it) does not exist."""

    error_type = "not_found"


class ConfigurationMissing(SchedulingError):
    """Organizer has no resolvable meeting duration."""

    error_type = "configuration_missing"


class ValidationFailed(SchedulingError):
    """Malformed input. `errors` maps field name to a human readable problem."""

    error_type = "validation_failed"

    def __init__(self, errors: Dict[str, str], message: Optional[str] = None):
        super().__init__(message or "Validation failed")
        self.errors = errors


class SlotTaken(SchedulingError):
    """Reservation lost the race or the slot was never free."""

    error_type = "slot_taken"

    def __init__(self, message: str = "This time slot is already taken"):
        super().__init__(message)


class ExternalIntegrationDegraded(SchedulingError):
    """External calendar call failed. Never escapes the calendar adapter."""

    error_type = "external_integration_degraded"


class TransientStoreError(SchedulingError):
    """Persistence layer unavailable. Safe to retry the whole operation."""

    error_type = "transient_store_error"
