from meeting_scheduler.db.types import DatabaseInterface

__all__ = ["DatabaseInterface"]
