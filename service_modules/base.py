"""
Base service utilities and shared imports.
All services should import from here for common functionality.
"""
import calendar
import json
import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Optional

from errors import (
    AppError, ValidationError, AuthenticationError, PermissionDeniedError,
    AccountSuspendedError, MembershipInactiveError, NotFoundError, ConflictError,
    QrAlreadyUsedError, ExternalServiceError, ServiceUnavailableError
)
from storage import DatabaseStorage, get_storage

# Re-export for convenience
__all__ = [
    'json', 'logging', 'uuid', 'date', 'datetime', 'timedelta',
    'AppError', 'ValidationError', 'AuthenticationError', 'PermissionDeniedError',
    'AccountSuspendedError', 'MembershipInactiveError', 'NotFoundError', 'ConflictError',
    'QrAlreadyUsedError', 'ExternalServiceError', 'ServiceUnavailableError',
    'DatabaseStorage', 'get_storage',
    'utcnow', 'now_iso', 'parse_iso', 'add_months'
]

logger = logging.getLogger("gym_app")


def utcnow() -> datetime:
    return datetime.utcnow()


def now_iso() -> str:
    return utcnow().isoformat()


def parse_iso(value: Optional[str], field: str = "date") -> Optional[datetime]:
    """Parse an ISO date or datetime into naive UTC. Raises ValidationError on garbage."""
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        raise ValidationError(f"Invalid {field}: expected ISO-8601")
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


def add_months(start: datetime, months: int) -> datetime:
    """Calendar-month addition, clamping to the last day of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)
