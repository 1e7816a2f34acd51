"""Unlock eligibility policy

``can_unlock`` is the single rule deciding whether a survey may still be
paid for. The checkout route enforces it and the unlock-status route reports
it to clients, so both always agree.
"""
from datetime import datetime, timezone, timedelta
from typing import Any, Optional

from app.core.config import settings


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; they were written as UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def unlock_deadline_for(survey: Any) -> Optional[datetime]:
    """Explicit unlock_deadline, else expires_at plus the unlock window, else None"""
    explicit = _as_utc(getattr(survey, "unlock_deadline", None))
    if explicit is not None:
        return explicit
    expires_at = _as_utc(getattr(survey, "expires_at", None))
    if expires_at is None:
        return None
    return expires_at + timedelta(days=settings.UNLOCK_WINDOW_DAYS)


def can_unlock(survey: Any, now: Optional[datetime] = None) -> bool:
    """Whether an unpaid survey is still inside its unlock window.

    Depends only on is_paid, unlock_deadline, expires_at and now. A survey with
    no computable deadline can always be unlocked.
    """
    if survey is None or survey.is_paid:
        return False
    deadline = unlock_deadline_for(survey)
    if deadline is None:
        return True
    now = _as_utc(now) or datetime.now(timezone.utc)
    return now < deadline


def is_expired(survey: Any, now: Optional[datetime] = None) -> bool:
    """Whether the survey has stopped collecting responses"""
    expires_at = _as_utc(getattr(survey, "expires_at", None))
    if expires_at is None:
        return False
    now = _as_utc(now) or datetime.now(timezone.utc)
    return expires_at <= now
