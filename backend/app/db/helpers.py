"""Database helper functions for surveys, responses and the webhook ledger

These are the only storage primitives the unlock flow relies on:

* ``get_survey`` - point lookup by primary key
* ``record_webhook_event`` - unique-constraint insert into the dedupe ledger
* ``mark_survey_paid`` - conditional ``is_paid=false -> true`` update

Ledger and paid-flag writes are flushed but not committed here; the caller
owns the transaction so both land (or roll back) together.
"""
import logging
import uuid
from datetime import datetime, timezone, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.survey import Survey, Question
from app.models.response import Response
from app.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


def is_valid_survey_id(value) -> bool:
    """Survey ids are UUID strings; anything else is rejected before hitting the DB"""
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def get_survey(survey_id: str, db: Session) -> Optional[Survey]:
    """Get survey by id, or None when the id is malformed or unknown"""
    if not is_valid_survey_id(survey_id):
        return None
    return db.get(Survey, survey_id)


# ============================================================================
# WEBHOOK LEDGER & PAID FLAG
# ============================================================================

def record_webhook_event(event_id: str, event_type: str, db: Session) -> bool:
    """Insert event_id into the ledger.

    Returns True when this call inserted the row, False when the unique
    constraint reports the event was already recorded. The session is rolled
    back on conflict so it stays usable.
    """
    db.add(WebhookEvent(event_id=event_id, event_type=event_type))
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        return False
    return True


def mark_survey_paid(survey_id: str, db: Session, paid_at: Optional[datetime] = None) -> int:
    """Flip is_paid for an unpaid survey. Returns the number of rows changed (0 or 1)."""
    result = db.execute(
        update(Survey)
        .where(Survey.id == survey_id, Survey.is_paid == False)  # noqa: E712
        .values(is_paid=True, paid_at=paid_at or datetime.now(timezone.utc))
    )
    return result.rowcount


# ============================================================================
# SURVEYS & RESPONSES
# ============================================================================

def create_survey(
    owner_id: int,
    title: str,
    questions: Sequence[str],
    duration_hours: int,
    db: Session,
    now: Optional[datetime] = None
) -> Survey:
    """Create a survey with its questions. Always starts unpaid."""
    now = now or datetime.now(timezone.utc)
    survey = Survey(
        owner_id=owner_id,
        title=title,
        duration_hours=duration_hours,
        created_at=now,
        expires_at=now + timedelta(hours=duration_hours),
        is_paid=False,
    )
    survey.questions = [Question(position=i, text=text) for i, text in enumerate(questions)]
    db.add(survey)
    db.commit()
    db.refresh(survey)
    return survey


def list_surveys_for_owner(owner_id: int, db: Session) -> List[Tuple[Survey, int]]:
    """Owner's surveys, newest first, each paired with its response count"""
    counts = (
        db.query(Response.survey_id, func.count(Response.id).label("n"))
        .group_by(Response.survey_id)
        .subquery()
    )
    rows = (
        db.query(Survey, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.survey_id == Survey.id)
        .filter(Survey.owner_id == owner_id)
        .order_by(Survey.created_at.desc())
        .all()
    )
    return [(survey, int(n)) for survey, n in rows]


def count_responses(survey_id: str, db: Session) -> int:
    return db.query(func.count(Response.id)).filter(Response.survey_id == survey_id).scalar() or 0


def get_responses(survey_id: str, db: Session) -> List[Response]:
    return (
        db.query(Response)
        .filter(Response.survey_id == survey_id)
        .order_by(Response.created_at.asc(), Response.id.asc())
        .all()
    )


def add_responses(survey_id: str, answers: Dict[int, str], db: Session) -> int:
    """Store one anonymous submission (question_id -> answer). Returns rows written."""
    for question_id, answer in answers.items():
        db.add(Response(survey_id=survey_id, question_id=question_id, answer=answer))
    db.commit()
    return len(answers)
