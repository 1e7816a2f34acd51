"""Survey service - creation, dashboard listing and anonymous responses"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings, ALLOWED_DURATION_HOURS
from app.core.errors import ForbiddenError, InvalidRequestError, NotFoundError, SurveyExpiredError
from app.core.metrics import survey_responses_counter
from app.db.helpers import (
    add_responses, count_responses, create_survey, get_responses, get_survey,
    list_surveys_for_owner
)
from app.models.survey import Survey
from app.services.eligibility import can_unlock, is_expired, unlock_deadline_for

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Survey"


def _summary(survey: Survey, response_count: int) -> Dict[str, Any]:
    return {
        "id": survey.id,
        "title": survey.title,
        "created_at": survey.created_at,
        "expires_at": survey.expires_at,
        "duration_hours": survey.duration_hours,
        "is_expired": is_expired(survey),
        "is_paid": bool(survey.is_paid),
        "paid_at": survey.paid_at,
        "can_unlock": can_unlock(survey),
        "unlock_deadline": unlock_deadline_for(survey),
        "response_count": response_count,
    }


def _questions(survey: Survey) -> List[Dict[str, Any]]:
    return [{"id": q.id, "position": q.position, "text": q.text} for q in survey.questions]


def create_survey_for_owner(
    owner_id: int,
    title: Optional[str],
    questions: List[str],
    duration_hours: Optional[int],
    db: Session
) -> Dict[str, Any]:
    """Validate and store a new survey. Unsupported durations fall back to 24h."""
    cleaned_title = (title or "").strip() or DEFAULT_TITLE
    if len(cleaned_title) > settings.MAX_TITLE_LENGTH:
        raise InvalidRequestError(f"Survey title must be {settings.MAX_TITLE_LENGTH} characters or less.")

    cleaned_questions = [q.strip() for q in questions if q and q.strip()]
    if not cleaned_questions:
        raise InvalidRequestError("Add at least one question.")
    if len(cleaned_questions) > settings.MAX_QUESTIONS:
        raise InvalidRequestError(f"Max {settings.MAX_QUESTIONS} questions.")
    if any(len(q) > settings.MAX_QUESTION_LENGTH for q in cleaned_questions):
        raise InvalidRequestError(f"Each question must be {settings.MAX_QUESTION_LENGTH} characters or less.")

    hours = duration_hours if duration_hours in ALLOWED_DURATION_HOURS else ALLOWED_DURATION_HOURS[0]

    survey = create_survey(owner_id, cleaned_title, cleaned_questions, hours, db)
    logger.info(f"User {owner_id} created survey {survey.id} ({hours}h, {len(cleaned_questions)} questions)")
    result = _summary(survey, 0)
    result["questions"] = _questions(survey)
    return result


def list_dashboard(owner_id: int, db: Session) -> List[Dict[str, Any]]:
    return [_summary(survey, n) for survey, n in list_surveys_for_owner(owner_id, db)]


def get_owner_survey_detail(survey_id: str, user_id: int, db: Session) -> Dict[str, Any]:
    """Owner view. Answers are only returned once the survey is paid."""
    survey = get_survey(survey_id, db)
    if not survey:
        raise NotFoundError()
    if survey.owner_id != user_id:
        raise ForbiddenError()

    result = _summary(survey, count_responses(survey.id, db))
    result["questions"] = _questions(survey)
    result["locked"] = not survey.is_paid
    if survey.is_paid:
        result["responses"] = [
            {"id": r.id, "question_id": r.question_id, "answer": r.answer, "created_at": r.created_at}
            for r in get_responses(survey.id, db)
        ]
    else:
        result["responses"] = []
    return result


def get_public_survey(survey_id: str, db: Session) -> Dict[str, Any]:
    survey = get_survey(survey_id, db)
    if not survey:
        raise NotFoundError()
    return {
        "id": survey.id,
        "title": survey.title,
        "expires_at": survey.expires_at,
        "is_expired": is_expired(survey),
        "questions": _questions(survey),
    }


def submit_anonymous_responses(survey_id: str, answers: List[Dict[str, Any]], db: Session) -> Dict[str, Any]:
    """Store one respondent's answers.

    Answers are trimmed and cut to MAX_ANSWER_LENGTH; blank answers are
    dropped. At least one non-blank answer is required.
    """
    survey = get_survey(survey_id, db)
    if not survey:
        raise NotFoundError()
    if is_expired(survey):
        raise SurveyExpiredError()

    question_ids = {q.id for q in survey.questions}
    cleaned: Dict[int, str] = {}
    for item in answers:
        question_id = item.get("question_id")
        if question_id not in question_ids:
            raise InvalidRequestError("Unknown question")
        text = (item.get("answer") or "").strip()[:settings.MAX_ANSWER_LENGTH]
        if text:
            cleaned[question_id] = text

    if not cleaned:
        raise InvalidRequestError("Write at least one answer before submitting.")

    written = add_responses(survey.id, cleaned, db)
    survey_responses_counter.inc()
    return {"submitted": written}
