"""Survey API routes"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.security import require_auth
from app.db.session import get_db
from app.schemas.surveys import CreateSurveyRequest, SubmitResponsesRequest
from app.services.survey_service import (
    create_survey_for_owner, get_owner_survey_detail, get_public_survey,
    list_dashboard, submit_anonymous_responses
)
from app.services.unlock_service import get_unlock_status

router = APIRouter(prefix="/api/surveys", tags=["surveys"])
logger = logging.getLogger(__name__)


@router.post("")
def create_survey(
    body: CreateSurveyRequest,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Create a survey; it collects responses for 24 or 48 hours"""
    return create_survey_for_owner(user_id, body.title, body.questions, body.duration_hours, db)


@router.get("")
def list_surveys(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Dashboard list of the caller's surveys"""
    return {"surveys": list_dashboard(user_id, db)}


@router.get("/{survey_id}")
def get_survey_detail(survey_id: str, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    return get_owner_survey_detail(survey_id, user_id, db)


@router.get("/{survey_id}/unlock-status")
def get_survey_unlock_status(survey_id: str, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Polled by clients returning from checkout until is_paid flips"""
    return get_unlock_status(survey_id, user_id, db)


# ============================================================================
# PUBLIC ROUTES (separate router for /api/public/surveys)
# ============================================================================

public_router = APIRouter(prefix="/api/public/surveys", tags=["public"])


@public_router.get("/{survey_id}")
def get_shared_survey(survey_id: str, db: Session = Depends(get_db)):
    """Survey as seen through its share link"""
    return get_public_survey(survey_id, db)


@public_router.post("/{survey_id}/responses")
def submit_responses(survey_id: str, body: SubmitResponsesRequest, db: Session = Depends(get_db)):
    """Submit anonymous answers"""
    return submit_anonymous_responses(survey_id, [a.model_dump() for a in body.answers], db)
