"""Pydantic schemas for surveys, checkout and responses"""
from pydantic import BaseModel
from typing import List, Optional


class CheckoutRequest(BaseModel):
    # Optional so a missing id is reported as INVALID_REQUEST, not a 422
    surveyId: Optional[str] = None
    successUrl: Optional[str] = None
    cancelUrl: Optional[str] = None


class CreateSurveyRequest(BaseModel):
    title: Optional[str] = None
    questions: List[str]
    duration_hours: Optional[int] = 24  # 24 or 48


class AnswerIn(BaseModel):
    question_id: int
    answer: str = ""


class SubmitResponsesRequest(BaseModel):
    answers: List[AnswerIn]
