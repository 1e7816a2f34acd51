"""Survey and Question models"""
import uuid
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Text, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


def _new_survey_id() -> str:
    return str(uuid.uuid4())


class Survey(Base):
    """Anonymous survey; responses stay locked until is_paid flips"""
    __tablename__ = "surveys"
    __table_args__ = (
        CheckConstraint(
            "(is_paid AND paid_at IS NOT NULL) OR (NOT is_paid AND paid_at IS NULL)",
            name="ck_surveys_paid_at_matches_is_paid"
        ),
    )

    id = Column(String(36), primary_key=True, default=_new_survey_id)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    duration_hours = Column(Integer, nullable=False, default=24)  # 24 or 48
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)  # End of response collection
    unlock_deadline = Column(DateTime(timezone=True), nullable=True)  # Falls back to expires_at + window
    is_paid = Column(Boolean, default=False, nullable=False)  # Only ever set true by the Stripe webhook
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    owner = relationship("User", back_populates="surveys")
    questions = relationship(
        "Question", back_populates="survey", cascade="all, delete-orphan",
        order_by="Question.position"
    )
    responses = relationship("Response", back_populates="survey", cascade="all, delete-orphan")


class Question(Base):
    """Survey question, ordered by position"""
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    survey_id = Column(String(36), ForeignKey("surveys.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    text = Column(Text, nullable=False)

    survey = relationship("Survey", back_populates="questions")
