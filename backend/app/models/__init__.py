"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.user import User
from app.models.survey import Survey, Question
from app.models.response import Response
from app.models.webhook_event import WebhookEvent

# Export all for convenience
__all__ = ["Base", "User", "Survey", "Question", "Response", "WebhookEvent"]
