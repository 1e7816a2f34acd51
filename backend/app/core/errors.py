"""Error taxonomy for checkout, webhook and survey routes

Every failure a handler can report is an ``UnlockError`` carrying a stable
``code`` and the HTTP status it maps to. Routes let these propagate; the
exception handler registered in ``app.main`` renders them as
``{"error": message, "code": code}``.
"""
from typing import Optional


class UnlockError(Exception):
    code = "INTERNAL"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class InvalidRequestError(UnlockError):
    code = "INVALID_REQUEST"
    status_code = 400
    default_message = "Invalid request"


class UnauthenticatedError(UnlockError):
    code = "UNAUTHENTICATED"
    status_code = 401
    default_message = "Not authenticated. Please log in."


class ForbiddenError(UnlockError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(UnlockError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Survey not found"


class AlreadyUnlockedError(UnlockError):
    code = "ALREADY_UNLOCKED"
    status_code = 400
    default_message = "Already unlocked"


class UnlockWindowClosedError(UnlockError):
    code = "UNLOCK_WINDOW_CLOSED"
    status_code = 400
    default_message = "Unlock window ended. This survey can no longer be unlocked."


class ProviderError(UnlockError):
    code = "PROVIDER_ERROR"
    status_code = 502
    default_message = "Payment provider error"


class InternalError(UnlockError):
    pass


class MissingSignatureError(UnlockError):
    code = "MISSING_SIGNATURE"
    status_code = 400
    default_message = "Missing Stripe signature"


class SignatureInvalidError(UnlockError):
    code = "SIGNATURE_INVALID"
    status_code = 400
    default_message = "Invalid signature"


class InvalidPayloadError(UnlockError):
    code = "INVALID_PAYLOAD"
    status_code = 400
    default_message = "Invalid payload"


class MissingMetadataError(UnlockError):
    code = "MISSING_METADATA"
    status_code = 400
    default_message = "Missing survey_id in metadata"


class StorageError(UnlockError):
    code = "STORAGE_ERROR"
    status_code = 500
    default_message = "DB update failed"


class SurveyExpiredError(UnlockError):
    code = "SURVEY_EXPIRED"
    status_code = 410
    default_message = "This survey link has expired."
