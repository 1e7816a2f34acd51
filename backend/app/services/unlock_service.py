"""Unlock service - checkout initiation and Stripe webhook processing

The checkout side only reads survey state; the webhook side is the only
writer of ``is_paid``. A survey therefore cannot be marked paid before
Stripe confirms the payment.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    AlreadyUnlockedError, ForbiddenError, InvalidPayloadError, InvalidRequestError,
    MissingMetadataError, MissingSignatureError, NotFoundError, StorageError,
    UnauthenticatedError, UnlockWindowClosedError
)
from app.core.metrics import checkout_sessions_counter, survey_unlocks_counter, webhook_events_counter
from app.db.helpers import get_survey, is_valid_survey_id, mark_survey_paid, record_webhook_event
from app.services.eligibility import can_unlock, unlock_deadline_for
from app.services.stripe_service import CHECKOUT_COMPLETED, StripeGateway, _get_stripe_value

logger = logging.getLogger(__name__)
payments_logger = logging.getLogger("payments")
security_logger = logging.getLogger("security")

# Card payments complete immediately; bank debits and similar complete later
ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
PAYMENT_COMPLETED_EVENTS = (CHECKOUT_COMPLETED, ASYNC_PAYMENT_SUCCEEDED)


# ============================================================================
# CHECKOUT
# ============================================================================

def _allowed_redirect_origins():
    origins = set()
    for url in (settings.SITE_URL, settings.FRONTEND_URL):
        parsed = urlparse(url)
        if parsed.scheme and parsed.netloc:
            origins.add(f"{parsed.scheme}://{parsed.netloc}")
    return origins


def _validate_redirect_url(url: Optional[str], field: str) -> Optional[str]:
    """Caller-supplied redirects must point back at our own site"""
    if url is None:
        return None
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or f"{parsed.scheme}://{parsed.netloc}" not in _allowed_redirect_origins():
        raise InvalidRequestError(f"Invalid {field}")
    return url


def create_unlock_checkout(
    survey_id: Optional[str],
    user_id: Optional[int],
    gateway: StripeGateway,
    db: Session,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None
) -> Dict[str, str]:
    """Create a Stripe checkout session that will unlock survey_id once paid.

    Checks run in a fixed order and the first failure is raised:
    missing surveyId, no session, unknown survey, not the owner, already paid,
    unlock window closed. Nothing is written locally.

    Returns:
        Dict with the Stripe-hosted checkout ``url``

    Raises:
        UnlockError subclass describing the failed check, or ProviderError
        when Stripe rejects the request
    """
    if not survey_id:
        raise InvalidRequestError("Missing surveyId")
    success_url = _validate_redirect_url(success_url, "successUrl")
    cancel_url = _validate_redirect_url(cancel_url, "cancelUrl")

    if user_id is None:
        raise UnauthenticatedError("Unauthorized")

    survey = get_survey(survey_id, db)
    if not survey:
        raise NotFoundError()

    if survey.owner_id != user_id:
        security_logger.warning(f"User {user_id} attempted checkout for survey {survey_id} they do not own")
        raise ForbiddenError()

    if survey.is_paid:
        raise AlreadyUnlockedError()

    if not can_unlock(survey):
        raise UnlockWindowClosedError()

    site = settings.SITE_URL.rstrip("/")
    session = gateway.create_unlock_session(
        survey.id,
        user_id,
        success_url or f"{site}/dashboard?surveyId={survey.id}&unlocked=1",
        cancel_url or f"{site}/unlock/{survey.id}",
    )
    checkout_sessions_counter.labels(status="created").inc()
    payments_logger.info(f"Created checkout session {session.id} for survey {survey.id} (user {user_id})")
    return {"url": session.url}


def get_unlock_status(survey_id: str, user_id: int, db: Session) -> Dict[str, Any]:
    """Paid flag and eligibility for the owner's survey, read fresh from the DB"""
    survey = get_survey(survey_id, db)
    if not survey:
        raise NotFoundError()
    if survey.owner_id != user_id:
        raise ForbiddenError()

    deadline = unlock_deadline_for(survey)
    return {
        "survey_id": survey.id,
        "is_paid": bool(survey.is_paid),
        "paid_at": survey.paid_at,
        "can_unlock": can_unlock(survey),
        "unlock_deadline": deadline,
    }


# ============================================================================
# WEBHOOK
# ============================================================================

def _apply_payment_completed(event: Any, event_type: str, db: Session) -> str:
    """Flip is_paid for the survey named in the session metadata. Returns an outcome label."""
    session = _get_stripe_value(_get_stripe_value(event, "data"), "object")
    metadata = _get_stripe_value(session, "metadata")
    survey_id = _get_stripe_value(metadata, "survey_id")

    if not is_valid_survey_id(survey_id):
        payments_logger.error(
            f"Webhook event {_get_stripe_value(event, 'id')} has missing or malformed survey_id: {survey_id!r}"
        )
        raise MissingMetadataError()

    if event_type == CHECKOUT_COMPLETED and _get_stripe_value(session, "payment_status") == "unpaid":
        payments_logger.info(f"Checkout for survey {survey_id} completed with payment pending; waiting for async result")
        return "payment_pending"

    survey = get_survey(survey_id, db)
    if survey is None:
        payments_logger.error(f"Payment completed for unknown survey {survey_id}; nothing to unlock")
        return "unknown_survey"

    owner_id = _get_stripe_value(metadata, "owner_id")
    if owner_id is not None and str(owner_id) != str(survey.owner_id):
        security_logger.error(
            f"Webhook owner_id {owner_id} does not match owner of survey {survey_id}; not unlocking"
        )
        return "owner_mismatch"

    if mark_survey_paid(survey_id, db, paid_at=datetime.now(timezone.utc)):
        survey_unlocks_counter.inc()
        payments_logger.info(f"Survey {survey_id} unlocked")
        return "unlocked"

    payments_logger.info(f"Survey {survey_id} was already paid")
    return "already_paid"


def process_stripe_webhook(
    payload: bytes,
    sig_header: Optional[str],
    gateway: StripeGateway,
    db: Session
) -> Dict[str, Any]:
    """Process Stripe webhook event

    Verifies the signature over the raw bytes, records the event id in the
    dedupe ledger and applies the paid transition in the same transaction.

    Args:
        payload: Raw request body as bytes (must not be parsed by middleware)
        sig_header: Stripe-Signature header value
        gateway: Stripe gateway holding the webhook secret
        db: Database session

    Returns:
        ``{"received": True}``, plus ``"duplicate": True`` for redeliveries

    Raises:
        MissingSignatureError, SignatureInvalidError, InvalidPayloadError:
            the request is rejected before touching storage
        MissingMetadataError: a completion event without a usable survey_id
            (the ledger row is kept so redeliveries are acknowledged)
        StorageError: the database failed; nothing was committed
    """
    if not sig_header:
        security_logger.warning("Webhook received without Stripe-Signature header")
        webhook_events_counter.labels(outcome="missing_signature").inc()
        raise MissingSignatureError()

    try:
        event = gateway.construct_event(payload, sig_header)
    except Exception:
        webhook_events_counter.labels(outcome="rejected").inc()
        raise

    event_id = _get_stripe_value(event, "id")
    event_type = _get_stripe_value(event, "type")
    if not isinstance(event_id, str) or not event_id or not event_type:
        webhook_events_counter.labels(outcome="invalid_payload").inc()
        raise InvalidPayloadError("Event id or type missing")

    try:
        if not record_webhook_event(event_id, event_type, db):
            logger.info(f"Webhook event {event_id} already processed")
            webhook_events_counter.labels(outcome="duplicate").inc()
            return {"received": True, "duplicate": True}

        outcome = "ignored"
        if event_type in PAYMENT_COMPLETED_EVENTS:
            try:
                outcome = _apply_payment_completed(event, event_type, db)
            except MissingMetadataError:
                # Keep the ledger row so Stripe's retries short-circuit as duplicates
                db.commit()
                webhook_events_counter.labels(outcome="missing_metadata").inc()
                raise
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        payments_logger.error(f"Storage failure processing webhook event {event_id}: {e}", exc_info=True)
        webhook_events_counter.labels(outcome="storage_error").inc()
        raise StorageError()

    webhook_events_counter.labels(outcome=outcome).inc()
    logger.info(f"Processed webhook event {event_id} of type {event_type}: {outcome}")
    return {"received": True}
