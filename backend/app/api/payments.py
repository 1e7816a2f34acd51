"""Payment API routes - unlock checkout and Stripe webhook"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.errors import InternalError, UnlockError
from app.core.metrics import checkout_sessions_counter
from app.core.security import get_current_user_id
from app.db.session import get_db
from app.schemas.surveys import CheckoutRequest
from app.services.stripe_service import StripeGateway, get_payment_gateway
from app.services.unlock_service import create_unlock_checkout, process_stripe_webhook

router = APIRouter(prefix="/api", tags=["payments"])
logger = logging.getLogger(__name__)


@router.post("/checkout")
def create_checkout(
    checkout_request: CheckoutRequest,
    user_id: Optional[int] = Depends(get_current_user_id),
    gateway: StripeGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db)
):
    """Create a Stripe checkout session that unlocks a survey's responses"""
    try:
        return create_unlock_checkout(
            checkout_request.surveyId,
            user_id,
            gateway,
            db,
            success_url=checkout_request.successUrl,
            cancel_url=checkout_request.cancelUrl
        )
    except UnlockError as e:
        checkout_sessions_counter.labels(status=e.code.lower()).inc()
        raise
    except Exception as e:
        logger.error(f"Error creating checkout session for survey {checkout_request.surveyId}: {e}", exc_info=True)
        checkout_sessions_counter.labels(status="internal").inc()
        raise InternalError()


# ============================================================================
# STRIPE WEBHOOK (separate router for /api/stripe)
# ============================================================================

stripe_router = APIRouter(prefix="/api/stripe", tags=["stripe"])


@stripe_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    gateway: StripeGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db)
):
    """Handle Stripe webhook events

    Note: This route must be excluded from any global JSON parsing middleware
    to ensure the request body remains as raw bytes for signature verification.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    return process_stripe_webhook(payload, sig_header, gateway, db)
