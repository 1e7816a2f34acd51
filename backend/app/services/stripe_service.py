"""Stripe access for survey unlocks

All calls go through an explicitly constructed ``StripeGateway``; nothing
here touches ``stripe.api_key``. Routes receive a gateway through
``Depends(get_payment_gateway)`` so tests can swap it out.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import stripe

from app.core.config import settings
from app.core.errors import (
    InternalError, InvalidPayloadError, ProviderError, SignatureInvalidError
)

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass
class CheckoutSessionResult:
    id: str
    url: str


# ============================================================================
# STRIPE OBJECT ACCESS HELPER
# ============================================================================

def _get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(key, default)
        return default if value is None else value
    value = getattr(obj, key, default)
    return default if value is None else value


class StripeGateway:
    """Thin wrapper over the Stripe SDK holding its own credentials"""

    def __init__(self, secret_key: str, webhook_secret: str, api_version: Optional[str] = None):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.api_version = api_version

    def create_unlock_session(
        self,
        survey_id: str,
        owner_id: int,
        success_url: str,
        cancel_url: str
    ) -> CheckoutSessionResult:
        """Open a one-off payment session for unlocking survey_id"""
        if not self.secret_key:
            raise InternalError("Stripe not configured")

        checkout_params = {
            "mode": "payment",
            "line_items": [{
                "price_data": {
                    "currency": settings.UNLOCK_CURRENCY,
                    "product_data": {"name": settings.UNLOCK_PRODUCT_NAME},
                    "unit_amount": settings.UNLOCK_PRICE_CENTS,
                },
                "quantity": 1,
            }],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": {"survey_id": survey_id, "owner_id": str(owner_id)},
        }

        request_options = {"api_key": self.secret_key}
        if self.api_version:
            request_options["stripe_version"] = self.api_version

        try:
            session = stripe.checkout.Session.create(**request_options, **checkout_params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session creation failed for survey {survey_id}: {e}")
            raise ProviderError("Failed to create checkout session")

        url = _get_stripe_value(session, "url")
        if not url:
            raise ProviderError("Checkout session URL missing")
        return CheckoutSessionResult(id=_get_stripe_value(session, "id", ""), url=url)

    def construct_event(self, payload: bytes, sig_header: str) -> Any:
        """Verify sig_header over the exact payload bytes and parse the event"""
        if not self.webhook_secret:
            logger.error("Webhook secret not configured")
            raise InternalError("Webhook secret not configured")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError:
            # Stripe only signs UTF-8 bodies, so these bytes were not sent by Stripe
            security_logger.error("Webhook body is not valid UTF-8")
            raise SignatureInvalidError()

        # Signature first: an unsigned body is rejected whatever it contains
        try:
            stripe.WebhookSignature.verify_header(body, sig_header, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            security_logger.error(f"Invalid webhook signature: {e}")
            raise SignatureInvalidError()

        try:
            data = json.loads(body)
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise InvalidPayloadError()
        if not isinstance(data, dict):
            raise InvalidPayloadError()
        return stripe.Event.construct_from(data, self.secret_key)


def get_payment_gateway() -> StripeGateway:
    """FastAPI dependency: a gateway built from current settings"""
    return StripeGateway(
        secret_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        api_version=settings.STRIPE_API_VERSION or None
    )
