# gemini_chat/subscriptions/service.py
"""
Stripe integration for the Pro plan.

The rest of the app only ever reads ``User.is_premium``; this module is the
one place that flips it, after a signed ``checkout.session.completed`` event.
"""

import json
from typing import Any, Dict, Optional

import stripe
from sqlalchemy.orm import Session

from ..config import settings
from ..error_handlers import ErrorCode, ExternalServiceException, ValidationException
from ..logging_config import get_logger, log_business_event
from ..users import service as user_service
from ..users.models import User

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


class SubscriptionService:

    def __init__(self, db: Session, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.db = db
        stripe.api_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

    def create_checkout_session(self, user: User) -> str:
        """Returns the hosted checkout URL"""
        try:
            session = stripe.checkout.Session.create(
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": settings.STRIPE_PRO_PRICE_ID, "quantity": 1}],
                success_url=settings.CHECKOUT_SUCCESS_URL,
                cancel_url=settings.CHECKOUT_CANCEL_URL,
                client_reference_id=str(user.id),
            )
        except stripe.StripeError as e:
            logger.error(
                "Stripe checkout creation failed",
                extra={"user_id": user.id, "extra_data": {"error": str(e)}},
                exc_info=True
            )
            raise ExternalServiceException("Stripe", "could not start subscription", ErrorCode.PAYMENT_GATEWAY_ERROR)

        log_business_event("checkout_started", user_id=user.id, checkout_session_id=session.id)
        return session.url

    def verify_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("Stripe webhook rejected", extra={"extra_data": {"error": str(e)}})
            raise ValidationException(
                "Invalid webhook signature",
                error_code=ErrorCode.WEBHOOK_SIGNATURE_INVALID,
                status_code=400
            )

        # Verified; handle it as plain JSON
        return json.loads(payload)

    def handle_event(self, event: Dict[str, Any]) -> Optional[User]:
        """Apply a verified event. Returns the upgraded user, if any."""
        event_type = event["type"]
        if event_type != CHECKOUT_COMPLETED:
            logger.debug("Ignoring Stripe event", extra={"extra_data": {"event_type": event_type}})
            return None

        session = event["data"]["object"]
        reference = session.get("client_reference_id")
        if not reference or not str(reference).isdigit():
            logger.warning(
                "Checkout completed without a usable client_reference_id",
                extra={"extra_data": {"checkout_session_id": session.get("id")}}
            )
            return None

        user = user_service.update_user(self.db, int(reference), is_premium=True)
        log_business_event("user_upgraded", user_id=user.id, checkout_session_id=session.get("id"))
        return user
