"""
Subscriptions API
Endpoints:
- POST /subscribe/pro          (start Stripe Checkout)
- POST /webhook/stripe         (Stripe event callback)
- GET  /subscription/status
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from ..auth.dependencies import get_current_user
from ..database import get_db
from ..users.models import User
from .service import SubscriptionService

router = APIRouter(tags=["subscriptions"])


def get_subscription_service(db: Session = Depends(get_db)) -> SubscriptionService:
    return SubscriptionService(db)


@router.post("/subscribe/pro")
def subscribe_pro(
    user: Annotated[User, Depends(get_current_user)],
    subscriptions: SubscriptionService = Depends(get_subscription_service)
):
    return {"url": subscriptions.create_checkout_session(user)}


@router.post("/webhook/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(..., alias="stripe-signature"),
    subscriptions: SubscriptionService = Depends(get_subscription_service)
):
    # Signature is computed over the raw body
    payload = await request.body()
    event = subscriptions.verify_event(payload, stripe_signature)
    subscriptions.handle_event(event)
    return {"received": True}


@router.get("/subscription/status")
def subscription_status(user: Annotated[User, Depends(get_current_user)]):
    return {"is_premium": user.is_premium}
