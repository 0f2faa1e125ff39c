import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from core import notifications as core_notifications
from db import get_db
from utils.stripe_client import verify_webhook_signature

from .schemas import WebhookResponse
from .service import process_stripe_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions", tags=["Stripe Webhooks"])


@router.post("/stripe-webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
):
    """
    ## Stripe Webhook Endpoint

    ### Events Handled:
    - `checkout.session.completed`: payment succeeded, entry payers join the game
    - `checkout.session.expired`: pending payment cancelled
    - `payment_intent.payment_failed`: pending payment failed
    - `charge.refunded`: payment refunded, holders of the payment are kicked
    - `refund.failed`: refund marked failed so it can be retried

    Events are recorded by id; an event already processed is acknowledged without
    being applied twice.
    """
    if not stripe_signature:
        raise HTTPException(status_code=400, detail="Missing Stripe signature")

    # Signature is computed over the raw body
    payload = await request.body()
    try:
        event = verify_webhook_signature(payload, stripe_signature)
    except ValueError as e:
        logger.error(f"Rejected Stripe webhook: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    response = process_stripe_webhook(db, event=event)
    core_notifications.dispatch_committed_emails(db, background_tasks)
    return response
