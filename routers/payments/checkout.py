from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from db import get_db
from routers.dependencies import get_current_user
from utils.stripe_client import get_payment_processor

from .schemas import CheckoutRequest, CheckoutResponse
from .service import create_checkout as service_create_checkout
from .service import create_rebuy_checkout as service_create_rebuy_checkout

router = APIRouter(prefix="/functions", tags=["Checkout"])


@router.post("/create-checkout", response_model=CheckoutResponse)
def create_checkout(
    request: CheckoutRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    processor=Depends(get_payment_processor),
):
    """
    Start a Stripe Checkout Session for a paid game's entry fee plus processing fee.

    The player joins the game once the `checkout.session.completed` webhook arrives.
    """
    return service_create_checkout(
        db,
        current_user=current_user,
        game_id=request.game_id,
        processor=processor,
    )


@router.post("/create-rebuy-checkout", response_model=CheckoutResponse)
def create_rebuy_checkout(
    request: CheckoutRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    processor=Depends(get_payment_processor),
):
    """Start a rebuy checkout while the game's rebuy window is open."""
    return service_create_rebuy_checkout(
        db,
        current_user=current_user,
        game_id=request.game_id,
        processor=processor,
    )
