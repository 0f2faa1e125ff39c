from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from db import get_db
from routers.dependencies import get_current_user
from utils.stripe_client import get_payment_processor

from .schemas import ConnectAccountResponse
from .service import create_connect_account as service_create_connect_account

router = APIRouter(prefix="/functions", tags=["Payouts"])


@router.post("/create-connect-account", response_model=ConnectAccountResponse)
def create_connect_account(
    request: Request,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    processor=Depends(get_payment_processor),
):
    """
    Create the caller's Stripe Express account on first use and return a hosted
    onboarding link. Winners are paid out to this account.

    Redirect URLs are built from the `Origin` header, falling back to `APP_BASE_URL`.
    """
    return service_create_connect_account(
        db,
        current_user=current_user,
        origin=request.headers.get("origin"),
        processor=processor,
    )
