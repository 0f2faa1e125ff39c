from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from core import notifications as core_notifications
from db import get_db
from routers.dependencies import Caller, require_service_or_admin
from utils.stripe_client import get_payment_processor

from .schemas import PayoutRequest, PayoutResponse
from .service import process_payouts as service_process_payouts

router = APIRouter(prefix="/functions", tags=["Payouts"])


@router.post("/process-payouts", response_model=PayoutResponse)
def process_payouts(
    request: PayoutRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_service_or_admin),
    processor=Depends(get_payment_processor),
):
    """
    Split the prize pool of a completed game evenly across the alive winners and
    transfer each share to the winner's connected account.

    Returns 409 while the game is not completed. Winners already paid are skipped.
    """
    response = service_process_payouts(db, game_id=request.game_id, processor=processor)
    core_notifications.dispatch_committed_emails(db, background_tasks)
    return response
