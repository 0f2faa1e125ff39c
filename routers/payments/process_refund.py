from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from core import notifications as core_notifications
from db import get_db
from routers.dependencies import Caller, get_caller
from utils.stripe_client import get_payment_processor

from .schemas import RefundRequest, RefundResponse
from .service import process_refund as service_process_refund

router = APIRouter(prefix="/functions", tags=["Refunds"])


@router.post("/process-refund", response_model=RefundResponse)
def process_refund(
    request: RefundRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    processor=Depends(get_payment_processor),
):
    """
    Refund a game's payments for one of three scenarios:

    - `game_cancelled`: cancels the game, kicks every player, refunds everyone
    - `kick_player`: kicks `user_id` and refunds their payments
    - `single_rebuyer`: refunds the lone rebuyer's rebuy payment

    Callable with the service credential, by an admin, or by the game's manager.
    One failed refund never stops the rest of the batch.
    """
    response = service_process_refund(db, caller=caller, request=request, processor=processor)
    core_notifications.dispatch_committed_emails(db, background_tasks)
    return response
