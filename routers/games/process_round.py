from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from core import notifications as core_notifications
from core.functions import get_function_invoker
from db import get_db
from routers.dependencies import Caller, require_service_or_admin

from .schemas import ProcessRoundResponse, RoundRequest
from .service import advance_round

router = APIRouter(prefix="/functions", tags=["Rounds"])


@router.post("/process-round", response_model=ProcessRoundResponse)
def process_round(
    request: RoundRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_service_or_admin),
    invoker=Depends(get_function_invoker),
):
    """
    Lock-time round advancement: cancels under-subscribed games, resolves expired
    rebuy windows and auto-assigns picks for players who did not pick.

    Returns 409 until the round's first fixture has kicked off.
    """
    response = advance_round(
        db,
        game_id=request.game_id,
        requested_round=request.round,
        invoker=invoker,
    )
    core_notifications.dispatch_committed_emails(db, background_tasks)
    return response
