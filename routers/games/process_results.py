from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from core import notifications as core_notifications
from core.functions import get_function_invoker
from db import get_db
from routers.dependencies import Caller, require_service_or_admin

from .schemas import ProcessResultsResponse, RoundRequest
from .service import process_results as service_process_results

router = APIRouter(prefix="/functions", tags=["Rounds"])


@router.post("/process-results", response_model=ProcessResultsResponse)
def process_results(
    request: RoundRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_service_or_admin),
    invoker=Depends(get_function_invoker),
):
    """
    Settle a round: apply fixture outcomes to picks, eliminate losing and drawing
    players, and move the game to its next round or to completion.

    Returns 409 while any fixture of the round is unresolved.
    """
    response = service_process_results(
        db,
        game_id=request.game_id,
        requested_round=request.round,
        invoker=invoker,
    )
    core_notifications.dispatch_committed_emails(db, background_tasks)
    return response
