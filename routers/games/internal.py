from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from core import notifications as core_notifications
from core.functions import get_function_invoker
from db import get_db
from routers.dependencies import verify_cron_token

from .schemas import RoundRemindersResponse, SweepResponse
from .service import run_sweep, send_round_reminders

router = APIRouter(
    prefix="/internal",
    tags=["Internal"],
    dependencies=[Depends(verify_cron_token)],
)


@router.post("/process-open-games", response_model=SweepResponse)
def process_open_games(
    db: Session = Depends(get_db),
    invoker=Depends(get_function_invoker),
):
    """
    Periodic sweep called by the external cron: drives every pending or active
    game through round advancement and then result processing.
    """
    return run_sweep(db, invoker=invoker)


@router.post("/send-round-reminders", response_model=RoundRemindersResponse)
def round_reminders(background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    """Remind alive players without a pick that their round locks within a day."""
    response = send_round_reminders(db)
    core_notifications.dispatch_committed_emails(db, background_tasks)
    return response
