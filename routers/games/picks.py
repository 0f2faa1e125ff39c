from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from core import notifications as core_notifications
from db import get_db
from routers.dependencies import get_current_user

from .schemas import SubmitPickRequest, SubmitPickResponse
from .service import submit_pick as service_submit_pick

router = APIRouter(prefix="/functions", tags=["Picks"])


@router.post("/submit-pick", response_model=SubmitPickResponse)
def submit_pick(
    request: SubmitPickRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    response = service_submit_pick(db, current_user=current_user, request=request)
    core_notifications.dispatch_committed_emails(db, background_tasks)
    return response
