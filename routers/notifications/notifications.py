from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from db import get_db
from routers.dependencies import get_current_user

from .schemas import MarkReadRequest, MarkReadResponse, NotificationListResponse
from .service import get_notifications as service_get_notifications
from .service import mark_notifications_read as service_mark_notifications_read

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=NotificationListResponse)
def get_notifications(
    limit: int = Query(50, ge=1, le=100, description="Maximum number of notifications to return"),
    offset: int = Query(0, ge=0, description="Number of notifications to skip"),
    unread_only: bool = Query(False, description="If true, only return unread notifications"),
    type: Optional[str] = Query(None, description="Filter by notification type"),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """
    Get notifications for the current user, newest first.
    """
    return service_get_notifications(
        db,
        current_user=current_user,
        limit=limit,
        offset=offset,
        unread_only=unread_only,
        type=type,
    )


@router.post("/mark-read", response_model=MarkReadResponse)
def mark_read(
    request: MarkReadRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return service_mark_notifications_read(db, current_user=current_user, request=request)
