"""Notifications facade for other domains."""

from typing import Iterable, Optional

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session


def notify_user(
    db: Session,
    *,
    user_id: int,
    type: str,
    title: str,
    body: str,
    data: Optional[dict] = None,
    dedupe_key: Optional[str] = None,
    email: bool = False,
):
    from routers.notifications import service as notifications_service

    return notifications_service.notify_user(
        db,
        user_id=user_id,
        type=type,
        title=title,
        body=body,
        data=data,
        dedupe_key=dedupe_key,
        email=email,
    )


def notify_users(
    db: Session,
    *,
    user_ids: Iterable[int],
    type: str,
    title: str,
    body: str,
    data: Optional[dict] = None,
    email: bool = False,
) -> int:
    from routers.notifications import service as notifications_service

    return notifications_service.notify_users(
        db,
        user_ids=user_ids,
        type=type,
        title=title,
        body=body,
        data=data,
        email=email,
    )


def dispatch_committed_emails(db: Session, background_tasks: BackgroundTasks) -> int:
    from routers.notifications import service as notifications_service

    return notifications_service.dispatch_committed_emails(db, background_tasks)
