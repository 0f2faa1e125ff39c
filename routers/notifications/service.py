"""Notifications domain service layer.

In-app rows are written in the caller's transaction. Email mirrors are queued on the
session and only become deliverable once that transaction commits; a rollback drops
them. Routers hand committed emails to FastAPI background tasks, so no outbound HTTP
call runs while row locks are held.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from fastapi import BackgroundTasks
from sqlalchemy import event
from sqlalchemy.orm import Session

from core.users import get_users_by_ids
from utils.email_client import game_url, send_email
from utils.logging_helpers import log_info, log_warning

from . import repository as notifications_repository
from .schemas import (
    MarkReadRequest,
    MarkReadResponse,
    NotificationListResponse,
    NotificationResponse,
)

logger = logging.getLogger(__name__)


PENDING_EMAILS = "pending_emails"
COMMITTED_EMAILS = "committed_emails"


@event.listens_for(Session, "after_commit")
def _release_pending_emails(session):
    pending = session.info.pop(PENDING_EMAILS, None)
    if pending:
        session.info.setdefault(COMMITTED_EMAILS, []).extend(pending)


@event.listens_for(Session, "after_rollback")
def _drop_pending_emails(session):
    dropped = session.info.pop(PENDING_EMAILS, None)
    if dropped:
        log_warning(logger, "Queued emails dropped on rollback", count=len(dropped))


def _queue_emails(db, *, user_ids, title: str, body: str, data: Optional[dict]):
    action_url = game_url(data["game_id"]) if data and data.get("game_id") else None
    users = get_users_by_ids(db, account_ids=user_ids)
    pending = db.info.setdefault(PENDING_EMAILS, [])
    for user_id in user_ids:
        user = users.get(user_id)
        if not user or user.notification_on is False or not user.email:
            continue
        pending.append(
            {
                "user_id": user_id,
                "to_email": user.email,
                "subject": title,
                "body": body,
                "action_url": action_url,
            }
        )


def take_committed_emails(db) -> List[dict]:
    return db.info.pop(COMMITTED_EMAILS, [])


def deliver_emails(emails: List[dict]) -> int:
    """Send queued emails one by one; a failed send is logged and skipped."""
    sent = 0
    for email in emails:
        try:
            if send_email(email["to_email"], email["subject"], email["body"], email["action_url"]):
                sent += 1
        except Exception as exc:
            log_warning(logger, "Email delivery raised", user_id=email["user_id"], error=str(exc))
    return sent


def dispatch_committed_emails(db, background_tasks: BackgroundTasks) -> int:
    """Schedule delivery of every email whose transaction has committed."""
    emails = take_committed_emails(db)
    if emails:
        background_tasks.add_task(deliver_emails, emails)
    return len(emails)


def notify_user(
    db,
    *,
    user_id: int,
    type: str,
    title: str,
    body: str,
    data: Optional[dict] = None,
    dedupe_key: Optional[str] = None,
    email: bool = False,
):
    """Queue one in-app notification; returns None when ``dedupe_key`` was already used."""
    if dedupe_key and notifications_repository.dedupe_key_exists(db, dedupe_key=dedupe_key):
        return None

    notification = notifications_repository.add_notification(
        db,
        user_id=user_id,
        type=type,
        title=title,
        body=body,
        data=data,
        dedupe_key=dedupe_key,
    )
    db.flush()
    log_info(logger, "Notification queued", user_id=user_id, type=type)

    if email:
        _queue_emails(db, user_ids=[user_id], title=title, body=body, data=data)
    return notification


def notify_users(
    db,
    *,
    user_ids: Iterable[int],
    type: str,
    title: str,
    body: str,
    data: Optional[dict] = None,
    email: bool = False,
) -> int:
    recipients = list(dict.fromkeys(user_ids))
    if not recipients:
        return 0

    for user_id in recipients:
        notifications_repository.add_notification(
            db,
            user_id=user_id,
            type=type,
            title=title,
            body=body,
            data=data,
            dedupe_key=None,
        )
    db.flush()
    log_info(logger, "Notifications queued", type=type, recipients=len(recipients))

    if email:
        _queue_emails(db, user_ids=recipients, title=title, body=body, data=data)
    return len(recipients)


def get_notifications(
    db,
    *,
    current_user,
    limit: int,
    offset: int,
    unread_only: bool,
    type: Optional[str] = None,
) -> NotificationListResponse:
    total, unread_count = notifications_repository.get_notification_counts(
        db, user_id=current_user.account_id
    )
    if unread_only:
        total = unread_count

    notifications = notifications_repository.list_notifications(
        db,
        user_id=current_user.account_id,
        limit=limit,
        offset=offset,
        unread_only=unread_only,
        type=type,
    )

    return NotificationListResponse(
        notifications=[
            NotificationResponse(
                id=n.id,
                title=n.title,
                body=n.body,
                type=n.type,
                data=n.data,
                read=n.read,
                read_at=n.read_at.isoformat() if n.read_at else None,
                created_at=n.created_at.isoformat(),
            )
            for n in notifications
        ],
        total=total,
        unread_count=unread_count,
    )


def mark_notifications_read(db, *, current_user, request: MarkReadRequest) -> MarkReadResponse:
    now = datetime.utcnow()
    if request.notification_ids:
        updated_count = notifications_repository.mark_notifications_read(
            db,
            user_id=current_user.account_id,
            notification_ids=request.notification_ids,
            now=now,
        )
    else:
        updated_count = notifications_repository.mark_all_notifications_read(
            db, user_id=current_user.account_id, now=now
        )
    db.commit()

    return MarkReadResponse(
        message=f"Marked {updated_count} notification(s) as read",
        marked_count=updated_count,
    )
