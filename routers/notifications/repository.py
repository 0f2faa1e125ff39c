"""Notifications domain repository layer."""

from sqlalchemy.orm import Session


def add_notification(
    db: Session,
    *,
    user_id: int,
    type: str,
    title: str,
    body: str,
    data,
    dedupe_key,
):
    from models import Notification

    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        body=body,
        data=data,
        dedupe_key=dedupe_key,
    )
    db.add(notification)
    return notification


def dedupe_key_exists(db: Session, *, dedupe_key: str) -> bool:
    from models import Notification

    return (
        db.query(Notification.id).filter(Notification.dedupe_key == dedupe_key).first()
        is not None
    )


def get_notification_counts(db: Session, *, user_id: int):
    from sqlalchemy import case, func

    from models import Notification

    total, unread = (
        db.query(
            func.count(Notification.id),
            func.sum(case((Notification.read == False, 1), else_=0)),
        )
        .filter(Notification.user_id == user_id)
        .first()
    )
    return total or 0, unread or 0


def list_notifications(
    db: Session,
    *,
    user_id: int,
    limit: int,
    offset: int,
    unread_only: bool,
    type=None,
):
    from sqlalchemy import desc

    from models import Notification

    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read == False)
    if type:
        query = query.filter(Notification.type == type)

    return (
        query.order_by(desc(Notification.created_at), desc(Notification.id))
        .offset(offset)
        .limit(limit)
        .all()
    )


def mark_notifications_read(db: Session, *, user_id: int, notification_ids, now):
    from models import Notification

    return (
        db.query(Notification)
        .filter(
            Notification.id.in_(notification_ids),
            Notification.user_id == user_id,
            Notification.read == False,
        )
        .update({Notification.read: True, Notification.read_at: now}, synchronize_session=False)
    )


def mark_all_notifications_read(db: Session, *, user_id: int, now):
    from models import Notification

    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read == False)
        .update({Notification.read: True, Notification.read_at: now}, synchronize_session=False)
    )
