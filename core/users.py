"""User lookup facade.

Domains should not query the `User` model directly. Instead, call these helpers and
pass around `account_id` where possible.
"""

from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session


def get_users_by_ids(db: Session, *, account_ids: Iterable[int]) -> Dict[int, object]:
    from models import User

    ids = list(set(account_ids))
    if not ids:
        return {}
    users = db.query(User).filter(User.account_id.in_(ids)).all()
    return {user.account_id: user for user in users}


def get_connect_account_ids(db: Session, *, account_ids: Iterable[int]) -> Dict[int, Optional[str]]:
    """Map account ids to their Stripe Connect payout destination (None when unlinked)."""
    users = get_users_by_ids(db, account_ids=account_ids)
    return {
        account_id: user.stripe_connect_account_id
        for account_id, user in users.items()
    }


def set_connect_account_id(db: Session, *, account_id: int, connect_account_id: str) -> int:
    """Link a payout destination to a user that has none yet; returns rows updated."""
    from models import User

    return (
        db.query(User)
        .filter(User.account_id == account_id, User.stripe_connect_account_id.is_(None))
        .update({User.stripe_connect_account_id: connect_account_id}, synchronize_session=False)
    )
