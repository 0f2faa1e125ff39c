import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

import config
from auth import validate_descope_jwt
from db import get_db
from models import User

logger = logging.getLogger(__name__)

CALLER_SERVICE = "service"
CALLER_ADMIN = "admin"
CALLER_USER = "user"


@dataclass
class Caller:
    kind: str
    user: Optional[User] = None

    @property
    def account_id(self) -> Optional[int]:
        return self.user.account_id if self.user else None


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization") or request.headers.get("Authorization")
    if not auth_header or not auth_header.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization token missing.")
    token = auth_header.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization token missing.")
    return token


def _is_service_token(token: str) -> bool:
    service_key = config.SERVICE_ROLE_KEY
    return bool(service_key) and secrets.compare_digest(token, service_key)


def _user_from_token(token: str, db: Session) -> User:
    user_info = validate_descope_jwt(token)
    user = db.query(User).filter(User.descope_user_id == user_info["userId"]).first()
    if user:
        return user

    email = user_info["email"]
    existing_user = db.query(User).filter(User.email == email).first()
    if existing_user:
        existing_user.descope_user_id = user_info["userId"]
        db.commit()
        db.refresh(existing_user)
        return existing_user

    user = User(
        descope_user_id=user_info["userId"],
        email=email,
        username=user_info.get("name") or user_info.get("displayName") or email,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created user {user.account_id} for Descope user {user_info['userId']}")
    return user


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """
    Extracts and validates the Descope JWT from the Authorization header and
    returns the matching user row, creating it on first sight.
    """
    token = _bearer_token(request)
    return _user_from_token(token, db)


def get_caller(request: Request, db: Session = Depends(get_db)) -> Caller:
    """Resolve the bearer token to the service credential, an admin, or a player."""
    token = _bearer_token(request)
    if _is_service_token(token):
        return Caller(kind=CALLER_SERVICE)

    user = _user_from_token(token, db)
    if user.is_admin:
        return Caller(kind=CALLER_ADMIN, user=user)
    return Caller(kind=CALLER_USER, user=user)


def require_service_or_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if caller.kind == CALLER_USER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required for this endpoint",
        )
    return caller


def verify_cron_token(request: Request) -> None:
    """Guard for endpoints driven by the external cron invoker."""
    expected = config.CRON_TOKEN
    if not expected:
        logger.error("CRON_TOKEN is not configured; refusing cron request")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Cron token is not configured")

    token = _bearer_token(request)
    if not secrets.compare_digest(token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
