from functools import lru_cache

from fastapi import HTTPException
from descope.descope_client import DescopeClient
from config import DESCOPE_PROJECT_ID, DESCOPE_JWT_LEEWAY, DESCOPE_JWT_LEEWAY_FALLBACK
import logging

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def get_descope_client(leeway: int = DESCOPE_JWT_LEEWAY) -> DescopeClient:
    """Build (once per leeway) a Descope client for session validation."""
    if not DESCOPE_PROJECT_ID:
        logger.error("DESCOPE_PROJECT_ID is not configured")
        raise HTTPException(status_code=500, detail="Authentication is not configured")
    client = DescopeClient(project_id=DESCOPE_PROJECT_ID, jwt_validation_leeway=leeway)
    logger.info(f"Descope client initialized with JWT leeway: {leeway}s")
    return client


def _extract_user_info(session) -> dict:
    if not isinstance(session, dict):
        logger.error("Descope session validation failed: session is not a dictionary")
        raise HTTPException(status_code=401, detail="Invalid session format")

    user_id = session.get("userId") or session.get("sub")
    if not user_id:
        logger.error("Descope JWT validation failed: missing userId in session")
        raise HTTPException(status_code=401, detail="Invalid token: missing user ID")

    login_ids = session.get("loginIds") if isinstance(session.get("loginIds"), list) else []
    email = login_ids[0] if login_ids else session.get("email")
    if not email:
        # Placeholder keeps users.email non-null until the profile is synced
        email = f"user_{user_id}@descope.local"
        logger.warning(f"No email found for user {user_id}, using placeholder: {email}")

    return {
        "userId": user_id,
        "sub": session.get("sub"),
        "loginIds": login_ids or [email],
        "email": email,
        "name": session.get("name"),
        "displayName": session.get("displayName"),
    }


def validate_descope_jwt(token: str) -> dict:
    """
    Validate Descope session JWT and return user info.
    In case of time skew issues, retry with a higher leeway.

    Args:
        token (str): Descope session JWT token

    Returns:
        dict: User information from the validated session

    Raises:
        HTTPException: If token validation fails or user info is missing
    """
    try:
        session = get_descope_client(DESCOPE_JWT_LEEWAY).validate_session(token)
        return _extract_user_info(session)
    except HTTPException:
        raise
    except Exception as e:
        logger.warning(f"Descope JWT validation failed: {e}")

    try:
        logger.info(f"Retrying JWT validation with fallback leeway: {DESCOPE_JWT_LEEWAY_FALLBACK}s")
        session = get_descope_client(DESCOPE_JWT_LEEWAY_FALLBACK).validate_session(token)
        return _extract_user_info(session)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"High leeway validation also failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")
