import html
import logging
from typing import Optional

import httpx

import config

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


def _render_html(title: str, body: str, action_url: Optional[str]) -> str:
    parts = [
        f"<h2>{html.escape(title)}</h2>",
        f"<p>{html.escape(body)}</p>",
    ]
    if action_url:
        parts.append(f'<p><a href="{html.escape(action_url, quote=True)}">Open game</a></p>')
    return "\n".join(parts)


def game_url(game_id: str) -> str:
    return f"{config.APP_BASE_URL}/games/{game_id}"


def send_email(
    to_email: Optional[str],
    subject: str,
    body: str,
    action_url: Optional[str] = None,
) -> bool:
    """
    Send a transactional email via Resend.

    Delivery is best effort: a missing API key, a missing recipient or any HTTP
    failure is logged and reported as False, never raised.
    """
    if not config.RESEND_API_KEY:
        logger.debug("RESEND_API_KEY not configured, email not sent")
        return False

    if not to_email:
        return False

    payload = {
        "from": config.RESEND_FROM_EMAIL,
        "to": [to_email],
        "subject": subject,
        "html": _render_html(subject, body, action_url),
        "text": f"{body}\n\n{action_url}" if action_url else body,
    }
    headers = {
        "Authorization": f"Bearer {config.RESEND_API_KEY}",
        "Content-Type": "application/json",
    }

    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.post(RESEND_API_URL, json=payload, headers=headers)
            response.raise_for_status()
        logger.info(f"Email '{subject}' sent to {to_email}")
        return True
    except httpx.HTTPStatusError as e:
        logger.error(f"Resend API error: {e.response.status_code} - {e.response.text}")
        return False
    except httpx.HTTPError as e:
        logger.error(f"Error sending email via Resend: {str(e)}")
        return False
