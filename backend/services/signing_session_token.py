"""
Signing Session Token Service
Short-lived signed tokens carrying a signer's progress through the signing flow.

The token binds one signature_token to the step the signer has reached; it is
rejected for any other signature link.
"""

import os
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any
import logging

from jose import ExpiredSignatureError, JWTError, jwt

from models import SigningStep

logger = logging.getLogger(__name__)

JWT_SECRET = os.environ.get("JWT_SECRET", "your-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
TOKEN_TYPE = "signing_session"

SIGNING_SESSION_TTL_MINUTES = int(os.environ.get("SIGNING_SESSION_TTL_MINUTES", "30"))


def generate_signing_session_token(
    signature_token: str,
    step: SigningStep,
    validity_minutes: int = SIGNING_SESSION_TTL_MINUTES,
) -> str:
    """
    Issue a session token recording that the signer reached `step`.

    Args:
        signature_token: The invoice's signature token (from the /sign link)
        step: Step the signer may act on next
        validity_minutes: How long the token is valid

    Returns:
        JWT token string
    """
    now = datetime.now(timezone.utc)
    payload = {
        "type": TOKEN_TYPE,
        "sig": signature_token,
        "step": step.value,
        "iat": now,
        "exp": now + timedelta(minutes=validity_minutes),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def validate_signing_session_token(token: str, signature_token: str) -> Optional[Dict[str, Any]]:
    """
    Validate a session token for one signature link.

    Returns:
        Decoded payload (with `step` as SigningStep) if valid, None if invalid/expired/mismatched
    """
    if not token:
        return None
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        logger.debug("Signing session token expired")
        return None
    except JWTError as e:
        logger.warning(f"Invalid signing session token: {e}")
        return None

    if payload.get("type") != TOKEN_TYPE:
        logger.warning("Invalid token type")
        return None
    if payload.get("sig") != signature_token:
        logger.warning("Signing session token used against a different signature link")
        return None
    try:
        payload["step"] = SigningStep(payload.get("step"))
    except ValueError:
        logger.warning(f"Signing session token with unknown step: {payload.get('step')}")
        return None
    return payload
