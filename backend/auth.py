"""Bearer tokens identifying invoice owners."""
from jose import JWTError, ExpiredSignatureError, jwt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
import logging
import os

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "your-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRATION_HOURS = int(os.getenv("JWT_EXPIRATION_HOURS", "24"))


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign an owner token carrying `user_id` (and optionally `email`).

    Production tokens come from the identity provider; this is used by
    local tooling and tests that share JWT_SECRET with the API.
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(hours=JWT_EXPIRATION_HOURS)
    claims = {**data, "iat": issued_at, "exp": issued_at + lifetime}
    if "user_id" in claims and "sub" not in claims:
        claims["sub"] = str(claims["user_id"])
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict]:
    """Claims of a valid owner token, or None."""
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        logger.info("Rejected expired bearer token")
        return None
    except JWTError:
        return None
    # Signing-session tokens share the secret but never authenticate an owner
    if claims.get("type") == "signing_session":
        return None
    return claims
