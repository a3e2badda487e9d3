from fastapi import Request, HTTPException, status
from dataclasses import dataclass
from typing import Optional
import logging
from auth import decode_access_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    """Caller identity, injected into routes instead of read from globals."""
    user_id: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


ANONYMOUS = AuthContext()


async def get_current_user(request: Request) -> Optional[dict]:
    """Extract and validate current user from JWT token."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None

    token = auth_header.split(" ")[1]
    payload = decode_access_token(token)

    if not payload:
        return None

    return payload


async def get_auth_context(request: Request) -> AuthContext:
    """Optional auth: anonymous callers get ANONYMOUS."""
    user = await get_current_user(request)
    if not user:
        return ANONYMOUS
    user_id = user.get("user_id") or user.get("sub")
    if not user_id:
        logger.warning("Bearer token without user_id/sub claim")
        return ANONYMOUS
    return AuthContext(user_id=str(user_id), email=user.get("email"))


async def require_auth(request: Request) -> AuthContext:
    """Require valid authentication."""
    ctx = await get_auth_context(request)
    if not ctx.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return ctx


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def correlation_id(request: Request) -> Optional[str]:
    return (request.headers.get("X-Correlation-ID") or "").strip() or None
