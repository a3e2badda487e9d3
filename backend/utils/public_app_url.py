"""
Canonical public frontend base URL for shareable invoice links.
Use build_preview_url() / build_sign_url(); no other code should build frontend links directly.
"""
import os
import logging

logger = logging.getLogger(__name__)


def get_public_app_url() -> str:
    """
    Return normalized public frontend base URL (no trailing slash).
    Fallback order: FRONTEND_PUBLIC_URL, PUBLIC_APP_URL, FRONTEND_URL, then http://localhost:3000.
    Non-localhost http:// URLs are upgraded to https://.
    """
    raw = (
        (os.getenv("FRONTEND_PUBLIC_URL") or "").strip()
        or (os.getenv("PUBLIC_APP_URL") or "").strip()
        or (os.getenv("FRONTEND_URL") or "").strip()
    )
    raw = raw.rstrip("/")
    if not raw:
        env = (os.getenv("ENVIRONMENT") or "").strip().lower()
        if env in ("production", "prod"):
            logger.warning("FRONTEND_PUBLIC_URL not set in production; shared links will point at localhost")
        return "http://localhost:3000"
    if raw.startswith("http://") and "localhost" not in raw:
        raw = "https://" + raw.split("://", 1)[1]
    return raw


def build_preview_url(public_invoice_id: str) -> str:
    """Read-only invoice view: /preview/{publicId}."""
    return f"{get_public_app_url()}/preview/{public_invoice_id}"


def build_sign_url(signature_token: str) -> str:
    """Signing flow entry: /sign/{signatureToken}."""
    return f"{get_public_app_url()}/sign/{signature_token}"
