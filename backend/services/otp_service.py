"""
OTP step of the signing flow.

PLACEHOLDER: no code is issued or checked against a backend. Any non-empty
code is accepted. SIGNING_OTP_MODE selects the verifier; any mode other than
"placeholder" fails closed.
"""
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

SIGNING_OTP_MODE = (os.getenv("SIGNING_OTP_MODE") or "placeholder").strip().lower()


class OtpVerifier:
    """Interface: verify(signature_token, code) -> bool."""

    name = "base"

    async def verify(self, signature_token: str, code: str, correlation_id: Optional[str] = None) -> bool:
        raise NotImplementedError


class PlaceholderOtpVerifier(OtpVerifier):
    """Accepts any non-empty code. NOT a security control."""

    name = "placeholder"

    async def verify(self, signature_token: str, code: str, correlation_id: Optional[str] = None) -> bool:
        code = (code or "").strip()
        if not code:
            return False
        logger.warning(
            f"[{correlation_id or ''}] otp_verify placeholder accepted code without verification "
            f"token={signature_token[:4]}..."
        )
        return True


class DisabledOtpVerifier(OtpVerifier):
    """Selected for unknown modes: rejects everything."""

    name = "disabled"

    async def verify(self, signature_token: str, code: str, correlation_id: Optional[str] = None) -> bool:
        logger.error(f"[{correlation_id or ''}] otp_verify misconfiguration SIGNING_OTP_MODE={SIGNING_OTP_MODE!r}")
        return False


def get_otp_verifier(mode: Optional[str] = None) -> OtpVerifier:
    mode = (mode or SIGNING_OTP_MODE).strip().lower()
    if mode == "placeholder":
        return PlaceholderOtpVerifier()
    return DisabledOtpVerifier()
