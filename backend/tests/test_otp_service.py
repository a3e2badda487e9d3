"""Signing OTP verifier selection. Only the placeholder mode exists; unknown modes fail closed."""
import pytest

from services.otp_service import get_otp_verifier, PlaceholderOtpVerifier, DisabledOtpVerifier


def test_placeholder_is_default_mode():
    assert isinstance(get_otp_verifier("placeholder"), PlaceholderOtpVerifier)
    assert isinstance(get_otp_verifier("sms"), DisabledOtpVerifier)


@pytest.mark.asyncio
async def test_placeholder_accepts_any_non_empty_code():
    verifier = PlaceholderOtpVerifier()
    assert await verifier.verify("a1b2c3d4e5f6", "000000") is True
    assert await verifier.verify("a1b2c3d4e5f6", " 42 ") is True
    assert await verifier.verify("a1b2c3d4e5f6", "") is False
    assert await verifier.verify("a1b2c3d4e5f6", "1234567890123") is True
    assert await verifier.verify("a1b2c3d4e5f6", "x" * 64) is True


@pytest.mark.asyncio
async def test_disabled_rejects_everything():
    assert await DisabledOtpVerifier().verify("a1b2c3d4e5f6", "123456") is False
