"""
Signing flow state machine.
- terminal records short-circuit to their terminal step; others start at otp_verification
- empty OTP never advances; any non-empty OTP advances to attestation (placeholder verifier)
- unchecked attestation never advances to signature
- empty signature never writes and never reaches signed
- the sign write is a single conditional update; a miss is AlreadyFinalizedError
"""
import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

from models import SignatureStatus, SigningStep
from services.signing_session_token import generate_signing_session_token

TOKEN = "a1b2c3d4e5f6"
SIGNATURE_PNG = "data:image/png;base64,iVBORw0KGgo="


def _db_with(doc):
    db = MagicMock()
    db.invoices.find_one = AsyncMock(return_value=doc)
    db.invoices.find_one_and_update = AsyncMock()
    db.invoices.update_many = AsyncMock()
    return db


def _patches(db):
    """Patch DB access in every module the flow touches, plus the audit writer."""
    return (
        patch("services.signing_flow.database.get_db", return_value=db),
        patch("services.invoice_service.database.get_db", return_value=db),
        patch("services.signing_flow.create_audit_log", new_callable=AsyncMock),
    )


@pytest.mark.parametrize("status,step", [
    (SignatureStatus.AWAITING_SIGNATURE, SigningStep.OTP_VERIFICATION),
    (SignatureStatus.SIGNED, SigningStep.SIGNED),
    (SignatureStatus.EXPIRED, SigningStep.EXPIRED),
    (SignatureStatus.DECLINED, SigningStep.DECLINED),
])
def test_initial_step(status, step):
    from services.signing_flow import initial_step

    assert initial_step(status) == step


@pytest.mark.asyncio
@pytest.mark.parametrize("stored,step", [
    ("signed", SigningStep.SIGNED),
    ("signed_by_landlord", SigningStep.SIGNED),
    ("pending", SigningStep.OTP_VERIFICATION),
    ("awaiting_landlord_signature", SigningStep.OTP_VERIFICATION),
])
async def test_open_signing_link_uses_stored_status(make_invoice_doc, stored, step):
    from services.signing_flow import open_signing_link

    db = _db_with(make_invoice_doc(signature_status=stored))
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        result = await open_signing_link(TOKEN)
    assert result["step"] == step


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["", "   ", None])
async def test_empty_otp_never_advances(make_invoice_doc, code):
    from services.signing_flow import submit_otp, SigningStateError

    db = _db_with(make_invoice_doc())
    p1, p2, p3 = _patches(db)
    with p1, p2, p3 as audit:
        with pytest.raises(SigningStateError):
            await submit_otp(TOKEN, code)
    audit.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["1", "123456", "abcdef", "1234567890123", "x" * 64])
async def test_non_empty_otp_advances_to_attestation(make_invoice_doc, code):
    from services.signing_flow import submit_otp
    from services.signing_session_token import validate_signing_session_token

    db = _db_with(make_invoice_doc())
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        result = await submit_otp(TOKEN, code, correlation_id="cid-1")
    assert result["step"] == SigningStep.ATTESTATION
    payload = validate_signing_session_token(result["session_token"], TOKEN)
    assert payload["step"] == SigningStep.ATTESTATION
    db.invoices.find_one_and_update.assert_not_called()


@pytest.mark.asyncio
async def test_otp_on_signed_invoice_is_rejected(make_invoice_doc):
    from services.signing_flow import submit_otp, AlreadyFinalizedError

    db = _db_with(make_invoice_doc(signature_status="signed"))
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        with pytest.raises(AlreadyFinalizedError):
            await submit_otp(TOKEN, "123456")


@pytest.mark.asyncio
async def test_otp_rate_limited_after_max_attempts(make_invoice_doc):
    from services.signing_flow import submit_otp, SigningRateLimitedError, OTP_MAX_ATTEMPTS

    db = _db_with(make_invoice_doc())
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        for _ in range(OTP_MAX_ATTEMPTS):
            await submit_otp(TOKEN, "123456")
        with pytest.raises(SigningRateLimitedError):
            await submit_otp(TOKEN, "123456")


@pytest.mark.asyncio
async def test_otp_fails_closed_for_unknown_mode(make_invoice_doc):
    from services.signing_flow import submit_otp, SigningStateError
    from services.otp_service import get_otp_verifier

    db = _db_with(make_invoice_doc())
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        with patch("services.signing_flow.get_otp_verifier", return_value=get_otp_verifier("sms")):
            with pytest.raises(SigningStateError):
                await submit_otp(TOKEN, "123456")


@pytest.mark.asyncio
async def test_unchecked_attestation_never_advances(make_invoice_doc):
    from services.signing_flow import confirm_attestation, SigningStateError

    session = generate_signing_session_token(TOKEN, SigningStep.ATTESTATION)
    db = _db_with(make_invoice_doc())
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        with pytest.raises(SigningStateError):
            await confirm_attestation(TOKEN, session, confirmed=False)


@pytest.mark.asyncio
async def test_checked_attestation_advances_to_signature(make_invoice_doc):
    from services.signing_flow import confirm_attestation

    session = generate_signing_session_token(TOKEN, SigningStep.ATTESTATION)
    db = _db_with(make_invoice_doc())
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        result = await confirm_attestation(TOKEN, session, confirmed=True)
    assert result["step"] == SigningStep.SIGNATURE


@pytest.mark.asyncio
async def test_attestation_without_otp_session_rejected(make_invoice_doc):
    from services.signing_flow import confirm_attestation, SigningSessionError

    db = _db_with(make_invoice_doc())
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        with pytest.raises(SigningSessionError):
            await confirm_attestation(TOKEN, "", confirmed=True)


@pytest.mark.asyncio
async def test_signature_needs_signature_step_session(make_invoice_doc):
    from services.signing_flow import submit_signature, SigningSessionError

    early = generate_signing_session_token(TOKEN, SigningStep.ATTESTATION)
    db = _db_with(make_invoice_doc())
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        with pytest.raises(SigningSessionError):
            await submit_signature(TOKEN, early, SIGNATURE_PNG)
    db.invoices.find_one_and_update.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("image", [
    "",
    "   ",
    None,
    "not-an-image",
    "data:image/",
    "data:image/png;base64,",
    "data:image/png;base64,   ",
    "data:image/png,iVBORw0KGgo=",
    "data:image/png;base64,!!not base64!!",
])
async def test_empty_signature_never_writes(make_invoice_doc, image):
    from services.signing_flow import submit_signature, SigningStateError

    session = generate_signing_session_token(TOKEN, SigningStep.SIGNATURE)
    db = _db_with(make_invoice_doc())
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        with pytest.raises(SigningStateError):
            await submit_signature(TOKEN, session, image)
    db.invoices.find_one_and_update.assert_not_called()


@pytest.mark.asyncio
async def test_signature_is_single_conditional_write(make_invoice_doc):
    from services.signing_flow import submit_signature, AWAITING_STATUS_VALUES, SIGNATURE_LINK_EXPIRY_DAYS

    session = generate_signing_session_token(TOKEN, SigningStep.SIGNATURE)
    signed_doc = make_invoice_doc(
        signature_status="signed",
        signed_at=datetime.now(timezone.utc),
        signature_data_url=SIGNATURE_PNG,
        signer_confirmed=True,
    )
    db = _db_with(make_invoice_doc())
    db.invoices.find_one_and_update = AsyncMock(return_value=signed_doc)
    p1, p2, p3 = _patches(db)
    with p1, p2, p3 as audit:
        result = await submit_signature(
            TOKEN, session, SIGNATURE_PNG, signer_name="Vikram", ip_address="10.0.0.1", user_agent="pytest"
        )

    assert result["step"] == SigningStep.SIGNED
    assert result["invoice"].signature_status == SignatureStatus.SIGNED
    db.invoices.find_one_and_update.assert_called_once()
    query, update = db.invoices.find_one_and_update.call_args[0][:2]
    assert query["signature_token"] == TOKEN
    assert query["signature_status"] == {"$in": AWAITING_STATUS_VALUES}
    in_window, missing = query["$or"]
    assert missing == {"signature_requested_at": {"$exists": False}}
    cutoff = in_window["signature_requested_at"]["$gte"]
    assert cutoff < datetime.now(timezone.utc) - timedelta(days=SIGNATURE_LINK_EXPIRY_DAYS - 1)
    assert "pending" in AWAITING_STATUS_VALUES
    assert update["$set"]["signature_status"] == "signed"
    assert update["$set"]["signature_data_url"] == SIGNATURE_PNG
    assert update["$set"]["signer_confirmed"] is True
    assert update["$set"]["signer_ip"] == "10.0.0.1"
    assert isinstance(update["$set"]["signed_at"], datetime)
    # Signature images never reach the audit trail
    for call in audit.call_args_list:
        assert SIGNATURE_PNG not in str(call)


@pytest.mark.asyncio
async def test_second_signature_conflicts(make_invoice_doc):
    from services.signing_flow import submit_signature, AlreadyFinalizedError

    session = generate_signing_session_token(TOKEN, SigningStep.SIGNATURE)
    db = _db_with(make_invoice_doc())
    db.invoices.find_one_and_update = AsyncMock(return_value=None)
    # First read (load) sees awaiting; re-read after the miss sees signed
    db.invoices.find_one = AsyncMock(side_effect=[
        make_invoice_doc(),
        {"signature_status": "signed"},
    ])
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        with pytest.raises(AlreadyFinalizedError) as exc_info:
            await submit_signature(TOKEN, session, SIGNATURE_PNG)
    assert exc_info.value.status == SignatureStatus.SIGNED


@pytest.mark.asyncio
async def test_decline_is_conditional(make_invoice_doc):
    from services.signing_flow import decline

    session = generate_signing_session_token(TOKEN, SigningStep.ATTESTATION)
    declined_doc = make_invoice_doc(signature_status="declined", decline_reason="Wrong amount")
    db = _db_with(make_invoice_doc())
    db.invoices.find_one_and_update = AsyncMock(return_value=declined_doc)
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        result = await decline(TOKEN, session, reason="  Wrong amount ")

    assert result["step"] == SigningStep.DECLINED
    update = db.invoices.find_one_and_update.call_args[0][1]["$set"]
    assert update["signature_status"] == "declined"
    assert update["decline_reason"] == "Wrong amount"


@pytest.mark.asyncio
async def test_unknown_token_raises_not_found():
    from services.signing_flow import open_signing_link
    from services.invoice_service import InvoiceNotFoundError

    db = _db_with(None)
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        with pytest.raises(InvoiceNotFoundError):
            await open_signing_link("doesnotexist")


@pytest.mark.asyncio
async def test_expire_stale_links_filters_on_age_and_status():
    from services.signing_flow import expire_stale_links, AWAITING_STATUS_VALUES

    now = datetime(2026, 10, 19, tzinfo=timezone.utc)
    db = _db_with(None)
    db.invoices.update_many = AsyncMock(return_value=MagicMock(modified_count=3))
    with patch("services.signing_flow.create_audit_log", new_callable=AsyncMock) as audit:
        count = await expire_stale_links(30, now=now, db=db)

    assert count == 3
    query, update = db.invoices.update_many.call_args[0]
    assert query["signature_status"] == {"$in": AWAITING_STATUS_VALUES}
    assert query["signature_requested_at"] == {"$lt": now - timedelta(days=30)}
    assert update["$set"]["signature_status"] == "expired"
    audit.assert_called_once()


@pytest.mark.asyncio
async def test_expire_stale_links_no_audit_when_nothing_expired():
    from services.signing_flow import expire_stale_links

    db = _db_with(None)
    db.invoices.update_many = AsyncMock(return_value=MagicMock(modified_count=0))
    with patch("services.signing_flow.create_audit_log", new_callable=AsyncMock) as audit:
        assert await expire_stale_links(30, db=db) == 0
    audit.assert_not_called()


# ============================================================================
# LINKS PAST THE EXPIRY WINDOW (before the expiry job has run)
# ============================================================================

def _stale_doc(make_invoice_doc):
    from services.signing_flow import SIGNATURE_LINK_EXPIRY_DAYS

    requested = datetime.now(timezone.utc) - timedelta(days=SIGNATURE_LINK_EXPIRY_DAYS + 1)
    return make_invoice_doc(signature_requested_at=requested)


@pytest.mark.asyncio
async def test_stale_link_opens_as_expired(make_invoice_doc):
    from services.signing_flow import open_signing_link

    db = _db_with(_stale_doc(make_invoice_doc))
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        result = await open_signing_link(TOKEN)
    assert result["step"] == SigningStep.EXPIRED


@pytest.mark.asyncio
async def test_stale_link_rejects_otp(make_invoice_doc):
    from services.signing_flow import submit_otp, AlreadyFinalizedError

    db = _db_with(_stale_doc(make_invoice_doc))
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        with pytest.raises(AlreadyFinalizedError) as exc_info:
            await submit_otp(TOKEN, "123456")
    assert exc_info.value.status == SignatureStatus.EXPIRED


@pytest.mark.asyncio
async def test_stale_link_signature_miss_reports_expired(make_invoice_doc):
    from services.signing_flow import submit_signature, AlreadyFinalizedError

    session = generate_signing_session_token(TOKEN, SigningStep.SIGNATURE)
    db = _db_with(_stale_doc(make_invoice_doc))
    # Cutoff in the write filter excludes the record; it is still stored as awaiting
    db.invoices.find_one_and_update = AsyncMock(return_value=None)
    db.invoices.find_one = AsyncMock(side_effect=[
        _stale_doc(make_invoice_doc),
        {"signature_status": "awaiting_signature"},
    ])
    p1, p2, p3 = _patches(db)
    with p1, p2, p3:
        with pytest.raises(AlreadyFinalizedError) as exc_info:
            await submit_signature(TOKEN, session, SIGNATURE_PNG)
    assert exc_info.value.status == SignatureStatus.EXPIRED
    db.invoices.find_one_and_update.assert_called_once()
