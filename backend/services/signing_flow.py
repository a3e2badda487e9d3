"""Signing Flow Controller.

States: otp_verification -> attestation -> signature -> signed.
A signer may also decline once past the OTP step, and a scheduled job expires
links nobody acted on. The initial state is derived from the stored record;
only the terminal transitions (signed/declined/expired) write to it, and each
write is conditional on the record still awaiting a signature so concurrent
submissions cannot both succeed.

Progress between steps is carried in a signing session token
(services/signing_session_token.py), not stored.
"""
import base64
import logging
import os
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from database import database
from models import (
    AuditAction,
    Invoice,
    LEGACY_STATUS_ALIASES,
    SignatureStatus,
    SigningStep,
    normalize_status,
)
from services.invoice_service import doc_to_invoice, get_by_signature_token
from services.otp_service import get_otp_verifier
from services.signing_session_token import (
    generate_signing_session_token,
    validate_signing_session_token,
)
from utils.audit import create_audit_log
from utils.rate_limiter import rate_limiter

logger = logging.getLogger(__name__)

OTP_MAX_ATTEMPTS = 5
OTP_WINDOW_MINUTES = 15
SIGNATURE_LINK_EXPIRY_DAYS = int(os.getenv("SIGNATURE_LINK_EXPIRY_DAYS", "30"))
SIGNATURE_IMAGE_PREFIX = "data:image/"

# Stored values that still mean "awaiting", including legacy spellings
AWAITING_STATUS_VALUES: List[str] = [SignatureStatus.AWAITING_SIGNATURE.value] + sorted(
    raw for raw, canonical in LEGACY_STATUS_ALIASES.items()
    if canonical == SignatureStatus.AWAITING_SIGNATURE
)

_STEP_ORDER = [SigningStep.OTP_VERIFICATION, SigningStep.ATTESTATION, SigningStep.SIGNATURE]

_TERMINAL_STEPS = {
    SignatureStatus.SIGNED: SigningStep.SIGNED,
    SignatureStatus.EXPIRED: SigningStep.EXPIRED,
    SignatureStatus.DECLINED: SigningStep.DECLINED,
}


class SigningStateError(Exception):
    """Input rejected at the current step; the flow does not advance."""


class SigningSessionError(Exception):
    """Missing, expired or out-of-order signing session token."""


class SigningRateLimitedError(Exception):
    pass


class AlreadyFinalizedError(Exception):
    """The record left awaiting_signature before this transition could apply."""

    def __init__(self, status: SignatureStatus):
        super().__init__(status.value)
        self.status = status


def initial_step(status: SignatureStatus) -> SigningStep:
    """Where a freshly opened signing link starts."""
    return _TERMINAL_STEPS.get(status, SigningStep.OTP_VERIFICATION)


def _require_session(session_token: str, signature_token: str, required: SigningStep) -> Dict[str, Any]:
    payload = validate_signing_session_token(session_token, signature_token)
    if payload is None:
        raise SigningSessionError("Signing session is invalid or has expired. Please start again.")
    reached = payload["step"]
    if reached not in _STEP_ORDER or _STEP_ORDER.index(reached) < _STEP_ORDER.index(required):
        raise SigningSessionError("Please complete the previous step first.")
    return payload


def _link_cutoff(now: datetime) -> datetime:
    return now - timedelta(days=SIGNATURE_LINK_EXPIRY_DAYS)


def _is_stale(invoice: Invoice, now: Optional[datetime] = None) -> bool:
    """Requested before the expiry window; the expiry job may not have marked it yet."""
    requested = invoice.signature_requested_at
    if requested.tzinfo is None:
        requested = requested.replace(tzinfo=timezone.utc)
    return requested < _link_cutoff(now or datetime.now(timezone.utc))


def _ensure_open(invoice: Invoice) -> None:
    if invoice.is_terminal:
        raise AlreadyFinalizedError(invoice.signature_status)
    if _is_stale(invoice):
        raise AlreadyFinalizedError(SignatureStatus.EXPIRED)


def _open_filter(signature_token: str, now: datetime) -> Dict[str, Any]:
    """Matches only a record that can still be signed or declined."""
    return {
        "signature_token": signature_token,
        "signature_status": {"$in": AWAITING_STATUS_VALUES},
        # Records without a request time are never expired by the job either
        "$or": [
            {"signature_requested_at": {"$gte": _link_cutoff(now)}},
            {"signature_requested_at": {"$exists": False}},
        ],
    }


def _check_signature_image(signature_data_url: str) -> None:
    """Require a base64 `data:image/...` URL carrying a decodable, non-empty image."""
    if not signature_data_url.startswith(SIGNATURE_IMAGE_PREFIX):
        raise SigningStateError("Signature must be an image.")
    header, _, payload = signature_data_url.partition(",")
    payload = payload.strip()
    if not header.endswith(";base64") or not payload:
        raise SigningStateError("Please provide your signature before submitting.")
    try:
        image = base64.b64decode(payload, validate=True)
    except ValueError:
        # binascii.Error subclasses ValueError
        raise SigningStateError("Signature image could not be read.")
    if not image:
        raise SigningStateError("Please provide your signature before submitting.")


async def _status_after_miss(signature_token: str) -> SignatureStatus:
    """Status to report when a conditional write matched nothing."""
    current = await _current_status(signature_token)
    if current == SignatureStatus.AWAITING_SIGNATURE:
        # Still awaiting, so the write missed on the expiry window
        return SignatureStatus.EXPIRED
    return current


async def _current_status(signature_token: str) -> SignatureStatus:
    db = database.get_db()
    doc = await db.invoices.find_one({"signature_token": signature_token}, {"_id": 0, "signature_status": 1})
    return normalize_status((doc or {}).get("signature_status"))


# ============================================================================
# STEPS
# ============================================================================

async def open_signing_link(signature_token: str) -> Dict[str, Any]:
    """Load the record behind a signing link and the step to show first."""
    invoice = await get_by_signature_token(signature_token)
    if not invoice.is_terminal and _is_stale(invoice):
        return {"invoice": invoice, "step": SigningStep.EXPIRED}
    return {"invoice": invoice, "step": initial_step(invoice.signature_status)}


async def submit_otp(
    signature_token: str,
    code: str,
    ip_address: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    invoice = await get_by_signature_token(signature_token)
    _ensure_open(invoice)

    code = (code or "").strip()
    if not code:
        raise SigningStateError("Please enter the verification code.")

    allowed, error_msg = await rate_limiter.check_rate_limit(
        f"sign_otp:{signature_token}", OTP_MAX_ATTEMPTS, OTP_WINDOW_MINUTES
    )
    if not allowed:
        await create_audit_log(
            action=AuditAction.SIGNING_OTP_RATE_LIMITED,
            resource_type="invoice",
            resource_id=invoice.public_invoice_id,
            ip_address=ip_address,
            correlation_id=correlation_id,
        )
        raise SigningRateLimitedError(error_msg)

    verifier = get_otp_verifier()
    if not await verifier.verify(signature_token, code, correlation_id):
        logger.info(f"[{correlation_id or ''}] sign_otp rejected public_id={invoice.public_invoice_id}")
        raise SigningStateError("Invalid verification code.")

    await create_audit_log(
        action=AuditAction.SIGNING_OTP_ACCEPTED,
        resource_type="invoice",
        resource_id=invoice.public_invoice_id,
        metadata={"verifier": verifier.name},
        ip_address=ip_address,
        correlation_id=correlation_id,
    )
    logger.info(f"[{correlation_id or ''}] sign_otp accepted public_id={invoice.public_invoice_id}")
    return {
        "step": SigningStep.ATTESTATION,
        "session_token": generate_signing_session_token(signature_token, SigningStep.ATTESTATION),
    }


async def confirm_attestation(
    signature_token: str,
    session_token: str,
    confirmed: bool,
    ip_address: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    invoice = await get_by_signature_token(signature_token)
    _ensure_open(invoice)
    _require_session(session_token, signature_token, SigningStep.ATTESTATION)

    if not confirmed:
        raise SigningStateError("Please confirm the attestation to continue.")

    await create_audit_log(
        action=AuditAction.SIGNING_ATTESTED,
        resource_type="invoice",
        resource_id=invoice.public_invoice_id,
        ip_address=ip_address,
        correlation_id=correlation_id,
    )
    return {
        "step": SigningStep.SIGNATURE,
        "session_token": generate_signing_session_token(signature_token, SigningStep.SIGNATURE),
    }


async def submit_signature(
    signature_token: str,
    session_token: str,
    signature_data_url: str,
    signer_name: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Final transition: one conditional write of the signature and signed status."""
    invoice = await get_by_signature_token(signature_token)
    _require_session(session_token, signature_token, SigningStep.SIGNATURE)

    signature_data_url = (signature_data_url or "").strip()
    if not signature_data_url:
        raise SigningStateError("Please provide your signature before submitting.")
    _check_signature_image(signature_data_url)

    now = datetime.now(timezone.utc)
    db = database.get_db()
    updated = await db.invoices.find_one_and_update(
        _open_filter(signature_token, now),
        {"$set": {
            "signature_status": SignatureStatus.SIGNED.value,
            "signed_at": now,
            "signature_data_url": signature_data_url,
            "signer_name": (signer_name or "").strip() or None,
            "signer_confirmed": True,
            "signer_ip": ip_address,
            "signer_user_agent": user_agent,
            "updated_at": now,
        }},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )

    if updated is None:
        current = await _status_after_miss(signature_token)
        await create_audit_log(
            action=AuditAction.INVOICE_SIGN_CONFLICT,
            resource_type="invoice",
            resource_id=invoice.public_invoice_id,
            metadata={"status": current.value},
            ip_address=ip_address,
            correlation_id=correlation_id,
        )
        logger.warning(
            f"[{correlation_id or ''}] sign conflict public_id={invoice.public_invoice_id} status={current.value}"
        )
        raise AlreadyFinalizedError(current)

    await create_audit_log(
        action=AuditAction.INVOICE_SIGNED,
        resource_type="invoice",
        resource_id=invoice.public_invoice_id,
        metadata={"signer_name": updated.get("signer_name")},
        ip_address=ip_address,
        correlation_id=correlation_id,
    )
    logger.info(f"[{correlation_id or ''}] invoice signed public_id={invoice.public_invoice_id}")
    return {"step": SigningStep.SIGNED, "invoice": doc_to_invoice(updated)}


async def decline(
    signature_token: str,
    session_token: str,
    reason: Optional[str] = None,
    ip_address: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    invoice = await get_by_signature_token(signature_token)
    _require_session(session_token, signature_token, SigningStep.ATTESTATION)

    now = datetime.now(timezone.utc)
    db = database.get_db()
    updated = await db.invoices.find_one_and_update(
        _open_filter(signature_token, now),
        {"$set": {
            "signature_status": SignatureStatus.DECLINED.value,
            "declined_at": now,
            "decline_reason": (reason or "").strip() or None,
            "updated_at": now,
        }},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise AlreadyFinalizedError(await _status_after_miss(signature_token))

    await create_audit_log(
        action=AuditAction.INVOICE_DECLINED,
        resource_type="invoice",
        resource_id=invoice.public_invoice_id,
        metadata={"has_reason": bool(updated.get("decline_reason"))},
        ip_address=ip_address,
        correlation_id=correlation_id,
    )
    logger.info(f"[{correlation_id or ''}] invoice declined public_id={invoice.public_invoice_id}")
    return {"step": SigningStep.DECLINED, "invoice": doc_to_invoice(updated)}


# ============================================================================
# EXPIRY
# ============================================================================

async def expire_stale_links(days: int = SIGNATURE_LINK_EXPIRY_DAYS, now: Optional[datetime] = None, db=None) -> int:
    """Mark awaiting invoices requested more than `days` ago as expired. Returns count."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=days)
    db = db if db is not None else database.get_db()
    result = await db.invoices.update_many(
        {
            "signature_status": {"$in": AWAITING_STATUS_VALUES},
            "signature_requested_at": {"$lt": cutoff},
        },
        {"$set": {
            "signature_status": SignatureStatus.EXPIRED.value,
            "expired_at": now,
            "updated_at": now,
        }},
    )
    count = result.modified_count
    if count:
        await create_audit_log(
            action=AuditAction.SIGNATURE_LINKS_EXPIRED,
            resource_type="invoice",
            metadata={"count": count, "cutoff": cutoff.isoformat(), "days": days},
        )
    logger.info(f"Signature link expiry: {count} invoice(s) expired (older than {days} days)")
    return count
