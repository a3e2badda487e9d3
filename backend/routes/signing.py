"""Signing Routes - public, token-addressed signing flow.

GET  /api/public/sign/{token}              initial step + invoice view
POST /api/public/sign/{token}/otp          otp_verification -> attestation
POST /api/public/sign/{token}/attestation  attestation -> signature
POST /api/public/sign/{token}/signature    signature -> signed (single conditional write)
POST /api/public/sign/{token}/decline      -> declined
"""
from fastapi import APIRouter, HTTPException, Request, status
from middleware import client_ip, correlation_id
from models import (
    AttestationRequest,
    DeclineRequest,
    OtpSubmitRequest,
    SignatureSubmitRequest,
)
from services import signing_flow
from services.invoice_service import InvoiceNotFoundError
from services.invoice_view import build_public_view
from services.signing_flow import (
    AlreadyFinalizedError,
    SigningRateLimitedError,
    SigningSessionError,
    SigningStateError,
)
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/public/sign", tags=["signing"])

INVALID_LINK_DETAIL = "Invalid or expired signature link."

_FINALIZED_DETAIL = {
    "signed": "This invoice has already been signed.",
    "expired": "This signature link has expired.",
    "declined": "This invoice has been declined.",
}


def _translate(e: Exception) -> HTTPException:
    """Map signing-flow exceptions onto HTTP errors."""
    if isinstance(e, InvoiceNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=INVALID_LINK_DETAIL)
    if isinstance(e, AlreadyFinalizedError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=_FINALIZED_DETAIL.get(e.status.value, "This invoice can no longer be signed."),
        )
    if isinstance(e, SigningSessionError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    if isinstance(e, SigningRateLimitedError):
        return HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


_FLOW_ERRORS = (
    InvoiceNotFoundError,
    AlreadyFinalizedError,
    SigningSessionError,
    SigningRateLimitedError,
    SigningStateError,
)


@router.get("/{signature_token}")
async def open_signing_link(signature_token: str):
    try:
        result = await signing_flow.open_signing_link(signature_token)
    except _FLOW_ERRORS as e:
        raise _translate(e)
    return {"step": result["step"].value, **build_public_view(result["invoice"])}


@router.post("/{signature_token}/otp")
async def submit_otp(request: Request, signature_token: str, data: OtpSubmitRequest):
    try:
        result = await signing_flow.submit_otp(
            signature_token,
            data.code,
            ip_address=client_ip(request),
            correlation_id=correlation_id(request),
        )
    except _FLOW_ERRORS as e:
        raise _translate(e)
    return {"step": result["step"].value, "session_token": result["session_token"]}


@router.post("/{signature_token}/attestation")
async def confirm_attestation(request: Request, signature_token: str, data: AttestationRequest):
    try:
        result = await signing_flow.confirm_attestation(
            signature_token,
            data.session_token,
            data.confirmed,
            ip_address=client_ip(request),
            correlation_id=correlation_id(request),
        )
    except _FLOW_ERRORS as e:
        raise _translate(e)
    return {"step": result["step"].value, "session_token": result["session_token"]}


@router.post("/{signature_token}/signature")
async def submit_signature(request: Request, signature_token: str, data: SignatureSubmitRequest):
    try:
        result = await signing_flow.submit_signature(
            signature_token,
            data.session_token,
            data.signature_data_url,
            signer_name=data.signer_name,
            ip_address=client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            correlation_id=correlation_id(request),
        )
    except _FLOW_ERRORS as e:
        raise _translate(e)
    return {
        "step": result["step"].value,
        "message": "Invoice signed successfully",
        **build_public_view(result["invoice"]),
    }


@router.post("/{signature_token}/decline")
async def decline_invoice(request: Request, signature_token: str, data: DeclineRequest):
    try:
        result = await signing_flow.decline(
            signature_token,
            data.session_token,
            reason=data.reason,
            ip_address=client_ip(request),
            correlation_id=correlation_id(request),
        )
    except _FLOW_ERRORS as e:
        raise _translate(e)
    return {
        "step": result["step"].value,
        "message": "Invoice declined",
        **build_public_view(result["invoice"]),
    }
