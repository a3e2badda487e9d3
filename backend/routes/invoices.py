"""Invoice Routes - creation, the creator's invoice list, and smart fill.

Creation is open to anonymous callers; everything else requires a bearer token.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from middleware import AuthContext, get_auth_context, require_auth, correlation_id, client_ip
from models import InvoiceCreateRequest, SmartFillRequest
from services import invoice_service
from services.invoice_service import InvoiceNotFoundError
from services.invoice_view import build_owner_view
from services.smart_fill import smart_fill
from utils.audit import get_audit_logs_for_resource
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/invoices", tags=["invoices"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_invoice(
    request: Request,
    data: InvoiceCreateRequest,
    auth: AuthContext = Depends(get_auth_context),
):
    """Create an invoice and its signing link."""
    cid = correlation_id(request)
    try:
        invoice = await invoice_service.create_invoice(data.details, auth, correlation_id=cid)
        return build_owner_view(invoice)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"[{cid or ''}] Invoice creation error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create invoice"
        )


@router.get("")
async def list_invoices(auth: AuthContext = Depends(require_auth)):
    """The caller's invoices, newest first."""
    invoices = await invoice_service.list_user_invoices(auth)
    return {"invoices": [build_owner_view(inv) for inv in invoices], "total": len(invoices)}


@router.post("/smart-fill")
async def smart_fill_invoice(
    request: Request,
    data: SmartFillRequest,
    auth: AuthContext = Depends(require_auth),
):
    """Suggest field values from free-form text. Empty suggestions on any failure."""
    suggested = await smart_fill(data, actor_id=auth.user_id, correlation_id=correlation_id(request))
    return {"suggested": suggested}


@router.get("/{invoice_id}")
async def get_invoice(invoice_id: str, auth: AuthContext = Depends(require_auth)):
    try:
        invoice = await invoice_service.get_user_invoice(auth, invoice_id)
    except InvoiceNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found.")
    return build_owner_view(invoice)


@router.get("/{invoice_id}/history")
async def get_invoice_history(invoice_id: str, auth: AuthContext = Depends(require_auth)):
    """Audit trail for one of the caller's invoices."""
    try:
        invoice = await invoice_service.get_user_invoice(auth, invoice_id)
    except InvoiceNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found.")
    events = await get_audit_logs_for_resource("invoice", invoice.public_invoice_id)
    return {"invoice_id": invoice_id, "public_invoice_id": invoice.public_invoice_id, "events": events}


@router.delete("/{invoice_id}")
async def delete_invoice(request: Request, invoice_id: str, auth: AuthContext = Depends(require_auth)):
    """Remove an invoice from the caller's list. Shared links keep working."""
    try:
        await invoice_service.delete_user_invoice(auth, invoice_id, correlation_id=correlation_id(request))
    except InvoiceNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found.")
    logger.info(f"Invoice {invoice_id} removed from list of user {auth.user_id} ip={client_ip(request)}")
    return {"message": "Invoice deleted"}
