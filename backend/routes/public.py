"""Public invoice preview - no authentication; the public id is the capability."""
from fastapi import APIRouter, HTTPException, Request, status
from middleware import client_ip, correlation_id
from models import AuditAction
from services import invoice_service
from services.invoice_service import InvoiceNotFoundError
from services.invoice_view import build_public_view
from utils.audit import create_audit_log
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/public", tags=["public"])


@router.get("/invoices/{public_invoice_id}")
async def get_public_invoice(request: Request, public_invoice_id: str):
    """Read-only invoice view for anyone holding the link."""
    try:
        invoice = await invoice_service.get_by_public_id(public_invoice_id)
    except InvoiceNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found.")

    try:
        await invoice_service.record_view(public_invoice_id)
        await create_audit_log(
            action=AuditAction.INVOICE_VIEWED,
            resource_type="invoice",
            resource_id=public_invoice_id,
            ip_address=client_ip(request),
            correlation_id=correlation_id(request),
        )
    except Exception as e:
        # View counting must not block the preview
        logger.warning(f"Failed to record view for {public_invoice_id}: {e}")

    return build_public_view(invoice)
