"""Read models for invoices: what the preview page, signing page and owner list receive."""
from typing import Any, Dict

from models import Invoice, RentDetails
from services.scenario_registry import scenario_registry
from utils.formatting import format_currency, format_date
from utils.public_app_url import build_preview_url, build_sign_url
from utils.status_display import get_status_display

# Never sent to anyone holding only the public id
_PUBLIC_EXCLUDE = {"signature_token", "signer_ip", "signer_user_agent", "user_id"}


def _formatted(invoice: Invoice) -> Dict[str, Any]:
    details = invoice.details
    formatted: Dict[str, Any] = {
        "subtotal": format_currency(invoice.subtotal),
        "tax_amount": format_currency(invoice.tax_amount),
        "grand_total": format_currency(invoice.grand_total),
        "invoice_date": format_date(scenario_registry.main_date(details)),
        "created_at": format_date(invoice.created_at, with_time=True),
        "signed_at": format_date(invoice.signed_at, with_time=True) if invoice.signed_at else None,
    }
    if isinstance(details, RentDetails):
        formatted["rent_amount"] = format_currency(details.rent_amount)
    else:
        formatted["line_items"] = [
            {
                "id": item.id,
                "description": item.description,
                "quantity": item.quantity,
                "price": format_currency(item.price),
                "amount": format_currency(item.quantity * item.price),
            }
            for item in details.line_items
        ]
    return formatted


def build_public_view(invoice: Invoice) -> Dict[str, Any]:
    """Payload for /preview/{public_id} and the signing page."""
    return {
        "invoice": invoice.model_dump(mode="json", exclude=_PUBLIC_EXCLUDE),
        "scenario": scenario_registry.get_config(invoice.scenario),
        "tag": scenario_registry.get_tag(invoice.scenario),
        "parties": scenario_registry.describe_parties(invoice.details),
        "formatted": _formatted(invoice),
        "status": get_status_display(invoice.signature_status),
    }


def build_owner_view(invoice: Invoice) -> Dict[str, Any]:
    """Creator's view: full record plus shareable links."""
    return {
        "invoice": invoice.model_dump(mode="json", exclude={"signer_ip", "signer_user_agent"}),
        "tag": scenario_registry.get_tag(invoice.scenario),
        "parties": scenario_registry.describe_parties(invoice.details),
        "formatted": _formatted(invoice),
        "status": get_status_display(invoice.signature_status),
        "preview_url": build_preview_url(invoice.public_invoice_id),
        "sign_url": build_sign_url(invoice.signature_token),
    }
