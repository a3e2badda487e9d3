"""Invoice Record Store.

Two collections hold invoices:
- invoices: public copy keyed by public_invoice_id (preview + signing lookups)
- user_invoices: creator-scoped copy keyed by (user_id, id), written only for authenticated creators

Amounts are computed with Decimal and stored as 2dp floats.
"""
import logging
import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from database import database
from middleware import AuthContext
from models import (
    AuditAction,
    Invoice,
    RentDetails,
    FreelanceDetails,
    ProductSaleDetails,
    CustomDetails,
)
from services.scenario_registry import scenario_registry
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

PUBLIC_ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
PUBLIC_ID_LENGTH = 8
SIGNATURE_TOKEN_LENGTH = 12
MAX_CREATE_ATTEMPTS = 3

_CENTS = Decimal("0.01")


class InvoiceNotFoundError(Exception):
    pass


# ============================================================================
# IDENTIFIERS
# ============================================================================

def generate_public_invoice_id(scenario_id: str, length: int = PUBLIC_ID_LENGTH) -> str:
    """QB-<SCENARIO>-XXXXXXXX, e.g. QB-RENT-7K2M9QXA."""
    suffix = "".join(secrets.choice(PUBLIC_ID_ALPHABET) for _ in range(length))
    scenario_part = scenario_id.replace("_", "").upper()
    return f"QB-{scenario_part}-{suffix}"


def generate_signature_token() -> str:
    return uuid.uuid4().hex[:SIGNATURE_TOKEN_LENGTH]


def build_invoice_number(scenario_id: str, public_invoice_id: str, now: Optional[datetime] = None) -> str:
    """<PREFIX>-YYYYMM-<last 4 of public id>, e.g. RENT-202610-9QXA."""
    now = now or datetime.now(timezone.utc)
    prefix = scenario_registry.get_invoice_number_prefix(scenario_id)
    return f"{prefix}-{now.year}{now.month:02d}-{public_invoice_id[-4:]}"


# ============================================================================
# TOTALS
# ============================================================================

def _dec(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal(0)


def parse_tax(tax: Optional[str], subtotal: Decimal) -> Decimal:
    """'18%' is a percentage of subtotal; any other number is a fixed amount; junk is 0."""
    raw = (tax or "").strip()
    if not raw:
        return Decimal(0)
    if "%" in raw:
        return subtotal * _dec(raw.replace("%", "").strip()) / Decimal(100)
    return _dec(raw)


def compute_totals(details) -> Dict[str, float]:
    """subtotal / tax_amount / grand_total for any scenario variant."""
    if isinstance(details, RentDetails):
        subtotal = _dec(details.rent_amount)
        tax_amount = Decimal(0)
    elif isinstance(details, (FreelanceDetails, ProductSaleDetails, CustomDetails)):
        subtotal = sum(
            (_dec(item.quantity) * _dec(item.price) for item in details.line_items),
            Decimal(0),
        )
        if not details.line_items:
            if isinstance(details, FreelanceDetails):
                subtotal = _dec(details.hours_worked) * _dec(details.rate)
            elif isinstance(details, ProductSaleDetails):
                subtotal = _dec(details.quantity) * _dec(details.unit_price)
        tax_amount = parse_tax(details.tax, subtotal)
    else:
        raise TypeError(f"Unhandled invoice details type: {type(details).__name__}")

    grand_total = subtotal + tax_amount
    return {
        "subtotal": float(subtotal.quantize(_CENTS, rounding=ROUND_HALF_UP)),
        "tax_amount": float(tax_amount.quantize(_CENTS, rounding=ROUND_HALF_UP)),
        "grand_total": float(grand_total.quantize(_CENTS, rounding=ROUND_HALF_UP)),
    }


# ============================================================================
# PERSISTENCE
# ============================================================================

def invoice_to_doc(invoice: Invoice) -> Dict[str, Any]:
    doc = invoice.model_dump(mode="python")
    doc["signature_status"] = invoice.signature_status.value
    return doc


def doc_to_invoice(doc: Dict[str, Any]) -> Invoice:
    doc = dict(doc)
    doc.pop("_id", None)
    return Invoice(**doc)


def _new_invoice(details, user_id: Optional[str]) -> Invoice:
    now = datetime.now(timezone.utc)
    public_id = generate_public_invoice_id(details.scenario)
    return Invoice(
        public_invoice_id=public_id,
        invoice_number=build_invoice_number(details.scenario, public_id, now),
        user_id=user_id,
        details=details,
        signature_token=generate_signature_token(),
        signature_requested_at=now,
        created_at=now,
        updated_at=now,
        **compute_totals(details),
    )


async def create_invoice(details, auth: AuthContext, correlation_id: Optional[str] = None) -> Invoice:
    """Persist a new invoice. Public id / token collisions are retried with fresh ids."""
    db = database.get_db()

    invoice = None
    for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
        candidate = _new_invoice(details, auth.user_id)
        try:
            await db.invoices.insert_one(invoice_to_doc(candidate))
            invoice = candidate
            break
        except DuplicateKeyError:
            logger.warning(
                f"[{correlation_id or ''}] invoice id collision attempt={attempt} public_id={candidate.public_invoice_id}"
            )
    if invoice is None:
        raise RuntimeError("Could not allocate a unique public invoice id")

    if auth.is_authenticated:
        try:
            await db.user_invoices.insert_one(invoice_to_doc(invoice))
        except Exception:
            # Keep the two copies consistent: no public invoice without its owner's copy
            await db.invoices.delete_one({"public_invoice_id": invoice.public_invoice_id})
            raise

    await create_audit_log(
        action=AuditAction.INVOICE_CREATED,
        actor_id=auth.user_id,
        resource_type="invoice",
        resource_id=invoice.public_invoice_id,
        metadata={"scenario": invoice.details.scenario, "grand_total": invoice.grand_total},
        correlation_id=correlation_id,
    )
    logger.info(
        f"[{correlation_id or ''}] invoice created public_id={invoice.public_invoice_id} "
        f"scenario={invoice.details.scenario} owner={'user' if auth.is_authenticated else 'anonymous'}"
    )
    return invoice


async def get_by_public_id(public_invoice_id: str) -> Invoice:
    db = database.get_db()
    doc = await db.invoices.find_one({"public_invoice_id": public_invoice_id}, {"_id": 0})
    if not doc:
        raise InvoiceNotFoundError(public_invoice_id)
    return doc_to_invoice(doc)


async def get_by_signature_token(signature_token: str) -> Invoice:
    db = database.get_db()
    doc = await db.invoices.find_one({"signature_token": signature_token}, {"_id": 0})
    if not doc:
        raise InvoiceNotFoundError(signature_token)
    return doc_to_invoice(doc)


async def record_view(public_invoice_id: str) -> None:
    db = database.get_db()
    await db.invoices.update_one(
        {"public_invoice_id": public_invoice_id},
        {"$inc": {"view_count": 1}, "$set": {"last_viewed_at": datetime.now(timezone.utc)}},
    )


async def list_user_invoices(auth: AuthContext, limit: int = 100) -> List[Invoice]:
    """Caller's invoices, newest first.

    Signature status lives on the public copy, so it is read from there.
    """
    db = database.get_db()
    cursor = db.user_invoices.find({"user_id": auth.user_id}, {"_id": 0}).sort("created_at", -1).limit(limit)
    docs = await cursor.to_list(length=limit)
    if not docs:
        return []

    public_ids = [d["public_invoice_id"] for d in docs]
    status_cursor = db.invoices.find(
        {"public_invoice_id": {"$in": public_ids}},
        {"_id": 0, "public_invoice_id": 1, "signature_status": 1, "signed_at": 1},
    )
    live = {d["public_invoice_id"]: d for d in await status_cursor.to_list(length=len(public_ids))}

    invoices = []
    for doc in docs:
        current = live.get(doc["public_invoice_id"])
        if current:
            doc["signature_status"] = current.get("signature_status", doc.get("signature_status"))
            doc["signed_at"] = current.get("signed_at", doc.get("signed_at"))
        invoices.append(doc_to_invoice(doc))
    return invoices


async def get_user_invoice(auth: AuthContext, invoice_id: str) -> Invoice:
    db = database.get_db()
    doc = await db.user_invoices.find_one({"user_id": auth.user_id, "id": invoice_id}, {"_id": 0})
    if not doc:
        raise InvoiceNotFoundError(invoice_id)
    public = await db.invoices.find_one({"public_invoice_id": doc["public_invoice_id"]}, {"_id": 0})
    return doc_to_invoice(public or doc)


async def delete_user_invoice(auth: AuthContext, invoice_id: str, correlation_id: Optional[str] = None) -> None:
    """Remove an invoice from the caller's list. The public copy stays reachable by link."""
    db = database.get_db()
    deleted = await db.user_invoices.find_one_and_delete(
        {"user_id": auth.user_id, "id": invoice_id},
        projection={"_id": 0, "public_invoice_id": 1},
    )
    if not deleted:
        raise InvoiceNotFoundError(invoice_id)
    await create_audit_log(
        action=AuditAction.INVOICE_DELETED,
        actor_id=auth.user_id,
        resource_type="invoice",
        resource_id=deleted.get("public_invoice_id"),
        metadata={"invoice_id": invoice_id},
        correlation_id=correlation_id,
    )
