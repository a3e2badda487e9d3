"""
Smart Fill Service
Extracts party details and a first line item from free-form invoice text.

The model only suggests; nothing is persisted. Suggestions never overwrite a
line item the user has already edited (see _merge_first_line_item), and any
failure yields an empty suggestion instead of an error.
"""
import json
import logging
import math
from typing import Any, Dict, List, Optional

from models import AuditAction, LineItem, SmartFillRequest
from services.scenario_registry import LINE_ITEM_PLACEHOLDER
from utils import llm_chat
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

RENT_DESCRIPTION_PREFIX = "Rent for "

SMART_FILL_PROMPT = """You are an AI assistant specialized in extracting structured information from text for invoices.
Your task is to populate a JSON object with the following fields: 'businessName', 'businessAddress', 'clientName', 'clientAddress', 'itemDescription', 'quantity', and 'price'.

Guidelines:
1.  Analyze ALL provided information: existing field values AND the 'Invoice Text'.

2.  Extraction Rules:
    - Prioritize information found in 'Invoice Text' for extraction.
    - Use existing field values as context or if the information is not present in 'Invoice Text'.
    - For 'quantity' and 'price' fields, ensure the output values are NUMBERS (e.g., 50, 12.75), not strings.
    - If 'Invoice Text' seems to describe multiple line items, extract details for only the most prominent or first clearly described item into 'itemDescription', 'quantity', and 'price'.

3.  Output Format:
    - Your output MUST be a single, valid JSON object.
    - Adhere strictly to the output schema (fields: businessName, businessAddress, clientName, clientAddress, itemDescription, quantity, price).
    - If a specific piece of information for a field cannot be reliably found or inferred, OMIT that field entirely from your JSON output. Do not include fields with empty strings or null values.
    - Do not invent information. Only extract or infer from the provided inputs.
"""

# model key -> response key
_PARTY_FIELDS = {
    "businessName": "business_name",
    "businessAddress": "business_address",
    "clientName": "client_name",
    "clientAddress": "client_address",
}


def build_user_message(request: SmartFillRequest) -> str:
    first = request.line_items[0] if request.line_items else None
    lines = [
        f"- Existing Business Name: {request.business_name or ''}",
        f"- Existing Business Address: {request.business_address or ''}",
        f"- Existing Client Name: {request.client_name or ''}",
        f"- Existing Client Address: {request.client_address or ''}",
        f"- Existing Item Description (if provided): {first.description if first else ''}",
        f"- Existing Quantity (if provided): {first.quantity if first else ''}",
        f"- Existing Price (if provided): {first.price if first else ''}",
        f"- Invoice type: {request.scenario.value}",
        f"- Primary source for new extraction: 'Invoice Text': \"{request.invoice_text or ''}\"",
    ]
    return "\n".join(lines)


def parse_model_json(response_text: str) -> Dict[str, Any]:
    """Parse model output, tolerating markdown code fences. Raises ValueError."""
    text = (response_text or "").strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _clean_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _clean_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


def _merge_first_line_item(existing: List[LineItem], extracted: Dict[str, Any]) -> Optional[List[LineItem]]:
    """Apply extracted item fields to the first line item, only where it still holds a default.

    - description: when empty, the placeholder, or a "Rent for ..." suggestion
    - quantity: when 0 or 1
    - price: when 0
    Returns None when nothing changed.
    """
    if not existing:
        return None
    description = _clean_text(extracted.get("itemDescription"))
    quantity = _clean_number(extracted.get("quantity"))
    price = _clean_number(extracted.get("price"))
    if description is None and quantity is None and price is None:
        return None

    first = existing[0]
    updates: Dict[str, Any] = {}
    current = first.description or ""
    if description and (not current or current == LINE_ITEM_PLACEHOLDER or current.startswith(RENT_DESCRIPTION_PREFIX)):
        updates["description"] = description
    if quantity is not None and first.quantity in (0, 1):
        updates["quantity"] = quantity
    if price is not None and first.price == 0:
        updates["price"] = price

    if not updates:
        return None
    return [first.model_copy(update=updates)] + list(existing[1:])


def merge_suggestions(request: SmartFillRequest, extracted: Dict[str, Any]) -> Dict[str, Any]:
    """Turn raw model output into the suggestion payload (snake_case keys, blanks dropped)."""
    suggested: Dict[str, Any] = {}
    for model_key, field in _PARTY_FIELDS.items():
        value = _clean_text(extracted.get(model_key))
        if value:
            suggested[field] = value

    line_items = _merge_first_line_item(request.line_items, extracted)
    if line_items is not None:
        suggested["line_items"] = [item.model_dump() for item in line_items]
    return suggested


async def smart_fill(
    request: SmartFillRequest,
    actor_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Suggest invoice field values. Returns {} on any failure."""
    if not llm_chat.is_configured():
        logger.warning(f"[{correlation_id or ''}] smart_fill skipped: LLM_API_KEY not configured")
        return {}

    try:
        response_text = await llm_chat.chat(
            system_prompt=SMART_FILL_PROMPT,
            user_text=build_user_message(request),
            json_output=True,
        )
    except Exception as e:
        logger.error(f"[{correlation_id or ''}] smart_fill model call failed: {e}")
        return {}

    try:
        extracted = parse_model_json(response_text)
    except ValueError as e:
        # json.JSONDecodeError is a ValueError
        logger.error(f"[{correlation_id or ''}] smart_fill could not parse model output: {e}")
        logger.debug(f"Response was: {(response_text or '')[:500]}")
        return {}

    try:
        suggested = merge_suggestions(request, extracted)
    except Exception as e:
        logger.error(f"[{correlation_id or ''}] smart_fill could not apply model output: {e}")
        return {}

    await create_audit_log(
        action=AuditAction.INVOICE_SMART_FILL,
        actor_id=actor_id,
        resource_type="invoice_draft",
        metadata={"scenario": request.scenario.value, "fields": sorted(suggested.keys())},
        correlation_id=correlation_id,
    )
    logger.info(f"[{correlation_id or ''}] smart_fill suggested fields={sorted(suggested.keys())}")
    return suggested
