"""Scenario Registry - single source of truth for invoice scenario definitions.

Each scenario (rent, freelance, product_sale, custom) maps to:
- Labels for the issuer/recipient parties and their addresses
- Which detail fields are required/optional
- Default values for a new form
- Invoice number prefix

Unknown or missing scenario ids resolve to CUSTOM.
"""
import copy
from typing import Dict, List, Optional, Any, Union
from models import (
    InvoiceScenario,
    RentDetails,
    FreelanceDetails,
    ProductSaleDetails,
    CustomDetails,
)
import logging

logger = logging.getLogger(__name__)

AnyDetails = Union[RentDetails, FreelanceDetails, ProductSaleDetails, CustomDetails]

DETAIL_MODELS = {
    InvoiceScenario.RENT: RentDetails,
    InvoiceScenario.FREELANCE: FreelanceDetails,
    InvoiceScenario.PRODUCT_SALE: ProductSaleDetails,
    InvoiceScenario.CUSTOM: CustomDetails,
}

LINE_ITEM_PLACEHOLDER = "Service/Product Description"

# ============================================================================
# SCENARIO DEFINITIONS
# ============================================================================
SCENARIOS: Dict[InvoiceScenario, Dict[str, Any]] = {
    InvoiceScenario.RENT: {
        "label": "Rent Invoice",
        "tag": "[Rent Invoice]",
        "issuer_label": "Landlord/Property Manager Name",
        "recipient_label": "Tenant Name",
        "issuer_address_label": "Property Address",
        "recipient_address_label": None,
        "recipient_section_title": "Tenant Details",
        "has_line_items": False,
        "show_rent_period": True,
        "line_item_suggestion": "Rent for ",
        "invoice_number_prefix": "RENT",
        "defaults": {"rent_period": "", "invoice_notes": ""},
    },
    InvoiceScenario.FREELANCE: {
        "label": "Freelance Work",
        "tag": "[Freelance Invoice]",
        "issuer_label": "Freelancer Name",
        "recipient_label": "Client Name",
        "issuer_address_label": "Your Address",
        "recipient_address_label": "Client Address",
        "recipient_section_title": "Client Details",
        "has_line_items": True,
        "show_rent_period": False,
        "line_item_suggestion": LINE_ITEM_PLACEHOLDER,
        "invoice_number_prefix": "FRL",
        "defaults": {"hours_worked": 0, "rate": 0, "tax": "", "line_items": []},
    },
    InvoiceScenario.PRODUCT_SALE: {
        "label": "Product Sale",
        "tag": "[Product Sale]",
        "issuer_label": "Seller Name",
        "recipient_label": "Buyer Name",
        "issuer_address_label": "Business Address",
        "recipient_address_label": "Buyer Address",
        "recipient_section_title": "Buyer Details",
        "has_line_items": True,
        "show_rent_period": False,
        "line_item_suggestion": LINE_ITEM_PLACEHOLDER,
        "invoice_number_prefix": "SALE",
        "defaults": {"quantity": 1, "unit_price": 0, "payment_method": "", "tax": "", "line_items": []},
    },
    InvoiceScenario.CUSTOM: {
        "label": "Custom Invoice",
        "tag": "[Custom Invoice]",
        "issuer_label": "Business Name",
        "recipient_label": "Client Name",
        "issuer_address_label": "Business Address",
        "recipient_address_label": "Client Address",
        "recipient_section_title": "Billed To",
        "has_line_items": True,
        "show_rent_period": False,
        "line_item_suggestion": LINE_ITEM_PLACEHOLDER,
        "invoice_number_prefix": "INV",
        "defaults": {
            "tax": "",
            "line_items": [{"description": LINE_ITEM_PLACEHOLDER, "quantity": 1, "price": 0}],
        },
    },
}


def _field_split(model) -> Dict[str, List[str]]:
    required, optional = [], []
    for name, field in model.model_fields.items():
        if name == "scenario":
            continue
        (required if field.is_required() else optional).append(name)
    return {"required_fields": required, "optional_fields": optional}


class ScenarioRegistryService:
    """Read-only access to scenario definitions."""

    def resolve(self, scenario_id: Optional[Union[str, InvoiceScenario]]) -> InvoiceScenario:
        if isinstance(scenario_id, InvoiceScenario):
            return scenario_id
        if not scenario_id:
            return InvoiceScenario.CUSTOM
        try:
            return InvoiceScenario(str(scenario_id).strip().lower())
        except ValueError:
            logger.info(f"Unknown scenario id {scenario_id!r}, falling back to custom")
            return InvoiceScenario.CUSTOM

    def get_config(self, scenario_id: Optional[Union[str, InvoiceScenario]]) -> Dict[str, Any]:
        scenario = self.resolve(scenario_id)
        config = SCENARIOS[scenario]
        return {
            "id": scenario.value,
            **config,
            "defaults": copy.deepcopy(config["defaults"]),
            **_field_split(DETAIL_MODELS[scenario]),
        }

    def get_all(self) -> List[Dict[str, Any]]:
        return [self.get_config(s) for s in InvoiceScenario]

    def get_tag(self, scenario_id: Optional[Union[str, InvoiceScenario]]) -> str:
        if not scenario_id:
            return ""
        return SCENARIOS[self.resolve(scenario_id)]["tag"]

    def get_invoice_number_prefix(self, scenario_id: Optional[Union[str, InvoiceScenario]]) -> str:
        return SCENARIOS[self.resolve(scenario_id)]["invoice_number_prefix"]

    def describe_parties(self, details: AnyDetails) -> Dict[str, str]:
        """Issuer/recipient display names and addresses for one invoice.

        Exhaustive over the detail variants; a new variant without a branch
        raises TypeError rather than rendering blank parties.
        """
        if isinstance(details, RentDetails):
            return {
                "issuer_name": details.landlord_name or "Landlord",
                "recipient_name": details.tenant_name or "Tenant",
                "issuer_address": details.property_address or "",
                "recipient_address": "",
            }
        if isinstance(details, FreelanceDetails):
            return {
                "issuer_name": details.freelancer_name or "Freelancer",
                "recipient_name": details.client_name or "Client",
                "issuer_address": details.issuer_address or "",
                "recipient_address": details.client_address or "",
            }
        if isinstance(details, ProductSaleDetails):
            return {
                "issuer_name": details.seller_name or "Seller",
                "recipient_name": details.buyer_name or "Buyer",
                "issuer_address": details.issuer_address or "",
                "recipient_address": details.client_address or "",
            }
        if isinstance(details, CustomDetails):
            return {
                "issuer_name": details.issuer_name or "Issuer",
                "recipient_name": details.client_name or "Client",
                "issuer_address": details.issuer_address or "",
                "recipient_address": details.client_address or "",
            }
        raise TypeError(f"Unhandled invoice details type: {type(details).__name__}")

    def main_date(self, details: AnyDetails):
        """Date shown on the invoice header."""
        if isinstance(details, RentDetails):
            return details.payment_date or details.invoice_date
        if isinstance(details, ProductSaleDetails):
            return details.sale_date or details.invoice_date
        if isinstance(details, (FreelanceDetails, CustomDetails)):
            return details.invoice_date
        raise TypeError(f"Unhandled invoice details type: {type(details).__name__}")


scenario_registry = ScenarioRegistryService()
