from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from typing import Optional, Dict, Any, List, Literal, Union, Annotated
from datetime import datetime, timezone
from enum import Enum
import uuid
import logging

logger = logging.getLogger(__name__)

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class InvoiceScenario(str, Enum):
    RENT = "rent"
    FREELANCE = "freelance"
    PRODUCT_SALE = "product_sale"
    CUSTOM = "custom"

class SignatureStatus(str, Enum):
    AWAITING_SIGNATURE = "awaiting_signature"
    SIGNED = "signed"
    EXPIRED = "expired"
    DECLINED = "declined"

TERMINAL_STATUSES = frozenset({
    SignatureStatus.SIGNED,
    SignatureStatus.EXPIRED,
    SignatureStatus.DECLINED,
})

# Values written by earlier schema iterations; normalized on read.
LEGACY_STATUS_ALIASES = {
    "pending": SignatureStatus.AWAITING_SIGNATURE,
    "awaiting_landlord_signature": SignatureStatus.AWAITING_SIGNATURE,
    "signed_by_landlord": SignatureStatus.SIGNED,
}

class SigningStep(str, Enum):
    OTP_VERIFICATION = "otp_verification"
    ATTESTATION = "attestation"
    SIGNATURE = "signature"
    SIGNED = "signed"
    EXPIRED = "expired"
    DECLINED = "declined"

class AuditAction(str, Enum):
    # Invoices
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_DELETED = "INVOICE_DELETED"
    INVOICE_VIEWED = "INVOICE_VIEWED"
    INVOICE_SMART_FILL = "INVOICE_SMART_FILL"

    # Signing flow
    SIGNING_OTP_ACCEPTED = "SIGNING_OTP_ACCEPTED"
    SIGNING_OTP_RATE_LIMITED = "SIGNING_OTP_RATE_LIMITED"
    SIGNING_ATTESTED = "SIGNING_ATTESTED"
    INVOICE_SIGNED = "INVOICE_SIGNED"
    INVOICE_SIGN_CONFLICT = "INVOICE_SIGN_CONFLICT"
    INVOICE_DECLINED = "INVOICE_DECLINED"

    # Jobs
    SIGNATURE_LINKS_EXPIRED = "SIGNATURE_LINKS_EXPIRED"


def normalize_status(value: Any) -> SignatureStatus:
    """Map any stored status (canonical or legacy) onto the canonical enum."""
    if isinstance(value, SignatureStatus):
        return value
    raw = (str(value) if value is not None else "").strip().lower()
    if raw in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[raw]
    try:
        return SignatureStatus(raw)
    except ValueError:
        logger.warning(f"Unknown signature status {raw!r}; treating as awaiting_signature")
        return SignatureStatus.AWAITING_SIGNATURE


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

# ============================================================================
# SCENARIO DETAILS (tagged union on `scenario`)
# ============================================================================

MOBILE_NUMBER_PATTERN = r"^[6-9]\d{9}$"


class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    description: str = Field("", max_length=500)
    quantity: float = Field(1, ge=0)
    price: float = Field(0, ge=0)


class _DetailsBase(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    invoice_notes: Optional[str] = Field(None, max_length=1000)
    invoice_date: datetime = Field(default_factory=_utcnow)


class RentDetails(_DetailsBase):
    scenario: Literal["rent"] = "rent"
    landlord_name: str = Field(..., min_length=1, max_length=100)
    tenant_name: str = Field(..., min_length=1, max_length=100)
    property_address: str = Field(..., min_length=5, max_length=200)
    rent_amount: float = Field(..., gt=0)
    rent_period: str = Field(..., min_length=3, max_length=50)
    payment_date: Optional[datetime] = None
    landlord_mobile_number: str = Field(..., pattern=MOBILE_NUMBER_PATTERN)


class _ItemizedDetails(_DetailsBase):
    issuer_address: Optional[str] = Field(None, max_length=300)
    client_address: Optional[str] = Field(None, max_length=300)
    line_items: List[LineItem] = Field(default_factory=list)
    tax: Optional[str] = Field(None, max_length=20)


class FreelanceDetails(_ItemizedDetails):
    scenario: Literal["freelance"] = "freelance"
    freelancer_name: str = Field(..., min_length=1, max_length=100)
    client_name: str = Field(..., min_length=1, max_length=100)
    service_description: Optional[str] = Field(None, max_length=500)
    hours_worked: Optional[float] = Field(None, ge=0)
    rate: Optional[float] = Field(None, ge=0)


class ProductSaleDetails(_ItemizedDetails):
    scenario: Literal["product_sale"] = "product_sale"
    seller_name: str = Field(..., min_length=1, max_length=100)
    buyer_name: str = Field(..., min_length=1, max_length=100)
    product_description: Optional[str] = Field(None, max_length=500)
    quantity: Optional[float] = Field(None, ge=0)
    unit_price: Optional[float] = Field(None, ge=0)
    sale_date: Optional[datetime] = None
    payment_method: Optional[str] = Field(None, max_length=50)


class CustomDetails(_ItemizedDetails):
    scenario: Literal["custom"] = "custom"
    issuer_name: str = Field(..., min_length=1, max_length=100)
    client_name: str = Field(..., min_length=1, max_length=100)

    @model_validator(mode="after")
    def _require_line_item(self):
        if not self.line_items:
            raise ValueError("Custom invoices need at least one line item")
        return self


InvoiceDetails = Annotated[
    Union[RentDetails, FreelanceDetails, ProductSaleDetails, CustomDetails],
    Field(discriminator="scenario"),
]

# ============================================================================
# CORE MODELS
# ============================================================================

class Invoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    public_invoice_id: str
    invoice_number: str
    user_id: Optional[str] = None
    details: InvoiceDetails

    subtotal: float = 0.0
    tax_amount: float = 0.0
    grand_total: float = 0.0

    signature_token: str
    signature_status: SignatureStatus = SignatureStatus.AWAITING_SIGNATURE
    signature_requested_at: datetime = Field(default_factory=_utcnow)
    signed_at: Optional[datetime] = None
    signature_data_url: Optional[str] = None
    signer_name: Optional[str] = None
    signer_confirmed: bool = False
    signer_ip: Optional[str] = None
    signer_user_agent: Optional[str] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    expired_at: Optional[datetime] = None

    view_count: int = 0
    last_viewed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("signature_status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        return normalize_status(value)

    @property
    def scenario(self) -> InvoiceScenario:
        return InvoiceScenario(self.details.scenario)

    @property
    def is_terminal(self) -> bool:
        return self.signature_status in TERMINAL_STATUSES


class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    correlation_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)

# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class InvoiceCreateRequest(BaseModel):
    details: InvoiceDetails


class SmartFillRequest(BaseModel):
    scenario: InvoiceScenario = InvoiceScenario.CUSTOM
    business_name: Optional[str] = None
    business_address: Optional[str] = None
    client_name: Optional[str] = None
    client_address: Optional[str] = None
    invoice_text: Optional[str] = Field(None, max_length=10000)
    line_items: List[LineItem] = Field(default_factory=list)


# Bounds on raw signing input; oversized bodies fail validation (422)
OTP_CODE_MAX_LENGTH = 64
SIGNATURE_DATA_URL_MAX_LENGTH = 1_000_000


class OtpSubmitRequest(BaseModel):
    code: str = Field("", max_length=OTP_CODE_MAX_LENGTH)


class AttestationRequest(BaseModel):
    session_token: str
    confirmed: bool = False


class SignatureSubmitRequest(BaseModel):
    session_token: str
    signature_data_url: str = Field("", max_length=SIGNATURE_DATA_URL_MAX_LENGTH)
    signer_name: Optional[str] = Field(None, max_length=100)


class DeclineRequest(BaseModel):
    session_token: str
    reason: Optional[str] = Field(None, max_length=500)
