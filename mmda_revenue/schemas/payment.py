from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


PESEWA = Decimal("0.01")


def money(value: Any) -> Decimal:
    """Coerce a provider/user amount to GHS with two decimal places. None counts as zero."""
    if value is None or value == "":
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(PESEWA, rounding=ROUND_HALF_UP)


class PaymentMethod(str, Enum):
    MOBILE_MONEY = "mobile_money"
    BANK_TRANSFER = "bank_transfer"
    CARD_PAYMENT = "card_payment"
    CASH = "cash"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


MOBILE_MONEY_PROVIDER_KEYS = ("mtn", "vodafone", "airteltigo")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentRequest(CamelModel):
    amount: Decimal = Field(..., gt=0)
    reference: str = Field(..., min_length=1)
    description: str = ""
    payment_method: str = Field(..., description="one of: mobile_money, bank_transfer, card_payment, cash")
    # mobile money
    phone: Optional[str] = None
    mobile_money_provider: Optional[str] = Field(None, description="one of: mtn, vodafone, airtelTigo")
    # bank transfer
    beneficiary_account: Optional[str] = None
    beneficiary_bank: Optional[str] = Field(None, description="bank code, e.g. 002 for GCB")
    beneficiary_name: Optional[str] = None
    # card
    card_number: Optional[str] = Field(None, repr=False)
    card_expiry: Optional[str] = Field(None, repr=False)
    card_cvv: Optional[str] = Field(None, repr=False)
    card_holder_name: Optional[str] = None
    callback_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProviderResult(CamelModel):
    """Normalized outcome of one provider call."""

    success: bool
    transaction_id: Optional[str] = None
    reference: str
    status: PaymentStatus
    message: str
    provider: str
    amount: Decimal
    fee: Decimal = Decimal("0.00")
    total_amount: Decimal
    estimated_settlement_time: Optional[str] = None


class PaymentResponse(CamelModel):
    success: bool
    transaction_id: Optional[str] = None
    reference: str
    status: PaymentStatus
    message: str
    payment_method: str
    provider: Optional[str] = None
    # adapter key (mtn, gcb, ...) to persist so later status checks hit the same backend
    provider_key: Optional[str] = None
    amount: Decimal
    fee: Decimal = Decimal("0.00")
    total_amount: Decimal
    estimated_settlement_time: Optional[str] = None
    receipt_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    requires_verification: bool = False


_REQUIRED_FIELDS = {
    PaymentMethod.MOBILE_MONEY.value: ("phone", "mobile_money_provider"),
    PaymentMethod.BANK_TRANSFER.value: ("beneficiary_account", "beneficiary_bank", "beneficiary_name"),
    PaymentMethod.CARD_PAYMENT.value: ("card_number", "card_expiry", "card_cvv", "card_holder_name"),
    PaymentMethod.CASH.value: (),
}


class PaymentCreate(PaymentRequest):
    """Body of POST /payments. Stricter than PaymentRequest: shape errors become 422s."""

    description: str = Field(..., min_length=1)

    @field_validator("payment_method")
    @classmethod
    def _known_method(cls, v: str) -> str:
        if v not in _REQUIRED_FIELDS:
            raise ValueError("Invalid payment method")
        return v

    @field_validator("mobile_money_provider")
    @classmethod
    def _known_provider(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v.lower() not in MOBILE_MONEY_PROVIDER_KEYS:
            raise ValueError("Invalid mobile money provider")
        return v

    @model_validator(mode="after")
    def _method_fields_present(self):
        missing = [name for name in _REQUIRED_FIELDS[self.payment_method] if not getattr(self, name)]
        if missing:
            raise ValueError(f"{', '.join(missing)} required for {self.payment_method}")
        return self


class PaymentRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int] = None
    payment_reference: str
    transaction_id: Optional[str] = None
    payment_method: str
    provider: Optional[str] = None
    provider_key: Optional[str] = None
    amount: Decimal
    fee: Decimal
    total_amount: Decimal
    status: str
    description: Optional[str] = None
    requires_verification: bool = False
    receipt_url: Optional[str] = None
    estimated_settlement_time: Optional[str] = None
    payment_details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


class WebhookAck(BaseModel):
    received: bool
