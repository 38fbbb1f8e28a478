from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, AliasChoices, field_validator, model_validator
import phonenumbers


def normalize_phone(value: Optional[str], default_region: str = "CO") -> Optional[str]:
    """
    Validates a phone number with Google's phonenumbers library and returns it
    in E.164. Numbers without a country code are read as Colombian.
    """
    if value is None or not value.strip():
        return None
    try:
        parsed = phonenumbers.parse(value, default_region)
    except phonenumbers.NumberParseException:
        raise ValueError('Invalid phone number')

    if not phonenumbers.is_valid_number(parsed):
        raise ValueError('Invalid phone number')

    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


class OrderItemRequest(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)


class ShippingAddress(BaseModel):
    address_line_1: str = Field(validation_alias=AliasChoices("address_line_1", "address"), min_length=1)
    address_line_2: Optional[str] = None
    city: str = Field(min_length=1)
    region: Optional[str] = Field(default=None, validation_alias=AliasChoices("region", "state"))
    country: str = "CO"
    postal_code: Optional[str] = None
    phone_number: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('phone_number')
    @classmethod
    def validate_phone(cls, value):
        return normalize_phone(value)


class PaymentMethod(BaseModel):
    type: Literal["CARD", "NEQUI"] = "CARD"
    token: Optional[str] = None
    phone_number: Optional[str] = None
    installments: int = Field(default=1, ge=1, le=36)

    @property
    def is_chargeable(self) -> bool:
        """True when the client sent what the gateway needs to charge."""
        if self.type == "CARD":
            return bool(self.token)
        return bool(self.phone_number)


class CreateOrderRequest(BaseModel):
    """
    Order submitted by the storefront.

    The core fields are optional at the schema level so the order pipeline
    can report every missing field at once; `amount_in_cents` is only a
    claim and is re-checked against current product prices.
    """
    customer_email: Optional[EmailStr] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    items: Optional[List[OrderItemRequest]] = None
    amount_in_cents: Optional[int] = None
    currency: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    payment_method: Optional[PaymentMethod] = None
    redirect_url: Optional[str] = None

    @field_validator('customer_email')
    @classmethod
    def normalize_email(cls, value):
        return value.lower().strip() if value else value

    @field_validator('customer_name')
    @classmethod
    def strip_name(cls, value):
        if value is None:
            return None
        return value.strip() or None

    @field_validator('customer_phone')
    @classmethod
    def validate_phone(cls, value):
        return normalize_phone(value)


class ProcessPaymentRequest(BaseModel):
    reference: str = Field(min_length=1)
    payment_method_type: Literal["CARD", "NEQUI"] = "CARD"
    payment_token: Optional[str] = None
    phone_number: Optional[str] = None
    installments: int = Field(default=1, ge=1, le=36)
    redirect_url: Optional[str] = None

    @model_validator(mode='after')
    def check_method_fields(self):
        if self.payment_method_type == "CARD" and not self.payment_token:
            raise ValueError('payment_token is required for CARD payments')
        if self.payment_method_type == "NEQUI" and not self.phone_number:
            raise ValueError('phone_number is required for NEQUI payments')
        return self

    def to_payment_method(self) -> PaymentMethod:
        return PaymentMethod(
            type=self.payment_method_type,
            token=self.payment_token,
            phone_number=self.phone_number,
            installments=self.installments,
        )


class TransactionEventData(BaseModel):
    """Transaction snapshot pushed by the gateway; unknown keys are kept."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    status: str
    reference: Optional[str] = None
    amount_in_cents: Optional[int] = None


class WebhookEventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    transaction: TransactionEventData


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    data: Dict[str, Any] = Field(default_factory=dict)
    sent_at: Optional[str] = None
