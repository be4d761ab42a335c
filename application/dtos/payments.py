"""
Payment DTOs (Pydantic v2) used at application boundaries.

JSON uses camelCase (`transactionId`, `paymentDetails`); Python code uses
snake_case. Both spellings are accepted on input.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic.types import condecimal

# Common ISO-4217 currencies (extend as needed)
ISO_4217 = {
    "USD", "EUR", "GBP", "CAD", "AUD", "JPY", "KRW",
}

# Currencies without minor units
ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW"}


def currency_exponent(currency: str) -> int:
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


def to_minor_units(amount: Decimal, currency: str) -> int:
    exponent = currency_exponent(currency)
    scaled = Decimal(amount) * (Decimal(10) ** exponent)
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int, currency: str) -> Decimal:
    exponent = currency_exponent(currency)
    return (Decimal(amount_minor) / (Decimal(10) ** exponent)).quantize(Decimal(1).scaleb(-exponent))


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class BillingAddress(CamelModel):
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip_code: str = Field(min_length=1)
    country: str = Field(default="US", min_length=2, max_length=2)


class BillingInfo(CamelModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    address: BillingAddress


class CardDetails(BillingInfo):
    """Raw card fields plus the billing identity they belong to."""

    card_number: str = Field(min_length=12, max_length=23)
    expiry_month: str = Field(min_length=1, max_length=2)
    expiry_year: str = Field(min_length=2, max_length=4)
    cvv: str = Field(min_length=3, max_length=4)

    @field_validator("card_number")
    @classmethod
    def _digits_only(cls, v: str) -> str:
        digits = v.replace(" ", "").replace("-", "")
        if not digits.isdigit() or not 12 <= len(digits) <= 19:
            raise ValueError("card number must contain 12-19 digits")
        return digits

    @field_validator("expiry_month")
    @classmethod
    def _valid_month(cls, v: str) -> str:
        if not v.isdigit() or not 1 <= int(v) <= 12:
            raise ValueError("expiry month must be 1-12")
        return v.zfill(2)

    @field_validator("expiry_year")
    @classmethod
    def _valid_year(cls, v: str) -> str:
        if not v.isdigit() or len(v) not in (2, 4):
            raise ValueError("expiry year must have 2 or 4 digits")
        return v

    @field_validator("cvv")
    @classmethod
    def _valid_cvv(cls, v: str) -> str:
        if not v.isdigit():
            raise ValueError("cvv must be numeric")
        return v

    @property
    def ccexp(self) -> str:
        """Expiry in the gateway's 4-digit MMYY form."""
        return f"{self.expiry_month.zfill(2)}{self.expiry_year[-2:]}"

    @property
    def last4(self) -> str:
        return self.card_number[-4:]

    def billing(self) -> BillingInfo:
        return BillingInfo(first_name=self.first_name, last_name=self.last_name, address=self.address)


class TokenPayment(CamelModel):
    kind: Literal["token"] = "token"
    token_id: str = Field(min_length=1)


class CardPayment(CamelModel):
    kind: Literal["card"] = "card"
    card: CardDetails


PaymentMethod = Annotated[Union[TokenPayment, CardPayment], Field(discriminator="kind")]


class TokenizeResult(BaseModel):
    token_id: str
    customer_id: str


class ChargeResult(BaseModel):
    transaction_id: str
    auth_code: Optional[str] = None
    avs_response: Optional[str] = None
    cvv_response: Optional[str] = None
    order_id: Optional[str] = None


class GatewayRefundResult(BaseModel):
    refund_id: str


class ProcessPaymentRequest(CamelModel):
    enrollment_id: str = Field(min_length=1)
    course_id: str = Field(min_length=1)
    payment_details: Optional[CardDetails] = None
    token_id: Optional[str] = None
    customer_id: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, pattern=r"^[A-Za-z0-9_-]{1,64}$")


class RefundPaymentRequest(CamelModel):
    transaction_id: str = Field(min_length=1)
    amount: condecimal(gt=0, decimal_places=2)  # type: ignore[valid-type]


class TokenizeRequest(CamelModel):
    payment_details: CardDetails
    customer_id: str = Field(min_length=1)


class PaymentOutcome(CamelModel):
    success: bool = True
    enrollment_id: str
    status: str
    transaction_id: Optional[str] = None
    auth_code: Optional[str] = None
    replayed: bool = False


class RefundOutcome(CamelModel):
    success: bool = True
    enrollment_id: str
    status: str
    refund_id: str


class TokenizeOutcome(CamelModel):
    success: bool = True
    token_id: str
    customer_id: str
