"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    BillingInfo,
    CardDetails,
    ChargeResult,
    GatewayRefundResult,
    PaymentMethod,
    TokenizeResult,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the card processor.

    Implementations raise GatewayDecline (and its subclasses) for card
    rejections and GatewayUnavailable for transport failures; they never
    retry on their own.
    """

    provider: str

    async def tokenize(self, card: CardDetails, customer_id: str) -> TokenizeResult: ...

    async def charge(
        self,
        *,
        amount_minor: int,
        currency: str,
        method: PaymentMethod,
        billing: Optional[BillingInfo],
        order_id: str,
        description: str,
    ) -> ChargeResult: ...

    async def refund(self, transaction_id: str, amount: Decimal) -> GatewayRefundResult: ...

    async def aclose(self) -> None: ...
