"""
支付令牌实体 - 网关保险库中的卡引用
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from domain.common.exceptions import DomainValidationException


@dataclass
class PaymentToken:
    """
    Opaque reference to a card stored in the gateway vault.

    Only the token, the last four digits and the expiry are kept locally;
    the card number and CVV never leave the request that tokenized them.
    """

    token_id: str
    customer_id: str
    last4: Optional[str] = None
    expiry_month: Optional[str] = None
    expiry_year: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.token_id:
            raise DomainValidationException("token_id is required", field="token_id")
        if not self.customer_id:
            raise DomainValidationException("customer_id is required", field="customer_id")
        if self.last4 is not None and (len(self.last4) != 4 or not self.last4.isdigit()):
            raise DomainValidationException("last4 must be four digits", field="last4")
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)
        elif self.created_at.tzinfo is None:
            self.created_at = self.created_at.replace(tzinfo=timezone.utc)
