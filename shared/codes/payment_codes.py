"""
Payment specific codes and gateway response-code mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Gateway/Network errors (6xxxx)
    GATEWAY_DECLINE = 60000
    GATEWAY_UNAVAILABLE = 60001
    PROTOCOL_ERROR = 60002
    INVALID_CARD_NUMBER = 60003
    INVALID_EXPIRY = 60004

    # Money moved but internal state did not follow (61xxx)
    PERSISTENCE_ERROR = 61000
    RECONCILIATION_REQUIRED = 61001


# Literal values of the gateway's `response` field: 1 approved, 2 declined, 3 error
GATEWAY_APPROVED = "1"
GATEWAY_RESPONSE_VALUES = frozenset({"1", "2", "3"})

# response_code -> specific decline kind; other codes are a generic decline
GATEWAY_DECLINE_KINDS = {
    "200": "invalid_card_number",
    "201": "invalid_expiry",
}
