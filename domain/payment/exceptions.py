"""
Payment error kinds shared by the gateway port, its adapters and the orchestrator.
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import GATEWAY_DECLINE_KINDS, PaymentCode


class GatewayError(BusinessException):
    """Base for every answer (or non-answer) from the card gateway."""

    def __init__(
        self,
        message: str,
        *,
        code: int,
        error_type: str,
        response_code: Optional[str] = None,
        response_text: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        full_details = {"response_code": response_code, "response_text": response_text}
        if details:
            full_details.update(details)
        super().__init__(code=code, message=message, error_type=error_type, details=full_details)
        self.response_code = response_code
        self.response_text = response_text

    @property
    def public_code(self) -> str:
        return self.response_code or self.error_type


class GatewayDecline(GatewayError):
    """The gateway answered and rejected the request."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        response_code: Optional[str] = None,
        response_text: Optional[str] = None,
        transaction_id: Optional[str] = None,
        code: int = PaymentCode.GATEWAY_DECLINE,
        error_type: str = "GatewayDecline",
    ):
        super().__init__(
            message or response_text or "Payment declined",
            code=code,
            error_type=error_type,
            response_code=response_code,
            response_text=response_text,
            details={"transaction_id": transaction_id} if transaction_id else None,
        )
        self.transaction_id = transaction_id


class InvalidCardNumber(GatewayDecline):
    def __init__(self, *, response_code: Optional[str] = None, response_text: Optional[str] = None, transaction_id: Optional[str] = None):
        super().__init__(
            "Invalid card number",
            response_code=response_code,
            response_text=response_text,
            transaction_id=transaction_id,
            code=PaymentCode.INVALID_CARD_NUMBER,
            error_type="InvalidCardNumber",
        )


class InvalidExpiry(GatewayDecline):
    def __init__(self, *, response_code: Optional[str] = None, response_text: Optional[str] = None, transaction_id: Optional[str] = None):
        super().__init__(
            "Invalid expiry date",
            response_code=response_code,
            response_text=response_text,
            transaction_id=transaction_id,
            code=PaymentCode.INVALID_EXPIRY,
            error_type="InvalidExpiry",
        )


class GatewayUnavailable(GatewayError):
    """Network failure or timeout: no charge is known to have happened."""

    retryable = True

    def __init__(self, message: str = "Payment service unavailable, please try again", *, details: Optional[dict] = None,
                 code: int = PaymentCode.GATEWAY_UNAVAILABLE, error_type: str = "GatewayUnavailable"):
        super().__init__(message, code=code, error_type=error_type, details=details)


class ProtocolError(GatewayUnavailable):
    """The gateway answered with a payload that does not parse into a known result."""

    retryable = False

    def __init__(self, message: str = "Unrecognized response from payment gateway", *, details: Optional[dict] = None):
        super().__init__(message, details=details, code=PaymentCode.PROTOCOL_ERROR, error_type="ProtocolError")


class PersistenceError(BusinessException):
    """Money moved at the gateway but the enrollment record did not follow."""

    USER_MESSAGE = "We're confirming your payment. Please contact support before trying again."

    def __init__(
        self,
        *,
        enrollment_id: str,
        transaction_id: Optional[str] = None,
        reason: str = "store_write_failed",
        code: int = PaymentCode.PERSISTENCE_ERROR,
        error_type: str = "PersistenceError",
    ):
        super().__init__(
            code=code,
            message=self.USER_MESSAGE,
            error_type=error_type,
            details={"enrollment_id": enrollment_id, "transaction_id": transaction_id, "reason": reason},
        )
        self.enrollment_id = enrollment_id
        self.transaction_id = transaction_id
        self.reason = reason


class ReconciliationRequired(PersistenceError):
    """The payment is recorded but flagged for manual follow-up."""

    def __init__(self, *, enrollment_id: str, transaction_id: Optional[str] = None, reason: str):
        super().__init__(
            enrollment_id=enrollment_id,
            transaction_id=transaction_id,
            reason=reason,
            code=PaymentCode.RECONCILIATION_REQUIRED,
            error_type="ReconciliationRequired",
        )


_DECLINE_CLASSES = {
    "invalid_card_number": InvalidCardNumber,
    "invalid_expiry": InvalidExpiry,
}


def decline_for(
    response_code: Optional[str],
    response_text: Optional[str] = None,
    transaction_id: Optional[str] = None,
) -> GatewayDecline:
    """Build the decline kind registered for a gateway response code."""
    exc_cls = _DECLINE_CLASSES.get(GATEWAY_DECLINE_KINDS.get(response_code or "", ""))
    if exc_cls is not None:
        return exc_cls(response_code=response_code, response_text=response_text, transaction_id=transaction_id)
    return GatewayDecline(response_code=response_code, response_text=response_text, transaction_id=transaction_id)
