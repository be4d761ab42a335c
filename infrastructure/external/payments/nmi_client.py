"""
Card gateway client speaking the NMI-style flat form protocol.

Requests are `application/x-www-form-urlencoded` POSTs carrying `type`
(`tokenize` | `sale` | `refund`) plus credentials; replies are a form-encoded
list of key/value pairs whose `response` field is `1` (approved), `2`
(declined) or `3` (error). Anything else is rejected as a ProtocolError.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from urllib.parse import parse_qsl

import httpx

from application.dtos.payments import (
    BillingInfo,
    CardDetails,
    CardPayment,
    ChargeResult,
    GatewayRefundResult,
    PaymentMethod,
    TokenizeResult,
    TokenPayment,
    currency_exponent,
    from_minor_units,
)
from domain.common.exceptions import DomainValidationException
from domain.payment.exceptions import GatewayDecline, ProtocolError, decline_for
from infrastructure.external.payments.base import BasePaymentClient
from shared.codes.payment_codes import GATEWAY_APPROVED, GATEWAY_RESPONSE_VALUES


_MAX_LOGGED_BODY = 512


@dataclass(frozen=True)
class GatewayReply:
    """One parsed gateway reply. Only `response` is guaranteed."""

    response: str
    response_code: Optional[str] = None
    response_text: Optional[str] = None
    transaction_id: Optional[str] = None
    auth_code: Optional[str] = None
    avs_response: Optional[str] = None
    cvv_response: Optional[str] = None
    token: Optional[str] = None
    customer_vault_id: Optional[str] = None
    order_id: Optional[str] = None
    fields: dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def approved(self) -> bool:
        return self.response == GATEWAY_APPROVED

    @classmethod
    def parse(cls, body: str) -> "GatewayReply":
        text = (body or "").strip()
        try:
            # empty segments ("a=1&" or "a=1&&b=2") are ignored
            query = "&".join(part for part in text.split("&") if part)
            pairs = parse_qsl(query, keep_blank_values=True, strict_parsing=True)
        except ValueError as exc:
            raise ProtocolError(details={"reason": "malformed_body", "body": text[:_MAX_LOGGED_BODY]}) from exc

        fields: dict[str, str] = {}
        for key, value in pairs:
            # first occurrence wins
            fields.setdefault(key, value)

        response = fields.get("response")
        if response not in GATEWAY_RESPONSE_VALUES:
            raise ProtocolError(
                details={"reason": "unknown_response", "response": response, "body": text[:_MAX_LOGGED_BODY]}
            )

        def _opt(name: str) -> Optional[str]:
            return fields.get(name) or None

        return cls(
            response=response,
            response_code=_opt("response_code"),
            response_text=_opt("responsetext"),
            transaction_id=_opt("transactionid"),
            auth_code=_opt("authcode"),
            avs_response=_opt("avsresponse"),
            cvv_response=_opt("cvvresponse"),
            token=_opt("token"),
            customer_vault_id=_opt("customer_vault_id"),
            order_id=_opt("orderid"),
            fields=fields,
        )

    def to_decline(self) -> GatewayDecline:
        return decline_for(self.response_code, self.response_text, self.transaction_id)


def format_amount(amount: Decimal, currency: str) -> str:
    exponent = currency_exponent(currency)
    quantum = Decimal(1).scaleb(-exponent)
    return f"{Decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP):f}"


def billing_fields(billing: BillingInfo) -> dict[str, str]:
    address = billing.address
    return {
        "first_name": billing.first_name,
        "last_name": billing.last_name,
        "address1": address.street,
        "city": address.city,
        "state": address.state,
        "zip": address.zip_code,
        "country": address.country or "US",
    }


def card_fields(card: CardDetails) -> dict[str, str]:
    return {
        "ccnumber": card.card_number,
        "ccexp": card.ccexp,
        "cvv": card.cvv,
    }


class NMIClient(BasePaymentClient):
    provider = "nmi"

    def __init__(
        self,
        *,
        api_url: str,
        api_key: str,
        username: str,
        password: str,
        timeouts: Optional[dict[str, float]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(timeouts=timeouts, auth=(username, password), transport=transport)
        self._api_url = api_url
        self._api_key = api_key

    def _form(self, operation: str, **fields: str) -> dict[str, str]:
        return {"security_key": self._api_key, "type": operation, **fields}

    async def _call(self, operation: str, form: dict[str, str]) -> GatewayReply:
        body = await self._post_form(self._api_url, form, operation=operation)
        try:
            return GatewayReply.parse(body)
        except ProtocolError as exc:
            self._log("payment_gateway_protocol_error", operation=operation, level="error", **(exc.details or {}))
            raise

    def _require(self, reply: GatewayReply, attr: str, operation: str) -> str:
        value = getattr(reply, attr)
        if not value:
            self._log(
                "payment_gateway_protocol_error",
                operation=operation,
                reason="missing_field",
                missing=attr,
                level="error",
            )
            raise ProtocolError(details={"reason": "missing_field", "field": attr, "operation": operation})
        return value

    def _declined(self, reply: GatewayReply, operation: str, **context: str) -> GatewayDecline:
        self._log(
            "payment_gateway_declined",
            operation=operation,
            response=reply.response,
            response_code=reply.response_code,
            response_text=reply.response_text,
            transaction_id=reply.transaction_id,
            level="warning",
            **context,
        )
        return reply.to_decline()

    async def tokenize(self, card: CardDetails, customer_id: str) -> TokenizeResult:
        form = self._form(
            "tokenize",
            **card_fields(card),
            customer_vault="add_customer",
            customer_vault_id=customer_id,
            **billing_fields(card.billing()),
        )
        reply = await self._call("tokenize", form)
        if not reply.approved:
            raise self._declined(reply, "tokenize", customer_id=customer_id)
        token = self._require(reply, "token", "tokenize")
        self._log("payment_card_tokenized", customer_id=customer_id, last4=card.last4)
        return TokenizeResult(token_id=token, customer_id=reply.customer_vault_id or customer_id)

    async def charge(
        self,
        *,
        amount_minor: int,
        currency: str,
        method: PaymentMethod,
        billing: Optional[BillingInfo],
        order_id: str,
        description: str,
    ) -> ChargeResult:
        if amount_minor <= 0:
            raise DomainValidationException("Charge amount must be positive", field="amount")

        form = self._form(
            "sale",
            amount=format_amount(from_minor_units(amount_minor, currency), currency),
            currency=currency.upper(),
        )
        if isinstance(method, TokenPayment):
            form["payment_token"] = method.token_id
        elif isinstance(method, CardPayment):
            form.update(card_fields(method.card))
            billing = billing or method.card.billing()
        else:
            raise DomainValidationException("Unsupported payment method", field="method")
        if billing is not None:
            form.update(billing_fields(billing))
        form.update(orderid=order_id, order_description=description, customer_receipt="true")

        reply = await self._call("sale", form)
        if not reply.approved:
            raise self._declined(reply, "sale", order_id=order_id)
        transaction_id = self._require(reply, "transaction_id", "sale")
        self._log("payment_charge_approved", order_id=order_id, transaction_id=transaction_id)
        return ChargeResult(
            transaction_id=transaction_id,
            auth_code=reply.auth_code,
            avs_response=reply.avs_response,
            cvv_response=reply.cvv_response,
            order_id=reply.order_id or order_id,
        )

    async def refund(self, transaction_id: str, amount: Decimal) -> GatewayRefundResult:
        if amount is None or Decimal(amount) <= 0:
            raise DomainValidationException("Refund amount must be positive", field="amount")
        if not transaction_id:
            raise DomainValidationException("Transaction id is required", field="transaction_id")

        form = self._form(
            "refund",
            transactionid=transaction_id,
            amount=format_amount(Decimal(amount), "USD"),
        )
        reply = await self._call("refund", form)
        if not reply.approved:
            raise self._declined(reply, "refund", original_transaction_id=transaction_id)
        refund_id = self._require(reply, "transaction_id", "refund")
        self._log("payment_refund_approved", transaction_id=transaction_id, refund_id=refund_id)
        return GatewayRefundResult(refund_id=refund_id)
