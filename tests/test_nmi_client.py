from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest

from application.dtos.payments import CardPayment, TokenPayment
from domain.common.exceptions import DomainValidationException
from domain.payment.exceptions import (
    GatewayDecline,
    GatewayUnavailable,
    InvalidCardNumber,
    InvalidExpiry,
    ProtocolError,
)
from infrastructure.external.payments.nmi_client import GatewayReply, NMIClient


API_URL = "https://gateway.test/api/transact.php"


class Recorder:
    """MockTransport handler replying with a fixed body and keeping the posted forms."""

    def __init__(self, body: str = "", status_code: int = 200):
        self.body = body
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, text=self.body)

    @property
    def form(self) -> dict[str, str]:
        parsed = parse_qs(self.requests[-1].content.decode(), keep_blank_values=True)
        return {k: v[0] for k, v in parsed.items()}


def _client(handler) -> NMIClient:
    return NMIClient(
        api_url=API_URL,
        api_key="sk-test",
        username="user",
        password="pass",
        transport=httpx.MockTransport(handler),
    )


async def _charge(client: NMIClient, method=None, amount_minor: int = 29900):
    return await client.charge(
        amount_minor=amount_minor,
        currency="USD",
        method=method or TokenPayment(token_id="tok-1"),
        billing=None,
        order_id="e1-k1",
        description="Enrollment e1",
    )


@pytest.mark.asyncio
async def test_charge_with_card_sends_sale_form(card):
    rec = Recorder("response=1&responsetext=SUCCESS&authcode=123456&transactionid=T100&response_code=100&orderid=e1-k1")
    client = _client(rec)
    result = await _charge(client, CardPayment(card=card))
    await client.aclose()

    assert result.transaction_id == "T100"
    assert result.auth_code == "123456"
    form = rec.form
    assert form["type"] == "sale"
    assert form["security_key"] == "sk-test"
    assert form["amount"] == "299.00"
    assert form["currency"] == "USD"
    assert form["ccnumber"] == "4111111111111111"
    assert form["ccexp"] == "0929"
    assert form["cvv"] == "123"
    assert form["first_name"] == "Ada"
    assert form["address1"] == "1 Pit Lane"
    assert form["zip"] == "78701"
    assert form["country"] == "US"
    assert form["orderid"] == "e1-k1"
    assert form["customer_receipt"] == "true"
    assert "payment_token" not in form
    assert rec.requests[-1].headers["authorization"].startswith("Basic ")


@pytest.mark.asyncio
async def test_charge_with_token_sends_payment_token():
    rec = Recorder("response=1&transactionid=T101&authcode=A")
    client = _client(rec)
    await _charge(client)
    assert rec.form["payment_token"] == "tok-1"
    assert "ccnumber" not in rec.form


@pytest.mark.asyncio
async def test_charge_rejects_non_positive_amount_before_network():
    rec = Recorder("response=1&transactionid=T1")
    client = _client(rec)
    with pytest.raises(DomainValidationException):
        await _charge(client, amount_minor=0)
    assert rec.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "code,exc_type,message",
    [
        ("200", InvalidCardNumber, "Invalid card number"),
        ("201", InvalidExpiry, "Invalid expiry date"),
        ("300", GatewayDecline, "DECLINE"),
    ],
)
async def test_decline_codes_map_to_kinds(code, exc_type, message):
    rec = Recorder(f"response=2&responsetext=DECLINE&response_code={code}&transactionid=T9")
    client = _client(rec)
    with pytest.raises(exc_type) as exc_info:
        await _charge(client)
    assert type(exc_info.value) is exc_type
    assert exc_info.value.message == message
    assert exc_info.value.response_code == code
    assert exc_info.value.transaction_id == "T9"
    assert exc_info.value.public_code == code


@pytest.mark.asyncio
async def test_gateway_error_response_is_a_decline():
    rec = Recorder("response=3&responsetext=Duplicate transaction&response_code=300")
    with pytest.raises(GatewayDecline) as exc_info:
        await _charge(_client(rec))
    assert exc_info.value.message == "Duplicate transaction"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        "response=4&transactionid=T1",
        "responsetext=SUCCESS&transactionid=T1",
        "<html>maintenance</html>",
        "",
    ],
)
async def test_unknown_replies_are_protocol_errors(body):
    with pytest.raises(ProtocolError) as exc_info:
        await _charge(_client(Recorder(body)))
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_approved_sale_without_transaction_id_is_protocol_error():
    with pytest.raises(ProtocolError) as exc_info:
        await _charge(_client(Recorder("response=1&authcode=A")))
    assert exc_info.value.details["field"] == "transaction_id"


@pytest.mark.asyncio
async def test_server_error_is_unavailable():
    with pytest.raises(GatewayUnavailable) as exc_info:
        await _charge(_client(Recorder("oops", status_code=503)))
    assert not isinstance(exc_info.value, ProtocolError)
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_client_error_status_is_protocol_error():
    with pytest.raises(ProtocolError):
        await _charge(_client(Recorder("bad request", status_code=400)))


@pytest.mark.asyncio
async def test_timeout_is_unavailable():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayUnavailable) as exc_info:
        await _charge(_client(handler))
    assert exc_info.value.details["reason"] == "timeout"


@pytest.mark.asyncio
async def test_connection_failure_is_unavailable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GatewayUnavailable) as exc_info:
        await _charge(_client(handler))
    assert exc_info.value.details["reason"] == "transport"


@pytest.mark.asyncio
async def test_tokenize_adds_vault_customer(card):
    rec = Recorder("response=1&responsetext=Customer Added&token=tok-77&customer_vault_id=p1")
    client = _client(rec)
    result = await client.tokenize(card, "p1")
    assert result.token_id == "tok-77"
    assert result.customer_id == "p1"
    form = rec.form
    assert form["type"] == "tokenize"
    assert form["customer_vault"] == "add_customer"
    assert form["customer_vault_id"] == "p1"
    assert form["ccexp"] == "0929"


@pytest.mark.asyncio
async def test_tokenize_without_token_is_protocol_error(card):
    with pytest.raises(ProtocolError):
        await _client(Recorder("response=1&responsetext=OK")).tokenize(card, "p1")


@pytest.mark.asyncio
async def test_refund_sends_original_transaction():
    rec = Recorder("response=1&transactionid=R500")
    result = await _client(rec).refund("T100", Decimal("299"))
    assert result.refund_id == "R500"
    assert rec.form["type"] == "refund"
    assert rec.form["transactionid"] == "T100"
    assert rec.form["amount"] == "299.00"


@pytest.mark.asyncio
async def test_refund_rejects_non_positive_amount():
    rec = Recorder("response=1&transactionid=R1")
    with pytest.raises(DomainValidationException):
        await _client(rec).refund("T100", Decimal("0"))
    assert rec.requests == []


def test_reply_parser_keeps_first_occurrence_and_blank_values():
    reply = GatewayReply.parse("response=2&response_code=200&response_code=300&authcode=&responsetext=Invalid")
    assert reply.response_code == "200"
    assert reply.auth_code is None
    assert reply.fields["authcode"] == ""
    assert not reply.approved


@pytest.mark.parametrize(
    "body",
    [
        "response=1&responsetext=SUCCESS&transactionid=T100&response_code=100&",
        "response=1&&responsetext=SUCCESS&transactionid=T100&response_code=100\n",
    ],
)
def test_reply_parser_ignores_empty_segments(body):
    reply = GatewayReply.parse(body)
    assert reply.approved
    assert reply.transaction_id == "T100"
    assert reply.response_code == "100"
    assert "" not in reply.fields


@pytest.mark.asyncio
async def test_approved_sale_with_trailing_separator_succeeds():
    result = await _charge(_client(Recorder("response=1&responsetext=SUCCESS&authcode=123456&transactionid=T100&response_code=100&")))
    assert result.transaction_id == "T100"
