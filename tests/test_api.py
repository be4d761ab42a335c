import pytest
from fastapi.testclient import TestClient

from domain.enrollment.state_machine import EnrollmentStatus
from domain.payment.exceptions import GatewayUnavailable, InvalidCardNumber, ProtocolError
from main import create_app


CARD = {
    "firstName": "Ada",
    "lastName": "Lovelace",
    "address": {"street": "1 Pit Lane", "city": "Austin", "state": "TX", "zipCode": "78701"},
    "cardNumber": "4111 1111 1111 1111",
    "expiryMonth": "09",
    "expiryYear": "29",
    "cvv": "123",
}


@pytest.fixture
def client(store, uow_factory, gateway, sender):
    store.add_course(spots=1)
    store.add_enrollment("e1")
    app = create_app(gateway=gateway, email_sender=sender, uow_factory=uow_factory)
    with TestClient(app) as test_client:
        yield test_client


def _pay(client, **overrides):
    payload = {"enrollmentId": "e1", "courseId": "c1", "paymentDetails": CARD, "idempotencyKey": "k1"}
    payload.update(overrides)
    return client.post("/api/v1/payment/process", json=payload)


def test_routes_registered():
    from main import app
    assert app.url_path_for("process_payment") == "/api/v1/payment/process"
    assert app.url_path_for("refund_payment") == "/api/v1/payment/refund"
    assert app.url_path_for("tokenize_card") == "/api/v1/payment/tokenize"
    assert app.url_path_for("get_enrollment", enrollment_id="e1") == "/api/v1/enrollments/e1"
    assert app.url_path_for("send_course_reminders", course_id="c1") == "/api/v1/courses/c1/reminders"


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "data": {"status": "healthy"}}


def test_process_payment_success(client, store, sender):
    resp = _pay(client)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["transactionId"] == "T100"
    assert body["authCode"] == "123456"
    assert body["status"] in {"paid", "confirmed"}
    assert store.courses["c1"].available_spots == 0
    assert "X-Request-ID" in resp.headers


def test_decline_renders_gateway_code(client, gateway, store):
    gateway.charges.append(InvalidCardNumber(response_code="200", response_text="Invalid Credit Card Number"))

    resp = _pay(client)

    assert resp.status_code == 402
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "Invalid card number"
    assert body["code"] == "200"
    assert body["retryable"] is False
    assert body["requestId"]
    assert body["timestamp"].endswith("Z")
    assert store.enrollments["e1"].status == EnrollmentStatus.PAYMENT_FAILED


def test_gateway_unavailable_is_retryable(client, gateway):
    gateway.charges.append(GatewayUnavailable())

    resp = _pay(client, idempotencyKey="k2")

    assert resp.status_code == 503
    assert resp.json()["code"] == "GatewayUnavailable"
    assert resp.json()["retryable"] is True


def test_protocol_error_is_bad_gateway(client, gateway):
    gateway.charges.append(ProtocolError())

    resp = _pay(client)

    assert resp.status_code == 502
    assert resp.json()["code"] == "ProtocolError"
    assert resp.json()["retryable"] is False


def test_request_id_is_echoed_into_errors(client):
    resp = client.post(
        "/api/v1/payment/process",
        json={"enrollmentId": "missing", "courseId": "c1", "paymentDetails": CARD},
        headers={"X-Request-ID": "req-123"},
    )
    assert resp.status_code == 404
    assert resp.json()["code"] == "EnrollmentNotFound"
    assert resp.json()["requestId"] == "req-123"
    assert resp.headers["X-Request-ID"] == "req-123"


def test_invalid_payload_is_422(client):
    resp = client.post("/api/v1/payment/process", json={"courseId": "c1"})
    assert resp.status_code == 422
    body = resp.json()
    assert body["code"] == "ValidationError"
    assert body["success"] is False


def test_seat_unavailable_is_conflict(client, store):
    store.courses["c1"].available_spots = 0
    resp = _pay(client)
    assert resp.status_code == 409
    assert resp.json()["code"] == "SeatUnavailable"


def test_persistence_failure_uses_neutral_message(client, store):
    store.failing_writes = 1
    resp = _pay(client)
    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "PersistenceError"
    assert body["error"].startswith("We're confirming your payment")
    assert body["retryable"] is False


def test_refund_flow(client, store):
    _pay(client)

    resp = client.post("/api/v1/payment/refund", json={"transactionId": "T100", "amount": "299.00"})
    assert resp.status_code == 200
    assert resp.json()["refundId"] == "R-T100"
    assert store.courses["c1"].available_spots == 1

    again = client.post("/api/v1/payment/refund", json={"transactionId": "T100", "amount": "299.00"})
    assert again.status_code == 409
    assert again.json()["code"] == "InvalidTransition"


def test_tokenize(client, store):
    resp = client.post("/api/v1/payment/tokenize", json={"paymentDetails": CARD, "customerId": "p1"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "tokenId": "tok-1", "customerId": "p1"}
    assert store.tokens[0].last4 == "1111"


def test_enrollment_lifecycle_routes(client, store):
    created = client.post(
        "/api/v1/enrollments",
        json={"courseId": "c1", "studentId": "s2", "parentId": "p2", "contactEmail": "p2@example.com"},
    )
    assert created.status_code == 201
    data = created.json()["data"]
    assert data["status"] == "pending"
    assert data["paymentDetails"]["amount"] == "299.00"

    fetched = client.get(f"/api/v1/enrollments/{data['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["data"]["courseId"] == "c1"

    confirm = client.post(f"/api/v1/enrollments/{data['id']}/confirm")
    assert confirm.status_code == 409

    missing = client.get("/api/v1/enrollments/nope")
    assert missing.status_code == 404


def test_reconciliation_routes(client, store):
    store.add_enrollment("e9", status=EnrollmentStatus.PAID, needs_reconciliation=True)

    listed = client.get("/api/v1/enrollments/reconciliation")
    assert listed.status_code == 200
    assert [e["id"] for e in listed.json()["data"]] == ["e9"]

    reconciled = client.post("/api/v1/enrollments/e9/reconcile")
    assert reconciled.status_code == 200
    assert reconciled.json()["data"]["seatReserved"] is True
    assert store.courses["c1"].available_spots == 0


def test_course_reminders_route(client, store):
    store.add_enrollment("e5", status=EnrollmentStatus.CONFIRMED)
    resp = client.post("/api/v1/courses/c1/reminders")
    assert resp.status_code == 202
    assert resp.json()["data"] == {"courseId": "c1", "scheduled": 1}


def test_unknown_route_uses_envelope(client):
    resp = client.get("/api/v1/nothing-here")
    assert resp.status_code == 404
    assert resp.json()["success"] is False
    assert resp.json()["code"] == "HTTPError"
