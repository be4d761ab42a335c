"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings, and provide
in-memory collaborators for the application services.
"""
import asyncio
import copy
import os
from decimal import Decimal
from typing import Any, Optional

# Gateway and email credentials are mandatory for settings validation
os.environ.setdefault("GATEWAY__API_URL", "https://gateway.test/api/transact.php")
os.environ.setdefault("GATEWAY__API_KEY", "test-security-key")
os.environ.setdefault("GATEWAY__USERNAME", "test-user")
os.environ.setdefault("GATEWAY__PASSWORD", "test-password")
os.environ.setdefault("EMAIL__API_KEY", "SG.test-key")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")

import pytest

from application.dtos.payments import (
    BillingAddress,
    CardDetails,
    ChargeResult,
    GatewayRefundResult,
    TokenizeResult,
)
from application.services.enrollment_service import EnrollmentApplicationService
from application.services.notification_dispatcher import NotificationDispatcher
from application.services.payment_orchestrator import PaymentOrchestrator
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.course.entity import Course
from domain.course.repository import CourseRepository
from domain.enrollment.entity import Enrollment
from domain.enrollment.repository import EnrollmentRepository
from domain.payment.repository import PaymentTokenRepository


class InMemoryStore:
    """Shared state behind every in-memory unit of work."""

    def __init__(self) -> None:
        self.enrollments: dict[str, Enrollment] = {}
        self.courses: dict[str, Course] = {}
        self.tokens: list = []
        # Number of upcoming enrollment writes that raise, to simulate a store outage
        self.failing_writes = 0

    def add_course(self, course_id: str = "c1", *, spots: int = 1, max_students: int = 10,
                   price: str = "299.00", title: str = "Karting Fundamentals") -> Course:
        course = Course(id=course_id, title=title, price=Decimal(price), available_spots=spots, max_students=max_students)
        self.courses[course_id] = course
        return course

    def add_enrollment(self, enrollment_id: str = "e1", course_id: str = "c1", *,
                       contact_email: Optional[str] = "parent@example.com", **overrides: Any) -> Enrollment:
        course = self.courses[course_id]
        enrollment = Enrollment.new(
            course_id=course_id,
            student_id="s1",
            parent_id="p1",
            amount=course.price,
            currency=course.currency,
            contact_email=contact_email,
        )
        enrollment.id = enrollment_id
        for key, value in overrides.items():
            setattr(enrollment, key, value)
        self.enrollments[enrollment_id] = enrollment
        return enrollment

    def snapshot(self) -> tuple:
        return copy.deepcopy((self.enrollments, self.courses, self.tokens))

    def restore(self, snap: tuple) -> None:
        self.enrollments, self.courses, self.tokens = copy.deepcopy(snap)


class InMemoryEnrollmentRepository(EnrollmentRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    def _check_write(self) -> None:
        if self.store.failing_writes > 0:
            self.store.failing_writes -= 1
            raise RuntimeError("database unavailable")

    async def create(self, enrollment):
        self.store.enrollments[enrollment.id] = enrollment.copy()
        return enrollment.copy()

    async def get_by_id(self, enrollment_id):
        found = self.store.enrollments.get(enrollment_id)
        return found.copy() if found else None

    async def get_by_transaction_id(self, transaction_id):
        for e in self.store.enrollments.values():
            if e.payment_details.transaction_id == transaction_id:
                return e.copy()
        return None

    async def list_by_course(self, course_id, status=None):
        return [
            e.copy() for e in self.store.enrollments.values()
            if e.course_id == course_id and (status is None or e.status == status)
        ]

    async def list_needing_reconciliation(self, skip=0, limit=100):
        flagged = [e.copy() for e in self.store.enrollments.values() if e.needs_reconciliation]
        return flagged[skip:skip + limit]

    async def claim_attempt(self, enrollment_id, *, expected_status, attempt_id, now, stale_before):
        current = self.store.enrollments.get(enrollment_id)
        if current is None or current.status != expected_status:
            return False
        if current.active_attempt_id and current.attempt_started_at and current.attempt_started_at > stale_before:
            return False
        current.claim(attempt_id, now)
        return True

    async def release_attempt(self, enrollment_id, attempt_id):
        current = self.store.enrollments.get(enrollment_id)
        if current is None or current.active_attempt_id != attempt_id:
            return False
        current.release_claim()
        return True

    async def save_if_status(self, enrollment, *, expected_status, expected_attempt_id=None):
        self._check_write()
        current = self.store.enrollments.get(enrollment.id)
        if current is None or current.status != expected_status:
            return False
        if current.active_attempt_id != expected_attempt_id:
            return False
        saved = enrollment.copy()
        saved.release_claim()
        self.store.enrollments[enrollment.id] = saved
        return True


class InMemoryCourseRepository(CourseRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get_by_id(self, course_id):
        found = self.store.courses.get(course_id)
        return copy.copy(found) if found else None

    async def decrement_available_spots(self, course_id):
        course = self.store.courses.get(course_id)
        if course is None or course.available_spots <= 0:
            return False
        course.available_spots -= 1
        return True

    async def increment_available_spots(self, course_id):
        course = self.store.courses.get(course_id)
        if course is None or course.available_spots >= course.max_students:
            return False
        course.available_spots += 1
        return True


class InMemoryPaymentTokenRepository(PaymentTokenRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def save(self, token):
        self.store.tokens = [t for t in self.store.tokens if t.token_id != token.token_id]
        self.store.tokens.append(token)
        return token

    async def get_latest_for_customer(self, customer_id):
        matches = [t for t in self.store.tokens if t.customer_id == customer_id]
        return matches[-1] if matches else None


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """Snapshot on enter, restore on rollback."""

    def __init__(self, store: InMemoryStore, *, readonly: bool = False):
        super().__init__(readonly=readonly)
        self.store = store
        self._snapshot = None

    async def __aenter__(self):
        self._snapshot = self.store.snapshot()
        self.enrollment_repository = InMemoryEnrollmentRepository(self.store)
        self.course_repository = InMemoryCourseRepository(self.store)
        self.payment_token_repository = InMemoryPaymentTokenRepository(self.store)
        return self

    async def commit(self):
        self._committed = True

    async def rollback(self):
        if self._snapshot is not None:
            self.store.restore(self._snapshot)
        self._committed = False


class ScriptedGateway:
    """PaymentGateway double: each call pops the next scripted result or exception."""

    provider = "scripted"

    def __init__(self) -> None:
        self.charges: list[Any] = []
        self.tokenizations: list[Any] = []
        self.refunds: list[Any] = []
        self.charge_calls: list[dict] = []
        self.tokenize_calls: list[tuple] = []
        self.refund_calls: list[tuple] = []
        # Set to an asyncio.Event to hold charges until the test releases them
        self.charge_gate: Optional[asyncio.Event] = None
        self.closed = False

    @staticmethod
    def _next(script: list, default: Any) -> Any:
        outcome = script.pop(0) if script else default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def tokenize(self, card, customer_id):
        self.tokenize_calls.append((card, customer_id))
        return self._next(self.tokenizations, TokenizeResult(token_id=f"tok-{len(self.tokenize_calls)}", customer_id=customer_id))

    async def charge(self, **kwargs):
        self.charge_calls.append(kwargs)
        if self.charge_gate is not None:
            await self.charge_gate.wait()
        return self._next(self.charges, ChargeResult(transaction_id="T100", auth_code="123456", order_id=kwargs["order_id"]))

    async def refund(self, transaction_id, amount):
        self.refund_calls.append((transaction_id, amount))
        return self._next(self.refunds, GatewayRefundResult(refund_id=f"R-{transaction_id}"))

    async def aclose(self):
        self.closed = True


class RecordingEmailSender:
    def __init__(self, fail_times: int = 0) -> None:
        self.sent: list[tuple] = []
        self.attempts = 0
        self.fail_times = fail_times

    async def send_template_email(self, to, template, data):
        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise RuntimeError("email provider unavailable")
        self.sent.append((to, template, data))

    def templates(self) -> list[str]:
        return [template.value for _, template, _ in self.sent]


def make_card(**overrides) -> CardDetails:
    fields = dict(
        first_name="Ada",
        last_name="Lovelace",
        address=BillingAddress(street="1 Pit Lane", city="Austin", state="TX", zip_code="78701"),
        card_number="4111111111111111",
        expiry_month="9",
        expiry_year="2029",
        cvv="123",
    )
    fields.update(overrides)
    return CardDetails(**fields)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def uow_factory(store):
    def _factory(*, readonly: bool = False) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(store, readonly=readonly)

    return _factory


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def dispatcher(sender) -> NotificationDispatcher:
    return NotificationDispatcher(
        sender,
        support_email="support@akwracing.com",
        website_url="https://akwracing.com",
        max_attempts=3,
        backoff_base=0,
    )


@pytest.fixture
def orchestrator(uow_factory, gateway, dispatcher) -> PaymentOrchestrator:
    return PaymentOrchestrator(
        uow_factory=uow_factory,
        gateway=gateway,
        notifier=dispatcher,
        tokenize_cards=False,
        auto_confirm=False,
    )


@pytest.fixture
def enrollment_service(uow_factory, dispatcher) -> EnrollmentApplicationService:
    return EnrollmentApplicationService(uow_factory=uow_factory, notifier=dispatcher)


@pytest.fixture
def card() -> CardDetails:
    return make_card()
