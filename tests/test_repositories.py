from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from domain.enrollment.entity import Enrollment
from domain.enrollment.state_machine import EnrollmentStatus
from domain.payment.entity import PaymentToken
from infrastructure.database import build_engine, build_session_factory, create_tables, drop_tables
from infrastructure.models import CourseModel
from infrastructure.unit_of_work import sqlalchemy_uow_factory


@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool, connect_args={"check_same_thread": False})
    await create_tables(engine)
    yield engine
    await drop_tables(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def uow(engine):
    factory = sqlalchemy_uow_factory(build_session_factory(engine))
    async with factory() as setup:
        setup.session.add(
            CourseModel(id="c1", title="Karting Fundamentals", price=Decimal("299.00"), currency="USD",
                        available_spots=1, max_students=2)
        )
    return factory


async def _create(uow, enrollment_id="e1") -> Enrollment:
    enrollment = Enrollment.new(course_id="c1", student_id="s1", parent_id="p1",
                                amount=Decimal("299.00"), currency="USD", contact_email="parent@example.com")
    enrollment.id = enrollment_id
    async with uow() as tx:
        return await tx.enrollment_repository.create(enrollment)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.mark.asyncio
async def test_enrollment_round_trip(uow):
    created = await _create(uow)
    async with uow(readonly=True) as tx:
        loaded = await tx.enrollment_repository.get_by_id("e1")
    assert loaded.status == EnrollmentStatus.PENDING
    assert loaded.payment_details.amount == Decimal("299.00")
    assert loaded.contact_email == "parent@example.com"
    assert loaded.created_at.tzinfo is not None
    assert created.id == "e1"


@pytest.mark.asyncio
async def test_seat_decrement_stops_at_zero(uow):
    async with uow() as tx:
        assert await tx.course_repository.decrement_available_spots("c1") is True
        assert await tx.course_repository.decrement_available_spots("c1") is False
    async with uow(readonly=True) as tx:
        course = await tx.course_repository.get_by_id("c1")
    assert course.available_spots == 0


@pytest.mark.asyncio
async def test_seat_increment_capped_at_max(uow):
    async with uow() as tx:
        assert await tx.course_repository.increment_available_spots("c1") is True
        assert await tx.course_repository.increment_available_spots("c1") is False
    async with uow(readonly=True) as tx:
        course = await tx.course_repository.get_by_id("c1")
    assert course.available_spots == 2


@pytest.mark.asyncio
async def test_claim_is_exclusive_until_stale(uow):
    await _create(uow)
    now = _now()
    async with uow() as tx:
        repo = tx.enrollment_repository
        assert await repo.claim_attempt("e1", expected_status=EnrollmentStatus.PENDING, attempt_id="a1",
                                        now=now, stale_before=now - timedelta(seconds=120))
        assert not await repo.claim_attempt("e1", expected_status=EnrollmentStatus.PENDING, attempt_id="a2",
                                            now=now, stale_before=now - timedelta(seconds=120))
        assert not await repo.claim_attempt("e1", expected_status=EnrollmentStatus.PAID, attempt_id="a3",
                                            now=now, stale_before=now + timedelta(seconds=1))
        later = now + timedelta(minutes=5)
        assert await repo.claim_attempt("e1", expected_status=EnrollmentStatus.PENDING, attempt_id="a4",
                                        now=later, stale_before=later - timedelta(seconds=120))
        assert not await repo.release_attempt("e1", "a1")
        assert await repo.release_attempt("e1", "a4")


@pytest.mark.asyncio
async def test_conditional_save_requires_matching_status_and_claim(uow):
    enrollment = await _create(uow)
    now = _now()
    async with uow() as tx:
        await tx.enrollment_repository.claim_attempt("e1", expected_status=EnrollmentStatus.PENDING,
                                                     attempt_id="a1", now=now, stale_before=now)

    paid = enrollment.copy()
    paid.mark_paid(transaction_id="T100", auth_code="123456", order_id="e1-k1")
    paid.seat_reserved = True

    async with uow() as tx:
        repo = tx.enrollment_repository
        assert not await repo.save_if_status(paid, expected_status=EnrollmentStatus.PENDING)
        assert not await repo.save_if_status(paid, expected_status=EnrollmentStatus.PENDING, expected_attempt_id="zz")
        assert await repo.save_if_status(paid, expected_status=EnrollmentStatus.PENDING, expected_attempt_id="a1")
        assert not await repo.save_if_status(paid, expected_status=EnrollmentStatus.PENDING, expected_attempt_id="a1")

    async with uow(readonly=True) as tx:
        by_txn = await tx.enrollment_repository.get_by_transaction_id("T100")
    assert by_txn.status == EnrollmentStatus.PAID
    assert by_txn.seat_reserved is True
    assert by_txn.active_attempt_id is None
    assert by_txn.last_order_id == "e1-k1"


@pytest.mark.asyncio
async def test_rollback_discards_writes(uow):
    with pytest.raises(RuntimeError):
        async with uow() as tx:
            await tx.course_repository.decrement_available_spots("c1")
            raise RuntimeError("boom")
    async with uow(readonly=True) as tx:
        course = await tx.course_repository.get_by_id("c1")
    assert course.available_spots == 1


@pytest.mark.asyncio
async def test_reconciliation_and_course_listing(uow):
    enrollment = await _create(uow, "e1")
    await _create(uow, "e2")
    flagged = enrollment.copy()
    flagged.flag_for_reconciliation("seat_unavailable_after_charge")
    async with uow() as tx:
        assert await tx.enrollment_repository.save_if_status(flagged, expected_status=EnrollmentStatus.PENDING)

    async with uow(readonly=True) as tx:
        needing = await tx.enrollment_repository.list_needing_reconciliation()
        pending = await tx.enrollment_repository.list_by_course("c1", status=EnrollmentStatus.PENDING)
        confirmed = await tx.enrollment_repository.list_by_course("c1", status=EnrollmentStatus.CONFIRMED)
    assert [e.id for e in needing] == ["e1"]
    assert needing[0].reconciliation_reason == "seat_unavailable_after_charge"
    assert sorted(e.id for e in pending) == ["e1", "e2"]
    assert confirmed == []


@pytest.mark.asyncio
async def test_latest_token_for_customer(uow):
    older = PaymentToken(token_id="tok-1", customer_id="p1", last4="1111",
                         created_at=_now() - timedelta(days=1))
    newer = PaymentToken(token_id="tok-2", customer_id="p1", last4="4242")
    async with uow() as tx:
        await tx.payment_token_repository.save(older)
        await tx.payment_token_repository.save(newer)
    async with uow(readonly=True) as tx:
        latest = await tx.payment_token_repository.get_latest_for_customer("p1")
        none = await tx.payment_token_repository.get_latest_for_customer("p2")
    assert latest.token_id == "tok-2"
    assert none is None
