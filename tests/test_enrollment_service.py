import pytest

from application.dtos.enrollments import CreateEnrollment
from domain.common.exceptions import DomainValidationException
from domain.enrollment.exceptions import (
    CourseNotFoundException,
    EnrollmentNotFoundException,
    InvalidTransitionException,
    SeatUnavailableException,
)
from domain.enrollment.state_machine import EnrollmentStatus


@pytest.mark.asyncio
async def test_create_enrollment_locks_course_price(store, enrollment_service):
    store.add_course(spots=2, price="450.00")

    view = await enrollment_service.create_enrollment(
        CreateEnrollment(courseId="c1", studentId="s1", parentId="p1", contactEmail="Parent@Example.com")
    )

    assert view.status == "pending"
    assert str(view.payment_details.amount) == "450.00"
    assert view.contact_email == "parent@example.com"
    assert view.seat_reserved is False
    assert store.courses["c1"].available_spots == 2
    assert view.id in store.enrollments


@pytest.mark.asyncio
async def test_create_enrollment_requires_course(enrollment_service):
    with pytest.raises(CourseNotFoundException):
        await enrollment_service.create_enrollment(CreateEnrollment(courseId="nope", studentId="s1", parentId="p1"))


@pytest.mark.asyncio
async def test_get_unknown_enrollment(enrollment_service):
    with pytest.raises(EnrollmentNotFoundException):
        await enrollment_service.get_enrollment("missing")


@pytest.mark.asyncio
async def test_confirm_paid_enrollment_and_repeat(store, enrollment_service, dispatcher, sender):
    store.add_course()
    store.add_enrollment("e1", status=EnrollmentStatus.PAID, seat_reserved=True)

    first = await enrollment_service.confirm("e1")
    again = await enrollment_service.confirm("e1")

    assert first.status == "confirmed"
    assert again.status == "confirmed"
    await dispatcher.drain()
    assert sender.templates() == ["enrollment_confirmation"]


@pytest.mark.asyncio
async def test_confirm_pending_is_rejected(store, enrollment_service):
    store.add_course()
    store.add_enrollment("e1")
    with pytest.raises(InvalidTransitionException):
        await enrollment_service.confirm("e1")


@pytest.mark.asyncio
async def test_cancel_returns_reserved_seat(store, enrollment_service):
    store.add_course(spots=0, max_students=1)
    store.add_enrollment("e1", status=EnrollmentStatus.CONFIRMED, seat_reserved=True)

    view = await enrollment_service.cancel("e1")

    assert view.status == "cancelled"
    assert view.seat_reserved is False
    assert store.courses["c1"].available_spots == 1
    with pytest.raises(InvalidTransitionException):
        await enrollment_service.cancel("e1")
    assert store.courses["c1"].available_spots == 1


@pytest.mark.asyncio
async def test_cancel_without_seat_leaves_spots(store, enrollment_service):
    store.add_course(spots=0, max_students=1)
    store.add_enrollment("e1", status=EnrollmentStatus.CONFIRMED, seat_reserved=False)

    await enrollment_service.cancel("e1")
    assert store.courses["c1"].available_spots == 0


@pytest.mark.asyncio
async def test_reconcile_takes_missing_seat_and_clears_flag(store, enrollment_service):
    store.add_course(spots=1)
    store.add_enrollment(
        "e1",
        status=EnrollmentStatus.PAID,
        needs_reconciliation=True,
        reconciliation_reason="seat_unavailable_after_charge",
    )

    flagged = await enrollment_service.list_reconciliation()
    assert [v.id for v in flagged] == ["e1"]

    view = await enrollment_service.reconcile("e1")

    assert view.needs_reconciliation is False
    assert view.seat_reserved is True
    assert store.courses["c1"].available_spots == 0
    assert await enrollment_service.list_reconciliation() == []


@pytest.mark.asyncio
async def test_reconcile_on_full_course_keeps_flag(store, enrollment_service):
    store.add_course(spots=0)
    store.add_enrollment("e1", status=EnrollmentStatus.PAID, needs_reconciliation=True)

    with pytest.raises(SeatUnavailableException):
        await enrollment_service.reconcile("e1")
    assert store.enrollments["e1"].needs_reconciliation is True


@pytest.mark.asyncio
async def test_reconcile_requires_flag(store, enrollment_service):
    store.add_course()
    store.add_enrollment("e1", status=EnrollmentStatus.PAID)
    with pytest.raises(DomainValidationException):
        await enrollment_service.reconcile("e1")


@pytest.mark.asyncio
async def test_course_reminders_go_to_confirmed_enrollments(store, enrollment_service, dispatcher, sender):
    store.add_course(spots=5)
    store.add_enrollment("e1", status=EnrollmentStatus.CONFIRMED, contact_email="a@example.com")
    store.add_enrollment("e2", status=EnrollmentStatus.CONFIRMED, contact_email=None)
    store.add_enrollment("e3", status=EnrollmentStatus.PENDING, contact_email="c@example.com")

    result = await enrollment_service.send_course_reminders("c1")

    assert result.scheduled == 1
    await dispatcher.drain()
    assert sender.templates() == ["course_reminder"]
    assert sender.sent[0][0] == "a@example.com"
