"""
报名应用服务（application/services）- 报名创建、确认、取消、对账与课程提醒
"""
from typing import Callable, List

from application.dtos.enrollments import CreateEnrollment, EnrollmentView, ReminderResult
from application.services.notification_dispatcher import NotificationDispatcher
from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.course.entity import Course
from domain.enrollment.entity import Enrollment
from domain.enrollment.events import EnrollmentStatusChanged
from domain.enrollment.exceptions import (
    CourseNotFoundException,
    EnrollmentConflictException,
    EnrollmentNotFoundException,
    SeatUnavailableException,
)
from domain.enrollment.state_machine import EnrollmentStatus, REFUNDABLE_STATES, TERMINAL_STATES


logger = get_logger(__name__)


class EnrollmentApplicationService:
    """报名应用服务 - 状态写入均为条件写，与支付流程互不覆盖"""

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], notifier: NotificationDispatcher):
        self._uow_factory = uow_factory
        self._notifier = notifier

    async def _load(self, enrollment_id: str) -> tuple[Enrollment, Course]:
        async with self._uow_factory(readonly=True) as uow:
            enrollment = await uow.enrollment_repository.get_by_id(enrollment_id)
            if enrollment is None:
                raise EnrollmentNotFoundException(enrollment_id)
            course = await uow.course_repository.get_by_id(enrollment.course_id)
            if course is None:
                raise CourseNotFoundException(enrollment.course_id)
        return enrollment, course

    def _notify(self, enrollment: Enrollment, previous: EnrollmentStatus, course: Course) -> None:
        self._notifier.notify(
            EnrollmentStatusChanged.from_enrollment(enrollment, previous, course_title=course.title)
        )

    async def create_enrollment(self, data: CreateEnrollment) -> EnrollmentView:
        """创建 pending 报名（锁定当前课程价格，不占用名额）"""
        async with self._uow_factory() as uow:
            course = await uow.course_repository.get_by_id(data.course_id)
            if course is None:
                raise CourseNotFoundException(data.course_id)
            enrollment = Enrollment.new(
                course_id=course.id,
                student_id=data.student_id,
                parent_id=data.parent_id,
                amount=course.price,
                currency=course.currency,
                contact_email=data.contact_email,
                notes=data.notes,
            )
            created = await uow.enrollment_repository.create(enrollment)
        logger.info("enrollment_created", enrollment_id=created.id, course_id=course.id)
        return EnrollmentView.from_entity(created)

    async def get_enrollment(self, enrollment_id: str) -> EnrollmentView:
        async with self._uow_factory(readonly=True) as uow:
            enrollment = await uow.enrollment_repository.get_by_id(enrollment_id)
            if enrollment is None:
                raise EnrollmentNotFoundException(enrollment_id)
        return EnrollmentView.from_entity(enrollment)

    async def confirm(self, enrollment_id: str) -> EnrollmentView:
        """paid -> confirmed；已确认时幂等返回"""
        enrollment, course = await self._load(enrollment_id)
        previous = enrollment.status
        updated = enrollment.copy()
        if not updated.mark_confirmed():
            return EnrollmentView.from_entity(enrollment)

        async with self._uow_factory() as uow:
            saved = await uow.enrollment_repository.save_if_status(updated, expected_status=previous)
        if not saved:
            raise EnrollmentConflictException(enrollment_id)

        logger.info("enrollment_confirmed", enrollment_id=enrollment_id)
        self._notify(updated, previous, course)
        return EnrollmentView.from_entity(updated)

    async def cancel(self, enrollment_id: str) -> EnrollmentView:
        """confirmed -> cancelled；已占用的名额归还一次"""
        enrollment, course = await self._load(enrollment_id)
        previous = enrollment.status
        updated = enrollment.copy()
        updated.mark_cancelled()

        async with self._uow_factory() as uow:
            if updated.seat_reserved:
                returned = await uow.course_repository.increment_available_spots(course.id)
                if not returned:
                    logger.warning("seat_return_skipped_at_capacity", course_id=course.id)
                updated.seat_reserved = False
            if not await uow.enrollment_repository.save_if_status(updated, expected_status=previous):
                raise EnrollmentConflictException(enrollment_id)

        logger.info("enrollment_cancelled", enrollment_id=enrollment_id)
        self._notify(updated, previous, course)
        return EnrollmentView.from_entity(updated)

    async def list_reconciliation(self, skip: int = 0, limit: int = 100) -> List[EnrollmentView]:
        async with self._uow_factory(readonly=True) as uow:
            flagged = await uow.enrollment_repository.list_needing_reconciliation(skip=skip, limit=limit)
        return [EnrollmentView.from_entity(e) for e in flagged]

    async def reconcile(self, enrollment_id: str) -> EnrollmentView:
        """按状态修正名额并清除对账标记

        已支付/已确认但未占名额的补扣一个名额；已退款但仍占名额的归还名额。
        """
        enrollment, course = await self._load(enrollment_id)
        if not enrollment.needs_reconciliation:
            raise DomainValidationException("Enrollment is not flagged for reconciliation", field="enrollmentId")

        updated = enrollment.copy()
        async with self._uow_factory() as uow:
            if updated.status in REFUNDABLE_STATES and not updated.seat_reserved:
                if not await uow.course_repository.decrement_available_spots(course.id):
                    raise SeatUnavailableException(course.id)
                updated.seat_reserved = True
            elif updated.status in TERMINAL_STATES and updated.seat_reserved:
                if not await uow.course_repository.increment_available_spots(course.id):
                    logger.warning("seat_return_skipped_at_capacity", course_id=course.id)
                updated.seat_reserved = False
            updated.clear_reconciliation()
            if not await uow.enrollment_repository.save_if_status(updated, expected_status=enrollment.status):
                raise EnrollmentConflictException(enrollment_id)

        logger.info("enrollment_reconciled", enrollment_id=enrollment_id, seat_reserved=updated.seat_reserved)
        return EnrollmentView.from_entity(updated)

    async def send_course_reminders(self, course_id: str) -> ReminderResult:
        """向课程所有已确认报名发送开课提醒"""
        async with self._uow_factory(readonly=True) as uow:
            course = await uow.course_repository.get_by_id(course_id)
            if course is None:
                raise CourseNotFoundException(course_id)
            confirmed = await uow.enrollment_repository.list_by_course(course_id, status=EnrollmentStatus.CONFIRMED)

        scheduled = sum(1 for e in confirmed if self._notifier.send_course_reminder(e, course) is not None)
        logger.info("course_reminders_scheduled", course_id=course_id, scheduled=scheduled, total=len(confirmed))
        return ReminderResult(course_id=course_id, scheduled=scheduled)
