"""
Notification dispatcher: turns committed enrollment status changes into
transactional emails.

Sends run as detached asyncio tasks so a slow or failing email provider never
blocks or fails the payment flow. Each send is retried with exponential
backoff; a final failure is logged and dropped.
"""
from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Awaitable, Optional

from tenacity import AsyncRetrying, RetryError, retry_if_exception, stop_after_attempt, wait_exponential

from application.ports.email_sender import EmailSender, EmailTemplate
from core.logging_config import get_logger
from domain.course.entity import Course
from domain.enrollment.entity import Enrollment
from domain.enrollment.events import EnrollmentStatusChanged
from domain.enrollment.state_machine import EnrollmentStatus


logger = get_logger(__name__)


TEMPLATE_BY_STATUS: dict[EnrollmentStatus, EmailTemplate] = {
    EnrollmentStatus.PAID: EmailTemplate.PAYMENT_CONFIRMATION,
    EnrollmentStatus.PAYMENT_FAILED: EmailTemplate.PAYMENT_FAILED,
    EnrollmentStatus.CONFIRMED: EmailTemplate.ENROLLMENT_CONFIRMATION,
}


def _format_amount(amount: Optional[Decimal]) -> Optional[str]:
    if amount is None:
        return None
    return f"{Decimal(amount).quantize(Decimal('0.01')):f}"


def _is_transient(exc: BaseException) -> bool:
    # senders mark permanent failures with `transient = False`; anything else is retried
    return getattr(exc, "transient", True) is not False


class NotificationDispatcher:
    def __init__(
        self,
        sender: EmailSender,
        *,
        support_email: str,
        website_url: str,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
    ) -> None:
        self._sender = sender
        self._support_email = support_email
        self._website_url = website_url
        self._max_attempts = max(1, int(max_attempts))
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @staticmethod
    def template_for(status: EnrollmentStatus) -> Optional[EmailTemplate]:
        return TEMPLATE_BY_STATUS.get(EnrollmentStatus(status))

    def _common_data(self) -> dict[str, Any]:
        return {"supportEmail": self._support_email, "websiteUrl": self._website_url}

    def build_template_data(self, event: EnrollmentStatusChanged) -> dict[str, Any]:
        data = {
            "enrollmentId": event.enrollment_id,
            "courseId": event.course_id,
            "courseTitle": event.course_title,
            "amount": _format_amount(event.amount),
            "currency": event.currency,
            "transactionId": event.transaction_id,
            "status": EnrollmentStatus(event.status).value,
            **self._common_data(),
        }
        if event.failure_reason:
            data["failureReason"] = event.failure_reason
        return data

    def notify(self, event: EnrollmentStatusChanged) -> Optional[asyncio.Task]:
        """Schedule the email mapped to the event's new status, if any."""
        template = self.template_for(event.status)
        if template is None:
            logger.debug("notification_not_mapped", enrollment_id=event.enrollment_id, status=str(event.status))
            return None
        if not event.contact_email:
            logger.warning("notification_skipped_no_recipient", enrollment_id=event.enrollment_id, template=template.value)
            return None
        data = self.build_template_data(event)
        return self._spawn(self._deliver(event.contact_email, template, data, enrollment_id=event.enrollment_id))

    def send_course_reminder(self, enrollment: Enrollment, course: Course) -> Optional[asyncio.Task]:
        if not enrollment.contact_email:
            logger.warning("notification_skipped_no_recipient", enrollment_id=enrollment.id, template=EmailTemplate.COURSE_REMINDER.value)
            return None
        data = {
            "enrollmentId": enrollment.id,
            "courseId": course.id,
            "courseTitle": course.title,
            "startDate": course.start_date.isoformat() if course.start_date else None,
            "status": enrollment.status.value,
            **self._common_data(),
        }
        return self._spawn(
            self._deliver(enrollment.contact_email, EmailTemplate.COURSE_REMINDER, data, enrollment_id=enrollment.id)
        )

    def _spawn(self, coro: Awaitable[bool]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, to: str, template: EmailTemplate, data: dict[str, Any], *, enrollment_id: str) -> bool:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff_base, max=self._backoff_max),
            retry=retry_if_exception(_is_transient),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._sender.send_template_email(to, template, data)
        except RetryError as exc:
            self._log_failure(exc.last_attempt.exception(), enrollment_id, template, attempts=self._max_attempts)
            return False
        except Exception as exc:
            # permanent provider errors are not retried
            self._log_failure(exc, enrollment_id, template, attempts=retrying.statistics.get("attempt_number", 1))
            return False
        logger.info("notification_sent", enrollment_id=enrollment_id, template=template.value)
        return True

    @staticmethod
    def _log_failure(error: BaseException, enrollment_id: str, template: EmailTemplate, *, attempts: int) -> None:
        logger.error(
            "notification_failed",
            enrollment_id=enrollment_id,
            template=template.value,
            attempts=attempts,
            error=str(error),
            error_type=type(error).__name__,
        )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight sends (called at shutdown and by tests)."""
        if not self._tasks:
            return
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        if still_running:
            logger.warning("notification_drain_timeout", pending=len(still_running))
