"""
Application service orchestrating the enrollment payment use-cases.

Depends only on the PaymentGateway port, the unit of work and the
notification dispatcher; concrete adapters are injected by the composition
root (main.py lifespan), keeping dependencies one-way.

Concurrency: before any gateway call the enrollment is claimed with a
compare-and-set on (status, no live claim). Only the holder of the claim
may write the outcome, so two racing attempts can never both charge.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from application.dtos.payments import (
    BillingInfo,
    CardDetails,
    CardPayment,
    ChargeResult,
    PaymentMethod,
    PaymentOutcome,
    ProcessPaymentRequest,
    RefundOutcome,
    RefundPaymentRequest,
    TokenizeOutcome,
    TokenizeRequest,
    TokenPayment,
    to_minor_units,
)
from application.ports.payment_gateway import PaymentGateway
from application.services.notification_dispatcher import NotificationDispatcher
from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.course.entity import Course
from domain.enrollment.entity import Enrollment
from domain.enrollment.events import EnrollmentStatusChanged
from domain.enrollment.exceptions import (
    CourseNotFoundException,
    EnrollmentNotFoundException,
    InvalidTransitionException,
    PaymentInProgressException,
    SeatUnavailableException,
)
from domain.enrollment.state_machine import (
    EnrollmentStatus,
    PAYABLE_STATES,
    REFUNDABLE_STATES,
)
from domain.payment.entity import PaymentToken
from domain.payment.exceptions import (
    GatewayDecline,
    GatewayUnavailable,
    PersistenceError,
    ReconciliationRequired,
    decline_for,
)


logger = get_logger(__name__)

RECON_SEAT_UNAVAILABLE = "seat_unavailable_after_charge"
RECON_STORE_WRITE_FAILED = "store_write_failed_after_charge"
RECON_REFUND_STORE_WRITE_FAILED = "store_write_failed_after_refund"


class _AttemptLost(Exception):
    """The conditional write found the record no longer held by this attempt."""


class PaymentOrchestrator:
    def __init__(
        self,
        *,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        notifier: NotificationDispatcher,
        tokenize_cards: bool = True,
        auto_confirm: bool = True,
        attempt_lease_seconds: float = 120,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self._notifier = notifier
        self._tokenize_cards = tokenize_cards
        self._auto_confirm = auto_confirm
        self._lease = timedelta(seconds=attempt_lease_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------ #
    # process_payment
    # ------------------------------------------------------------------ #
    async def process_payment(self, req: ProcessPaymentRequest) -> PaymentOutcome:
        key = req.idempotency_key or uuid.uuid4().hex
        order_id = f"{req.enrollment_id}-{key}"

        async with self._uow_factory(readonly=True) as uow:
            enrollment = await uow.enrollment_repository.get_by_id(req.enrollment_id)
            if enrollment is None:
                raise EnrollmentNotFoundException(req.enrollment_id)
            course = await uow.course_repository.get_by_id(req.course_id)
            if course is None:
                raise CourseNotFoundException(req.course_id)
            stored_token = None
            if not req.token_id and req.payment_details is None:
                stored_token = await uow.payment_token_repository.get_latest_for_customer(
                    req.customer_id or enrollment.parent_id
                )

        if enrollment.course_id != course.id:
            raise DomainValidationException("Enrollment does not belong to this course", field="courseId")

        if enrollment.last_order_id == order_id:
            replayed = self._replay(enrollment)
            if replayed is not None:
                return replayed

        if enrollment.status not in PAYABLE_STATES:
            raise InvalidTransitionException(
                enrollment.status.value, EnrollmentStatus.PAID.value, enrollment_id=enrollment.id
            )
        if not course.has_seat():
            logger.info("payment_rejected_no_seat", enrollment_id=enrollment.id, course_id=course.id)
            raise SeatUnavailableException(course.id)
        if not req.token_id and req.payment_details is None and stored_token is None:
            raise DomainValidationException(
                "Card details or a payment token are required", field="paymentDetails"
            )

        attempt_id = await self._claim(enrollment)
        logger.info(
            "payment_attempt_started",
            enrollment_id=enrollment.id,
            order_id=order_id,
            attempt_id=attempt_id,
            previous_status=enrollment.status.value,
        )

        try:
            method, billing = await self._resolve_method(req, enrollment, stored_token)
            result = await self.gateway.charge(
                amount_minor=to_minor_units(enrollment.payment_details.amount, enrollment.payment_details.currency),
                currency=enrollment.payment_details.currency,
                method=method,
                billing=billing,
                order_id=order_id,
                description=f"Enrollment {enrollment.id}: {course.title}",
            )
        except GatewayDecline as decline:
            await self._record_decline(enrollment, course, attempt_id, order_id, decline)
            raise
        except GatewayUnavailable as exc:
            await self._release(enrollment.id, attempt_id)
            logger.warning(
                "payment_gateway_unavailable",
                enrollment_id=enrollment.id,
                order_id=order_id,
                error_type=exc.error_type,
            )
            raise
        except DomainValidationException:
            await self._release(enrollment.id, attempt_id)
            raise

        logger.info(
            "payment_charge_succeeded",
            enrollment_id=enrollment.id,
            order_id=order_id,
            transaction_id=result.transaction_id,
        )
        return await self._record_success(enrollment, course, attempt_id, order_id, result)

    def _replay(self, enrollment: Enrollment) -> Optional[PaymentOutcome]:
        pd = enrollment.payment_details
        if enrollment.status in (EnrollmentStatus.PAID, EnrollmentStatus.CONFIRMED):
            logger.info("payment_replayed", enrollment_id=enrollment.id, order_id=enrollment.last_order_id)
            return PaymentOutcome(
                enrollment_id=enrollment.id,
                status=enrollment.status.value,
                transaction_id=pd.transaction_id,
                auth_code=pd.auth_code,
                replayed=True,
            )
        if enrollment.status == EnrollmentStatus.PAYMENT_FAILED:
            logger.info("payment_decline_replayed", enrollment_id=enrollment.id, order_id=enrollment.last_order_id)
            raise decline_for(pd.failure_code, pd.failure_reason, pd.transaction_id)
        return None

    async def _claim(self, enrollment: Enrollment) -> str:
        attempt_id = uuid.uuid4().hex
        now = self._clock()
        async with self._uow_factory() as uow:
            claimed = await uow.enrollment_repository.claim_attempt(
                enrollment.id,
                expected_status=enrollment.status,
                attempt_id=attempt_id,
                now=now,
                stale_before=now - self._lease,
            )
        if not claimed:
            raise PaymentInProgressException(enrollment.id)
        return attempt_id

    async def _release(self, enrollment_id: str, attempt_id: str) -> None:
        async with self._uow_factory() as uow:
            released = await uow.enrollment_repository.release_attempt(enrollment_id, attempt_id)
        if not released:
            logger.warning("payment_attempt_release_missed", enrollment_id=enrollment_id, attempt_id=attempt_id)

    async def _resolve_method(
        self,
        req: ProcessPaymentRequest,
        enrollment: Enrollment,
        stored_token: Optional[PaymentToken],
    ) -> tuple[PaymentMethod, Optional[BillingInfo]]:
        card = req.payment_details
        billing = card.billing() if card is not None else None
        if req.token_id:
            return TokenPayment(token_id=req.token_id), billing
        if card is not None:
            if self._tokenize_cards:
                customer_id = req.customer_id or enrollment.parent_id
                tokenized = await self.gateway.tokenize(card, customer_id)
                await self._store_token(tokenized.token_id, tokenized.customer_id, card)
                return TokenPayment(token_id=tokenized.token_id), billing
            return CardPayment(card=card), billing
        # stored_token presence is checked before claiming
        return TokenPayment(token_id=stored_token.token_id), None

    async def _store_token(self, token_id: str, customer_id: str, card: CardDetails) -> None:
        token = PaymentToken(
            token_id=token_id,
            customer_id=customer_id,
            last4=card.last4,
            expiry_month=card.expiry_month,
            expiry_year=card.expiry_year,
        )
        try:
            async with self._uow_factory() as uow:
                await uow.payment_token_repository.save(token)
        except Exception as exc:
            # The vault already holds the card; only the local shortcut is lost
            logger.warning("payment_token_store_failed", customer_id=customer_id, error=str(exc))

    async def _record_decline(
        self,
        enrollment: Enrollment,
        course: Course,
        attempt_id: str,
        order_id: str,
        decline: GatewayDecline,
    ) -> None:
        previous = enrollment.status
        updated = enrollment.copy()
        updated.mark_payment_failed(
            reason=decline.message,
            code=decline.response_code,
            transaction_id=decline.transaction_id,
            order_id=order_id,
        )
        async with self._uow_factory() as uow:
            saved = await uow.enrollment_repository.save_if_status(
                updated, expected_status=previous, expected_attempt_id=attempt_id
            )
        logger.info(
            "payment_declined",
            enrollment_id=enrollment.id,
            order_id=order_id,
            response_code=decline.response_code,
            response_text=decline.response_text,
            recorded=saved,
        )
        if not saved:
            logger.error("payment_decline_not_recorded", enrollment_id=enrollment.id, attempt_id=attempt_id)
            return
        self._notify(updated, previous, course)

    async def _record_success(
        self,
        enrollment: Enrollment,
        course: Course,
        attempt_id: str,
        order_id: str,
        result: ChargeResult,
    ) -> PaymentOutcome:
        previous = enrollment.status
        updated = enrollment.copy()
        updated.mark_paid(
            transaction_id=result.transaction_id,
            auth_code=result.auth_code,
            avs_response=result.avs_response,
            cvv_response=result.cvv_response,
            order_id=order_id,
        )

        try:
            async with self._uow_factory() as uow:
                seat_taken = await uow.course_repository.decrement_available_spots(course.id)
                updated.seat_reserved = seat_taken
                if not seat_taken:
                    updated.flag_for_reconciliation(RECON_SEAT_UNAVAILABLE)
                saved = await uow.enrollment_repository.save_if_status(
                    updated, expected_status=previous, expected_attempt_id=attempt_id
                )
                if not saved:
                    raise _AttemptLost()
        except _AttemptLost:
            logger.critical(
                "payment_persistence_failed",
                alert=True,
                enrollment_id=enrollment.id,
                transaction_id=result.transaction_id,
                order_id=order_id,
                reason="attempt_lost",
            )
            raise PersistenceError(
                enrollment_id=enrollment.id, transaction_id=result.transaction_id, reason="attempt_lost"
            )
        except Exception as exc:
            await self._flag_after_store_failure(enrollment, previous, attempt_id, order_id, result)
            logger.critical(
                "payment_persistence_failed",
                alert=True,
                enrollment_id=enrollment.id,
                transaction_id=result.transaction_id,
                order_id=order_id,
                reason=RECON_STORE_WRITE_FAILED,
                error=str(exc),
                exc_info=True,
            )
            raise PersistenceError(
                enrollment_id=enrollment.id, transaction_id=result.transaction_id, reason=RECON_STORE_WRITE_FAILED
            ) from exc

        self._notify(updated, previous, course)

        if not updated.seat_reserved:
            logger.critical(
                "payment_seat_reconciliation_required",
                alert=True,
                enrollment_id=enrollment.id,
                course_id=course.id,
                transaction_id=result.transaction_id,
            )
            raise ReconciliationRequired(
                enrollment_id=enrollment.id, transaction_id=result.transaction_id, reason=RECON_SEAT_UNAVAILABLE
            )

        final = updated
        if self._auto_confirm:
            final = await self._auto_confirm_paid(updated, course)

        return PaymentOutcome(
            enrollment_id=final.id,
            status=final.status.value,
            transaction_id=result.transaction_id,
            auth_code=result.auth_code,
        )

    async def _flag_after_store_failure(
        self,
        enrollment: Enrollment,
        previous: EnrollmentStatus,
        attempt_id: str,
        order_id: str,
        result: ChargeResult,
    ) -> None:
        """Second, smaller write: record `paid` with the reconciliation flag and no seat."""
        flagged = enrollment.copy()
        flagged.mark_paid(
            transaction_id=result.transaction_id,
            auth_code=result.auth_code,
            avs_response=result.avs_response,
            cvv_response=result.cvv_response,
            order_id=order_id,
        )
        flagged.seat_reserved = False
        flagged.flag_for_reconciliation(RECON_STORE_WRITE_FAILED)
        try:
            async with self._uow_factory() as uow:
                saved = await uow.enrollment_repository.save_if_status(
                    flagged, expected_status=previous, expected_attempt_id=attempt_id
                )
        except Exception as exc:
            logger.critical(
                "payment_reconciliation_flag_failed",
                alert=True,
                enrollment_id=enrollment.id,
                transaction_id=result.transaction_id,
                error=str(exc),
            )
            return
        if not saved:
            logger.critical(
                "payment_reconciliation_flag_failed",
                alert=True,
                enrollment_id=enrollment.id,
                transaction_id=result.transaction_id,
                error="conditional write missed",
            )

    async def _auto_confirm_paid(self, paid: Enrollment, course: Course) -> Enrollment:
        confirmed = paid.copy()
        confirmed.mark_confirmed()
        try:
            async with self._uow_factory() as uow:
                saved = await uow.enrollment_repository.save_if_status(
                    confirmed, expected_status=EnrollmentStatus.PAID
                )
        except Exception as exc:
            logger.warning("enrollment_auto_confirm_failed", enrollment_id=paid.id, error=str(exc))
            return paid
        if not saved:
            logger.warning("enrollment_auto_confirm_skipped", enrollment_id=paid.id)
            return paid
        self._notify(confirmed, EnrollmentStatus.PAID, course)
        return confirmed

    def _notify(self, enrollment: Enrollment, previous: Optional[EnrollmentStatus], course: Optional[Course]) -> None:
        self._notifier.notify(
            EnrollmentStatusChanged.from_enrollment(
                enrollment, previous, course_title=course.title if course else None
            )
        )

    # ------------------------------------------------------------------ #
    # refund
    # ------------------------------------------------------------------ #
    async def refund(self, req: RefundPaymentRequest) -> RefundOutcome:
        amount = Decimal(req.amount)
        async with self._uow_factory(readonly=True) as uow:
            enrollment = await uow.enrollment_repository.get_by_transaction_id(req.transaction_id)
            if enrollment is None:
                raise EnrollmentNotFoundException(req.transaction_id)
            course = await uow.course_repository.get_by_id(enrollment.course_id)

        if enrollment.status not in REFUNDABLE_STATES:
            raise InvalidTransitionException(
                enrollment.status.value, EnrollmentStatus.REFUNDED.value, enrollment_id=enrollment.id
            )
        if amount <= 0 or amount > enrollment.payment_details.amount:
            raise DomainValidationException(
                f"Refund amount must be between 0 and {enrollment.payment_details.amount}", field="amount"
            )

        attempt_id = await self._claim(enrollment)
        logger.info(
            "payment_refund_started",
            enrollment_id=enrollment.id,
            transaction_id=req.transaction_id,
            amount=str(amount),
        )
        try:
            result = await self.gateway.refund(req.transaction_id, amount)
        except (GatewayDecline, GatewayUnavailable, DomainValidationException):
            await self._release(enrollment.id, attempt_id)
            raise

        previous = enrollment.status
        updated = enrollment.copy()
        updated.mark_refunded(refund_id=result.refund_id, amount=amount)
        try:
            async with self._uow_factory() as uow:
                if updated.seat_reserved:
                    returned = await uow.course_repository.increment_available_spots(enrollment.course_id)
                    if not returned:
                        logger.warning("seat_return_skipped_at_capacity", course_id=enrollment.course_id)
                    updated.seat_reserved = False
                saved = await uow.enrollment_repository.save_if_status(
                    updated, expected_status=previous, expected_attempt_id=attempt_id
                )
                if not saved:
                    raise _AttemptLost()
        except Exception as exc:
            if isinstance(exc, _AttemptLost):
                reason = "attempt_lost"
            else:
                reason = RECON_REFUND_STORE_WRITE_FAILED
                await self._flag_refund_after_store_failure(
                    enrollment, previous, attempt_id, result.refund_id, amount
                )
            logger.critical(
                "refund_persistence_failed",
                alert=True,
                enrollment_id=enrollment.id,
                transaction_id=req.transaction_id,
                refund_id=result.refund_id,
                reason=reason,
                error=str(exc),
            )
            raise PersistenceError(
                enrollment_id=enrollment.id, transaction_id=req.transaction_id, reason=reason
            ) from exc

        logger.info("payment_refund_succeeded", enrollment_id=enrollment.id, refund_id=result.refund_id)
        self._notify(updated, previous, course)
        return RefundOutcome(
            enrollment_id=updated.id,
            status=updated.status.value,
            refund_id=result.refund_id,
        )

    async def _flag_refund_after_store_failure(
        self,
        enrollment: Enrollment,
        previous: EnrollmentStatus,
        attempt_id: str,
        refund_id: str,
        amount: Decimal,
    ) -> None:
        """Second, smaller write: record `refunded` with the reconciliation flag, seat not yet returned."""
        flagged = enrollment.copy()
        flagged.mark_refunded(refund_id=refund_id, amount=amount)
        flagged.flag_for_reconciliation(RECON_REFUND_STORE_WRITE_FAILED)
        try:
            async with self._uow_factory() as uow:
                saved = await uow.enrollment_repository.save_if_status(
                    flagged, expected_status=previous, expected_attempt_id=attempt_id
                )
        except Exception as exc:
            logger.critical(
                "refund_reconciliation_flag_failed",
                alert=True,
                enrollment_id=enrollment.id,
                refund_id=refund_id,
                error=str(exc),
            )
            return
        if not saved:
            logger.critical(
                "refund_reconciliation_flag_failed",
                alert=True,
                enrollment_id=enrollment.id,
                refund_id=refund_id,
                error="conditional write missed",
            )

    # ------------------------------------------------------------------ #
    # tokenize
    # ------------------------------------------------------------------ #
    async def tokenize(self, req: TokenizeRequest) -> TokenizeOutcome:
        result = await self.gateway.tokenize(req.payment_details, req.customer_id)
        await self._store_token(result.token_id, result.customer_id, req.payment_details)
        return TokenizeOutcome(token_id=result.token_id, customer_id=result.customer_id)

    async def aclose(self) -> None:
        close = getattr(self.gateway, "aclose", None)
        if callable(close):
            await close()
