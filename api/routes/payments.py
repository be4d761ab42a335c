"""
Payments API routes.

Thin HTTP layer over the payment orchestrator. Success bodies are the flat
camelCase outcomes (`{success: true, transactionId, ...}`); every failure is
rendered by the registered exception handlers as the shared error envelope.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from api.dependencies import get_payment_orchestrator
from application.dtos.payments import (
    PaymentOutcome,
    ProcessPaymentRequest,
    RefundOutcome,
    RefundPaymentRequest,
    TokenizeOutcome,
    TokenizeRequest,
)
from application.services.payment_orchestrator import PaymentOrchestrator


router = APIRouter(prefix="/payment", tags=["Payments"])


@router.post("/process", summary="Charge an enrollment", response_model=PaymentOutcome)
async def process_payment(
    payload: ProcessPaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    """
    Charge the enrollment's locked price with a card or a stored token.

    Repeating a request with the same `idempotencyKey` returns the first
    outcome without charging again.
    """
    return await orchestrator.process_payment(payload)


@router.post("/refund", summary="Refund a captured payment", response_model=RefundOutcome)
async def refund_payment(
    payload: RefundPaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    return await orchestrator.refund(payload)


@router.post("/tokenize", summary="Store a card in the gateway vault", response_model=TokenizeOutcome)
async def tokenize_card(
    payload: TokenizeRequest,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    return await orchestrator.tokenize(payload)
