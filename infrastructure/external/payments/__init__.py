"""
Factory for the card gateway client.
"""
from __future__ import annotations

from typing import Optional

from core.settings import PaymentSettings, payment_settings
from application.ports.payment_gateway import PaymentGateway


def get_payment_gateway(cfg: Optional[PaymentSettings] = None) -> PaymentGateway:
    from .nmi_client import NMIClient

    cfg = cfg or payment_settings
    gateway = cfg.gateway
    return NMIClient(
        api_url=gateway.api_url,
        api_key=gateway.api_key,
        username=gateway.username,
        password=gateway.password,
        timeouts=cfg.timeouts.model_dump(),
    )
