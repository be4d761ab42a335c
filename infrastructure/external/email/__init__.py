"""
Factory for the transactional email sender.
"""
from __future__ import annotations

from typing import Optional

from application.ports.email_sender import EmailSender
from core.settings import PaymentSettings, payment_settings


def get_email_sender(cfg: Optional[PaymentSettings] = None) -> EmailSender:
    from .sendgrid_client import SendGridEmailSender

    email = (cfg or payment_settings).email
    return SendGridEmailSender(
        api_key=email.api_key,
        from_address=email.from_address,
        template_ids=email.template_ids,
        base_url=email.base_url,
        timeout=email.timeout,
    )
