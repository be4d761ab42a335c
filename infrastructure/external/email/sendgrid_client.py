"""
Transactional email over the SendGrid v3 mail API with dynamic templates.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx

from application.ports.email_sender import EmailTemplate
from core.logging_config import get_logger
from infrastructure.external.api_clients.base import APIError, BaseAPIClient


logger = get_logger(__name__)


class SendGridEmailSender(BaseAPIClient):
    """EmailSender backed by `POST /v3/mail/send`.

    Each template key maps to a dynamic template id; the template data is
    passed through unchanged. Failures raise APIError and the caller decides
    whether to retry.
    """

    def __init__(
        self,
        *,
        api_key: str,
        from_address: str,
        template_ids: dict[str, str],
        base_url: str = "https://api.sendgrid.com",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(base_url=base_url, timeout=timeout, auth_token=api_key, transport=transport)
        self.from_address = from_address
        self.template_ids = dict(template_ids)

    def _template_id(self, template: EmailTemplate) -> str:
        key = template.value if isinstance(template, EmailTemplate) else str(template)
        try:
            return self.template_ids[key]
        except KeyError:
            raise APIError(f"No email template configured for '{key}'", transient=False) from None

    def build_payload(self, to: str, template: EmailTemplate, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "personalizations": [{"to": [{"email": to}], "dynamic_template_data": data}],
            "from": {"email": self.from_address},
            "template_id": self._template_id(template),
        }

    async def send_template_email(self, to: str, template: EmailTemplate, data: dict[str, Any]) -> None:
        payload = self.build_payload(to, template, data)
        response = await self.post("/v3/mail/send", json_data=payload)
        logger.info(
            "email_sent",
            template=payload["template_id"],
            to=to,
            message_id=response.message_id,
        )

    async def aclose(self) -> None:
        await self.close()
