"""
Transactional email port.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Protocol, runtime_checkable


class EmailTemplate(str, Enum):
    ENROLLMENT_CONFIRMATION = "enrollment_confirmation"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    PAYMENT_FAILED = "payment_failed"
    COURSE_REMINDER = "course_reminder"


@runtime_checkable
class EmailSender(Protocol):
    """Sends one templated email; raises on delivery failure.

    An error whose `transient` attribute is False is not worth retrying.
    """

    async def send_template_email(self, to: str, template: EmailTemplate, data: dict[str, Any]) -> None: ...
