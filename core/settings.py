"""
Payment and notification settings using pydantic-settings v2 with nested env keys.

Gateway credentials and the email API key are mandatory: constructing the
settings fails when any is missing, so the process never starts serving
traffic with an unusable gateway.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, model_validator


class PaymentTimeouts(BaseModel):
    connect: float = 3.0
    read: float = 15.0
    write: float = 5.0
    total: float = 20.0


class GatewaySettings(BaseModel):
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    # Exchange raw cards for vault tokens before charging
    tokenize_cards: bool = True
    default_currency: str = "USD"


class EmailSettings(BaseModel):
    api_key: Optional[str] = None
    base_url: str = "https://api.sendgrid.com"
    from_address: str = "noreply@akwracing.com"
    support_email: str = "support@akwracing.com"
    website_url: str = "https://akwracing.com"
    template_ids: dict[str, str] = Field(default_factory=lambda: {
        "enrollment_confirmation": "d-enrollment-confirmation",
        "payment_confirmation": "d-payment-confirmation",
        "payment_failed": "d-payment-failed",
        "course_reminder": "d-course-reminder",
    })
    max_attempts: int = 3
    backoff_base: float = 0.5
    timeout: float = 10.0


class PaymentSettings(BaseSettings):
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    email: EmailSettings = Field(default_factory=EmailSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @model_validator(mode="after")
    def _validate_credentials(self):
        missing = [
            name
            for name, value in (
                ("GATEWAY__API_URL", self.gateway.api_url),
                ("GATEWAY__API_KEY", self.gateway.api_key),
                ("GATEWAY__USERNAME", self.gateway.username),
                ("GATEWAY__PASSWORD", self.gateway.password),
                ("EMAIL__API_KEY", self.email.api_key),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")
        return self


payment_settings = PaymentSettings()
