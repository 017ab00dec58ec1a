"""Pydantic schemas for identity provider lifecycle webhooks."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class EmailAddress(BaseModel):
    """An email address attached to an identity provider user."""

    model_config = ConfigDict(extra="ignore")

    email_address: str


class IdentityUser(BaseModel):
    """User payload carried by lifecycle events.

    user.deleted events carry only the id.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    email_addresses: list[EmailAddress] = Field(default_factory=list)
    username: Optional[str] = None
    image_url: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @property
    def primary_email(self) -> Optional[str]:
        return self.email_addresses[0].email_address if self.email_addresses else None


class IdentityEvent(BaseModel):
    """A signed lifecycle event from the identity provider."""

    model_config = ConfigDict(extra="ignore")

    type: str
    data: IdentityUser


class IdentityWebhookResponse(BaseModel):
    """Outcome of processing an identity webhook delivery."""

    status: Literal["processed", "duplicate", "ignored"]
    event_type: Optional[str] = None
    account_id: Optional[str] = None
