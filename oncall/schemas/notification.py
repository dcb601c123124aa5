"""Notification dispatch schemas."""

from pydantic import BaseModel


class NotificationRequest(BaseModel):
    """A single notification attempt to one user."""

    alert_id: str
    user_id: str
    display_name: str | None = None
    email: str | None = None
    phone: str | None = None
    subject: str
    body: str
    sms_text: str


class NotificationResult(BaseModel):
    """Per-channel outcome of a notification attempt."""

    email_sent: bool = False
    sms_sent: bool = False
    error: str | None = None

    @property
    def delivered(self) -> bool:
        """At least one channel reached the user."""
        return self.email_sent or self.sms_sent
