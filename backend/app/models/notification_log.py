"""Notification log model for tracking starting-soon messages."""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from app.utils.clock import utc_now


class NotificationLog(SQLModel, table=True):
    """Log of every host notification attempt made by the lifecycle triggers."""

    __tablename__ = "notification_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    # No foreign key: the tournament row is purged after its ttl, the log is kept.
    tournament_id: int = Field(index=True)
    host_id: Optional[str] = Field(default=None)
    phone_number: str  # Recipient phone in E.164 format
    message_body: str
    message_type: str = Field(default="starting_soon")
    twilio_sid: Optional[str] = Field(default=None)  # Twilio message SID for tracking
    status: str = Field(default="queued")  # queued|sent|dry_run|failed
    error_message: Optional[str] = Field(default=None)
    trigger: str = Field(default="scheduled")  # scheduled|manual
    sent_at: datetime = Field(default_factory=utc_now)
