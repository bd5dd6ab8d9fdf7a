from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from app.utils.clock import utc_now


class TournamentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    host_id: Optional[str] = Field(default=None, index=True)
    status: str = Field(default=TournamentStatus.ACTIVE.value, index=True)

    # Scheduled start (naive UTC). Immutable after creation.
    start_time: datetime = Field(index=True)

    # Deletion deadline; null until the expiry trigger tags the record.
    # Set once, never lowered.
    ttl: Optional[datetime] = Field(default=None, index=True)

    # Flips false -> true once, never back.
    notification_sent: bool = Field(default=False)
    notification_sent_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})
