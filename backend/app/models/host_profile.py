"""Host profile: the contact record a tournament's host_id resolves to."""

from typing import Optional

from sqlmodel import Field, SQLModel


class HostProfile(SQLModel, table=True):
    __tablename__ = "host_profile"

    id: str = Field(primary_key=True)  # Auth provider user id
    display_name: Optional[str] = None
    phone: Optional[str] = None  # Free-form; normalized to E.164 on lookup
