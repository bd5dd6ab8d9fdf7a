"""Resolves a tournament host id to a phone number that can receive notifications."""

import logging
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from app.models.host_profile import HostProfile
from app.services.twilio_service import normalize_contact_phone

logger = logging.getLogger(__name__)


class HostDirectory:
    def __init__(self, engine: Engine):
        self.engine = engine

    def resolve_contact(self, host_id: Optional[str]) -> Optional[str]:
        """
        Look up the host's contact phone in E.164 format.

        Returns None when the host id is empty, the profile does not exist,
        or the profile has no usable phone.
        """
        if not host_id:
            return None
        with Session(self.engine) as session:
            profile = session.get(HostProfile, host_id)
        if profile is None:
            logger.info(f"Host profile {host_id} not found")
            return None
        return normalize_contact_phone(profile.phone)
