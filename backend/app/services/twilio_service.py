"""Twilio SMS service wrapper.

Thin wrapper around the Twilio REST API used to deliver host notifications.
Handles single sends and phone number formatting.
"""

import logging
import os
import re
from datetime import datetime, timezone
from typing import Optional

from twilio.rest import Client

logger = logging.getLogger(__name__)

# Send statuses that count as a successful attempt
SUCCESS_STATUSES = ("queued", "sent", "dry_run")

_PLACEHOLDER_PHONES = ("—", "-", "N/A", "n/a", "none", "None")


def format_e164(phone: str, default_country: str = "1") -> str:
    """
    Normalize a phone number to E.164 format (+1XXXXXXXXXX for US).

    Accepts:
      - +15551234567  (already E.164)
      - 15551234567   (missing +)
      - 5551234567    (10-digit US)
      - (555) 123-4567
      - 555-123-4567
      - +919812345678 (international, leading +)

    Raises:
      - ValueError if phone can't be parsed
    """
    if not phone or not phone.strip():
        raise ValueError("Phone number is empty")

    digits = re.sub(r"[^\d]", "", phone)

    if len(digits) == 10:
        return f"+{default_country}{digits}"
    elif len(digits) == 11 and digits.startswith(default_country):
        return f"+{digits}"
    elif len(digits) >= 10 and phone.strip().startswith("+"):
        return f"+{digits}"
    else:
        raise ValueError(
            f"Cannot parse phone number: '{phone}'. "
            f"Expected 10-digit US number or E.164 format."
        )


def validate_e164(phone: str) -> bool:
    """Check if a phone number is valid E.164 format."""
    return bool(re.match(r"^\+[1-9]\d{6,14}$", phone))


def normalize_contact_phone(raw: Optional[str]) -> Optional[str]:
    """
    Turn a stored profile phone into an E.164 contact address.

    Returns None for blanks, placeholder values and unparseable numbers.
    """
    if not raw or not raw.strip():
        return None
    if raw.strip() in _PLACEHOLDER_PHONES:
        return None
    try:
        return format_e164(raw.strip())
    except ValueError:
        logger.warning(f"Ignoring invalid contact phone: '{raw}'")
        return None


def is_send_success(result: dict) -> bool:
    return result.get("status") in SUCCESS_STATUSES


class TwilioService:
    """
    Wrapper around Twilio REST API for sending SMS.

    Reads credentials from environment variables:
      - TWILIO_ACCOUNT_SID
      - TWILIO_AUTH_TOKEN
      - TWILIO_FROM_NUMBER

    If credentials are not set, operates in dry-run mode
    (logs messages but doesn't send).
    """

    def __init__(self):
        self.account_sid = os.getenv("TWILIO_ACCOUNT_SID", "")
        self.auth_token = os.getenv("TWILIO_AUTH_TOKEN", "")
        self.from_number = os.getenv("TWILIO_FROM_NUMBER", "")
        self.client = None
        self.dry_run = False

        if self.account_sid and self.auth_token and self.from_number:
            try:
                self.client = Client(self.account_sid, self.auth_token)
                logger.info("Twilio client initialized successfully.")
            except Exception as e:
                logger.error(f"Failed to initialize Twilio client: {e}")
                self.dry_run = True
        else:
            logger.warning(
                "Twilio credentials not configured. Running in dry-run mode. "
                "Set TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_FROM_NUMBER."
            )
            self.dry_run = True

    def send_sms(self, to: str, body: str) -> dict:
        """
        Send a single SMS message.

        Args:
            to: Recipient phone number (E.164 format)
            body: Message text (max 1600 chars for Twilio)

        Returns:
            dict with keys: sid, status, error
        """
        if not validate_e164(to):
            return {
                "sid": None,
                "status": "failed",
                "error": f"Invalid phone number format: {to}",
            }

        if len(body) > 1600:
            body = body[:1597] + "..."

        if self.dry_run:
            logger.info(f"[DRY RUN] SMS to {to}: {body[:80]}...")
            return {
                "sid": f"DRY_RUN_{datetime.now(timezone.utc).isoformat()}",
                "status": "dry_run",
                "error": None,
            }

        try:
            message = self.client.messages.create(
                body=body,
                from_=self.from_number,
                to=to,
            )
            logger.info(
                f"SMS sent to {to}: SID={message.sid}, status={message.status}"
            )
            return {
                "sid": message.sid,
                "status": message.status,
                "error": None,
            }
        except Exception as e:
            logger.error(f"Failed to send SMS to {to}: {e}")
            return {
                "sid": None,
                "status": "failed",
                "error": str(e),
            }

    @property
    def is_configured(self) -> bool:
        """Check if Twilio is properly configured (not in dry-run mode)."""
        return not self.dry_run


# Singleton instance
_twilio_service: Optional[TwilioService] = None


def get_twilio_service() -> TwilioService:
    """Get or create the singleton TwilioService instance."""
    global _twilio_service
    if _twilio_service is None:
        _twilio_service = TwilioService()
    return _twilio_service
