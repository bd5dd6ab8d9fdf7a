"""
Notification Trigger - starting-soon messages for tournament hosts.

Runs on a fixed interval. Each run looks for active tournaments whose start
falls inside [now + lead, now + lead + buffer] and have not been notified,
then for each one, independently and concurrently:

1. Resolve the host's contact phone (skip and log if missing).
2. Send the message.
3. Only after a successful send, flip notification_sent.

A crash between step 2 and step 3 means the next run may send again while
the tournament is still inside the window. That duplicate is tolerated;
the flag itself is never written without a send and never reset.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.config import LifecycleSettings, get_settings
from app.models.notification_log import NotificationLog
from app.models.tournament import Tournament
from app.services.host_directory import HostDirectory
from app.services.notification_content import STARTING_SOON, render_starting_soon
from app.services.tournament_store import TournamentStore
from app.services.twilio_service import is_send_success
from app.utils.clock import utc_now

logger = logging.getLogger(__name__)

NOTIFIED = "notified"
SKIPPED = "skipped"
FAILED = "failed"


class NotificationSender(Protocol):
    def send_sms(self, to: str, body: str) -> dict: ...


@dataclass
class NotificationRunSummary:
    window_start: datetime
    window_end: datetime
    matched: int = 0
    notified: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "matched": self.matched,
            "notified": self.notified,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
        }


def notification_window(now: datetime, settings: LifecycleSettings) -> tuple:
    """The [start, end] range of start times a run at `now` is responsible for."""
    window_start = now + timedelta(minutes=settings.notification_lead_minutes)
    window_end = window_start + timedelta(seconds=settings.notification_window_buffer_seconds)
    return window_start, window_end


def _record_attempt(store: TournamentStore, entry: NotificationLog) -> None:
    try:
        with Session(store.engine) as session:
            session.add(entry)
            session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Failed to log notification for tournament {entry.tournament_id}: {e}")


def _notify_one(
    tournament: Tournament,
    store: TournamentStore,
    directory: HostDirectory,
    sender: NotificationSender,
    settings: LifecycleSettings,
    trigger: str,
    clock,
) -> tuple:
    """Process a single tournament. Returns (outcome, reason)."""
    if not tournament.host_id:
        return SKIPPED, "no host_id"

    phone = directory.resolve_contact(tournament.host_id)
    if not phone:
        return SKIPPED, f"host {tournament.host_id} has no contact phone"

    body = render_starting_soon(tournament.name, tournament.start_time, settings.notification_lead_minutes)
    result = sender.send_sms(phone, body)

    _record_attempt(
        store,
        NotificationLog(
            tournament_id=tournament.id,
            host_id=tournament.host_id,
            phone_number=phone,
            message_body=body,
            message_type=STARTING_SOON,
            twilio_sid=result.get("sid"),
            status=result.get("status", "failed"),
            error_message=result.get("error"),
            trigger=trigger,
        ),
    )

    if not is_send_success(result):
        return FAILED, f"send failed: {result.get('error') or result.get('status')}"

    if not store.mark_notification_sent(tournament.id, clock()):
        logger.warning(
            f"Tournament {tournament.id} was already flagged or removed before the notification flag write"
        )
    return NOTIFIED, None


def run_notification_trigger(
    store: TournamentStore,
    directory: HostDirectory,
    sender: NotificationSender,
    now: Optional[datetime] = None,
    settings: Optional[LifecycleSettings] = None,
    trigger: str = "scheduled",
    clock=utc_now,
) -> NotificationRunSummary:
    """
    Run one notification tick.

    Per-tournament failures are logged and counted in the summary; only a
    failure to query the candidates propagates.
    """
    settings = settings or get_settings()
    now = now or clock()
    window_start, window_end = notification_window(now, settings)
    summary = NotificationRunSummary(window_start=window_start, window_end=window_end)

    candidates = store.find_notification_candidates(
        window_start, window_end, limit=settings.notification_batch_limit
    )
    summary.matched = len(candidates)

    if not candidates:
        logger.info(
            f"Notification run: no tournaments starting between "
            f"{window_start.isoformat()} and {window_end.isoformat()}"
        )
        return summary

    def work(tournament: Tournament) -> tuple:
        try:
            return _notify_one(tournament, store, directory, sender, settings, trigger, clock)
        except Exception as e:
            logger.exception(f"Notification for tournament {tournament.id} failed")
            return FAILED, str(e)

    workers = max(1, min(settings.notification_max_workers, len(candidates)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify") as pool:
        outcomes = list(pool.map(work, candidates))

    for tournament, (outcome, reason) in zip(candidates, outcomes):
        if outcome == NOTIFIED:
            summary.notified += 1
            continue
        if outcome == SKIPPED:
            summary.skipped += 1
            logger.info(f"Skipping notification for tournament {tournament.id}: {reason}")
        else:
            summary.failed += 1
            logger.error(f"Notification for tournament {tournament.id} not sent: {reason}")
        summary.errors.append({"tournament_id": tournament.id, "outcome": outcome, "reason": reason})

    logger.info(
        f"Notification run complete: matched={summary.matched} notified={summary.notified} "
        f"skipped={summary.skipped} failed={summary.failed}"
    )
    return summary
