"""
Trigger Scheduler - runs the two server-side lifecycle triggers on a fixed interval.

The triggers share no memory with each other or between runs; each tick
re-reads the store. A trigger that raises is logged here and re-raised so
the scheduler's own error reporting sees it too.
"""

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import LifecycleSettings, get_settings
from app.services.expiry_tagging import ExpiryRunSummary, run_expiry_tagging
from app.services.host_directory import HostDirectory
from app.services.notification_trigger import (
    NotificationRunSummary,
    NotificationSender,
    run_notification_trigger,
)
from app.services.tournament_store import TournamentStore
from app.utils.clock import utc_now

logger = logging.getLogger(__name__)

NOTIFICATION_JOB_ID = "trigger-notifications"
EXPIRY_JOB_ID = "trigger-expiry-tagging"


class TriggerScheduler:
    def __init__(
        self,
        store: TournamentStore,
        directory: HostDirectory,
        sender: NotificationSender,
        settings: Optional[LifecycleSettings] = None,
        scheduler: Optional[BackgroundScheduler] = None,
        clock=utc_now,
    ):
        self.store = store
        self.directory = directory
        self.sender = sender
        self.settings = settings or get_settings()
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self.clock = clock

    def run_notifications(self, trigger: str = "scheduled") -> NotificationRunSummary:
        try:
            return run_notification_trigger(
                self.store,
                self.directory,
                self.sender,
                settings=self.settings,
                trigger=trigger,
                clock=self.clock,
            )
        except Exception:
            logger.exception("Notification trigger run failed")
            raise

    def run_expiry_tagging(self) -> ExpiryRunSummary:
        try:
            return run_expiry_tagging(self.store, now=self.clock(), settings=self.settings)
        except Exception:
            logger.exception("Expiry-tagging trigger run failed")
            raise

    def start(self) -> None:
        if self.scheduler.running:
            return
        minutes = self.settings.trigger_interval_minutes
        self.scheduler.add_job(
            self.run_notifications,
            "interval",
            minutes=minutes,
            id=NOTIFICATION_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.run_expiry_tagging,
            "interval",
            minutes=minutes,
            id=EXPIRY_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Lifecycle triggers scheduled every {minutes} minutes")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.remove_all_jobs()
            self.scheduler.shutdown(wait=False)
            self.scheduler = BackgroundScheduler(timezone="UTC")
            logger.info("Lifecycle triggers stopped")

    @property
    def running(self) -> bool:
        return self.scheduler.running
