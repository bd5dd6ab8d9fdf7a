"""
Assembly of the lifecycle scheduler objects.

One LifecycleRuntime is built per process at startup and stored on
app.state; routes reach it through get_runtime(). Nothing here is a module
global, so tests build their own runtime against their own engine.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.engine import Engine

from app.config import LifecycleSettings, get_settings
from app.services.cleanup_agent import CleanupAgent
from app.services.host_directory import HostDirectory
from app.services.notification_trigger import NotificationSender
from app.services.tournament_store import TournamentStore
from app.services.trigger_scheduler import TriggerScheduler
from app.services.twilio_service import get_twilio_service
from app.utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass
class LifecycleRuntime:
    settings: LifecycleSettings
    store: TournamentStore
    directory: HostDirectory
    sender: NotificationSender
    triggers: TriggerScheduler
    cleanup: CleanupAgent
    clock: Clock = utc_now

    def start(self) -> None:
        if self.settings.scheduler_enabled:
            self.triggers.start()
        else:
            logger.info("Lifecycle triggers disabled (LIFECYCLE_SCHEDULER_ENABLED=false)")
        if self.settings.cleanup_enabled:
            self.cleanup.initialize_cleanup()
        else:
            logger.info("Cleanup agent disabled (CLEANUP_AGENT_ENABLED=false)")

    def stop(self) -> None:
        self.triggers.stop()
        self.cleanup.stop()


def build_runtime(
    engine: Engine,
    settings: Optional[LifecycleSettings] = None,
    sender: Optional[NotificationSender] = None,
    clock=utc_now,
) -> LifecycleRuntime:
    settings = settings or get_settings()
    store = TournamentStore(engine)
    directory = HostDirectory(engine)
    sender = sender or get_twilio_service()
    return LifecycleRuntime(
        settings=settings,
        store=store,
        directory=directory,
        sender=sender,
        triggers=TriggerScheduler(store, directory, sender, settings=settings, clock=clock),
        cleanup=CleanupAgent(store, settings=settings, clock=clock),
        clock=clock,
    )


def get_runtime(request: Request) -> LifecycleRuntime:
    """FastAPI dependency returning the process-wide runtime."""
    return request.app.state.lifecycle
