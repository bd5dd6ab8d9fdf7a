"""
Cleanup Agent - background deletion of expired tournaments.

One agent object per process owns a BackgroundScheduler. Polling
frequency is configuration: each CleanupTier is an interval job running
the same check-then-delete tick, so enabling the aggressive or ultra tier
only adds a faster job. Job ids are stable per tier, so enabling a tier
that is already running does nothing.

Any number of agents (one per process, across many hosts) may run at the
same time. Deletes re-check eligibility and a row that is already gone is
counted as nothing to do, never as an error.

A second, slower job is the self-healing backstop: active tournaments that
started more than TTL_HOURS ago but never received a ttl (for example
because the expiry trigger missed them) are deleted directly.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import LifecycleSettings, get_settings
from app.services.tournament_store import LifecycleStoreError, TournamentStore
from app.utils.clock import utc_now

logger = logging.getLogger(__name__)

NORMAL = "normal"
AGGRESSIVE = "aggressive"
ULTRA = "ultra"

BACKSTOP_JOB_ID = "cleanup-backstop"
PROBE_LIMIT = 10


@dataclass(frozen=True)
class CleanupTier:
    name: str
    interval_seconds: int
    # Ultra tier stops itself after this many consecutive ticks with nothing expired
    max_empty_checks: Optional[int] = None
    # ...or after running this long, whichever comes first
    max_lifetime_seconds: Optional[int] = None

    @property
    def job_id(self) -> str:
        return f"cleanup-{self.name}"


def build_tiers(settings: LifecycleSettings) -> Dict[str, CleanupTier]:
    return {
        NORMAL: CleanupTier(NORMAL, settings.cleanup_normal_seconds),
        AGGRESSIVE: CleanupTier(AGGRESSIVE, settings.cleanup_aggressive_seconds),
        ULTRA: CleanupTier(
            ULTRA,
            settings.cleanup_ultra_seconds,
            max_empty_checks=settings.cleanup_ultra_max_empty_checks,
            max_lifetime_seconds=settings.cleanup_ultra_max_seconds,
        ),
    }


@dataclass
class CleanupResult:
    success: bool
    deleted_count: int = 0
    message: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"success": self.success, "deleted_count": self.deleted_count}
        if self.message is not None:
            data["message"] = self.message
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ExpiredCheck:
    has_expired: bool
    expired_count: int = 0
    message: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"has_expired": self.has_expired, "expired_count": self.expired_count}
        if self.message is not None:
            data["message"] = self.message
        if self.error is not None:
            data["error"] = self.error
        return data


class CleanupAgent:
    def __init__(
        self,
        store: TournamentStore,
        settings: Optional[LifecycleSettings] = None,
        clock=utc_now,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock
        self.tiers = build_tiers(self.settings)
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._lock = threading.RLock()
        self._initialized = False
        self._empty_checks: Dict[str, int] = {}
        self._tier_started: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Lifecycle of the agent itself
    # ------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize_cleanup(self) -> bool:
        """
        Run one immediate pass, then start the normal tier and the backstop.

        Only the first call per agent does anything; later calls return
        False without adding jobs.
        """
        with self._lock:
            if self._initialized:
                logger.debug("Cleanup agent already initialized; ignoring start request")
                return False

            check = self.check_for_expired_tournaments()
            if check.has_expired:
                logger.info("Found expired tournaments on startup, cleaning up")
                self.delete_expired_tournaments()

            self._start_tier(self.tiers[NORMAL])
            self.scheduler.add_job(
                self.run_backstop,
                "interval",
                seconds=self.settings.cleanup_backstop_seconds,
                id=BACKSTOP_JOB_ID,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            self._initialized = True

        logger.info(
            f"Tournament cleanup agent initialized ({self.tiers[NORMAL].interval_seconds}s interval, "
            f"backstop every {self.settings.cleanup_backstop_seconds}s)"
        )
        return True

    def start_aggressive_cleanup(self) -> CleanupTier:
        return self._start_tier(self.tiers[AGGRESSIVE])

    def start_ultra_aggressive_cleanup(self) -> CleanupTier:
        return self._start_tier(self.tiers[ULTRA])

    def stop_tier(self, name: str) -> bool:
        tier = self.tiers[name]
        with self._lock:
            if self.scheduler.get_job(tier.job_id) is None:
                return False
            self.scheduler.remove_job(tier.job_id)
            self._empty_checks.pop(name, None)
            self._tier_started.pop(name, None)
        logger.info(f"Cleanup tier '{name}' stopped")
        return True

    def active_tiers(self) -> List[str]:
        return [name for name, tier in self.tiers.items() if self.scheduler.get_job(tier.job_id) is not None]

    def stop(self) -> None:
        """Remove every job and shut the scheduler down. A later initialize starts fresh."""
        with self._lock:
            self.scheduler.remove_all_jobs()
            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)
                # Shut-down schedulers cannot be restarted
                self.scheduler = BackgroundScheduler(timezone="UTC")
            self._initialized = False
            self._empty_checks.clear()
            self._tier_started.clear()
        logger.info("Tournament cleanup agent stopped")

    def _ensure_running(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()

    def _start_tier(self, tier: CleanupTier) -> CleanupTier:
        with self._lock:
            self._ensure_running()
            if self.scheduler.get_job(tier.job_id) is not None:
                logger.debug(f"Cleanup tier '{tier.name}' already running")
                return tier
            self._empty_checks[tier.name] = 0
            self._tier_started[tier.name] = time.monotonic()
            self.scheduler.add_job(
                self.tick,
                "interval",
                seconds=tier.interval_seconds,
                args=[tier.name],
                id=tier.job_id,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        logger.info(f"Cleanup tier '{tier.name}' started ({tier.interval_seconds}s intervals)")
        return tier

    # ------------------------------------------------------------------
    # Scheduled work
    # ------------------------------------------------------------------

    def tick(self, tier_name: str = NORMAL) -> Optional[CleanupResult]:
        """One polling step of a tier. Never raises."""
        tier = self.tiers[tier_name]
        result = None
        try:
            check = self.check_for_expired_tournaments()
            if check.has_expired:
                logger.info(f"Cleanup ({tier.name}): found expired tournaments, cleaning up")
                result = self.delete_expired_tournaments()
                self._empty_checks[tier.name] = 0
            elif check.error is None:
                self._empty_checks[tier.name] = self._empty_checks.get(tier.name, 0) + 1
        except Exception:
            logger.exception(f"Cleanup ({tier.name}) tick failed")

        if self._tier_exhausted(tier):
            self.stop_tier(tier.name)
        return result

    def _tier_exhausted(self, tier: CleanupTier) -> bool:
        if tier.max_empty_checks is not None and self._empty_checks.get(tier.name, 0) >= tier.max_empty_checks:
            logger.info(f"Cleanup tier '{tier.name}': no expired tournaments for {tier.max_empty_checks} checks")
            return True
        started = self._tier_started.get(tier.name)
        if tier.max_lifetime_seconds is not None and started is not None:
            if time.monotonic() - started >= tier.max_lifetime_seconds:
                logger.info(f"Cleanup tier '{tier.name}' auto-stopped after {tier.max_lifetime_seconds}s")
                return True
        return False

    def run_backstop(self) -> Optional[CleanupResult]:
        try:
            return self.delete_untagged_stale_tournaments()
        except Exception:
            logger.exception("Cleanup backstop failed")
            return None

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def check_for_expired_tournaments(self) -> ExpiredCheck:
        """Read-only probe: are there tournaments past their ttl?"""
        try:
            count = self.store.count_expired(self.clock(), limit=PROBE_LIMIT)
        except LifecycleStoreError as e:
            logger.error(f"Error checking for expired tournaments: {e}")
            return ExpiredCheck(has_expired=False, expired_count=0, error=str(e))

        if count > 0:
            return ExpiredCheck(True, count, f"Found {count} expired tournaments")
        return ExpiredCheck(False, 0, "No expired tournaments found")

    def delete_expired_tournaments(self, max_batch_size: Optional[int] = None) -> CleanupResult:
        """
        One-shot pass deleting every tournament whose ttl has passed.

        Queries in batches of `max_batch_size` until a batch comes back short
        or deletes nothing. Tournaments removed by a concurrent agent between
        our query and our delete are not counted and are not errors.
        """
        limit = max_batch_size or self.settings.cleanup_batch_limit
        now = self.clock()
        return self._drain(
            lambda: self.store.find_expired(now, limit=limit),
            lambda t: self.store.delete_expired(t.id, now),
            limit,
            "expired",
            empty_message="No expired tournaments to clean up",
        )

    def delete_untagged_stale_tournaments(self) -> CleanupResult:
        """Backstop pass for started tournaments the expiry trigger never tagged."""
        limit = self.settings.cleanup_batch_limit
        cutoff = self.clock() - timedelta(hours=self.settings.ttl_hours)
        return self._drain(
            lambda: self.store.find_untagged_stale(cutoff, limit=limit),
            lambda t: self.store.delete_untagged_stale(t.id, cutoff),
            limit,
            "untagged stale",
            empty_message="No untagged stale tournaments",
        )

    def _drain(self, find_batch, delete_one, limit: int, label: str, empty_message: str) -> CleanupResult:
        deleted = 0
        failures: List[str] = []
        batches = 0
        while True:
            try:
                batch = find_batch()
            except LifecycleStoreError as e:
                logger.error(f"Error during {label} cleanup: {e}")
                return CleanupResult(success=False, deleted_count=deleted, error=str(e))

            if not batch:
                break
            batches += 1
            logger.info(f"Cleanup ({label}): {len(batch)} tournaments in batch {batches}")

            batch_deleted, batch_failures = self._delete_each(batch, delete_one)
            deleted += batch_deleted
            failures.extend(batch_failures)
            # Short batch: nothing left. No progress: only undeletable rows remain.
            if len(batch) < limit or batch_deleted == 0:
                break

        if batches == 0:
            return CleanupResult(success=True, message=empty_message)
        return self._result(deleted, failures, label)

    def _delete_each(self, tournaments, delete_one) -> tuple:
        deleted = 0
        failures = []
        for tournament in tournaments:
            try:
                if delete_one(tournament):
                    deleted += 1
                    logger.info(f"Deleted tournament {tournament.id} - {tournament.name}")
            except LifecycleStoreError as e:
                logger.error(f"Could not delete tournament {tournament.id}: {e}")
                failures.append(str(e))
        return deleted, failures

    def _result(self, deleted: int, failures: List[str], label: str) -> CleanupResult:
        message = f"Successfully deleted {deleted} {label} tournaments"
        logger.info(message)
        if failures:
            return CleanupResult(
                success=False,
                deleted_count=deleted,
                message=message,
                error=f"{len(failures)} deletions failed: {failures[0]}",
            )
        return CleanupResult(success=True, deleted_count=deleted, message=message)
