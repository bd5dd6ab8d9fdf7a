"""
Expiry-Tagging Trigger - assigns each started tournament its deletion deadline.

Runs on a fixed interval. Each run selects active tournaments that have
reached their scheduled start and still have no ttl, stages
ttl = start_time + TTL_HOURS for each, and commits the whole batch at once.

This trigger is the only writer of ttl. The `ttl IS NULL` filter makes
repeated runs idempotent: a tournament tagged in one run is invisible to
the next. If the batch commit fails nothing is written, the same rows still
match, and the next run retries them.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from app.config import LifecycleSettings, get_settings
from app.services.tournament_store import ExpiryBatchError, TournamentStore
from app.utils.clock import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ExpiryRunSummary:
    matched: int = 0
    updated: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"matched": self.matched, "updated": self.updated, "errors": list(self.errors)}


def deletion_deadline(start_time: datetime, ttl_hours: int = 2) -> datetime:
    """When a tournament starting at `start_time` becomes eligible for deletion."""
    return start_time + timedelta(hours=ttl_hours)


def run_expiry_tagging(
    store: TournamentStore,
    now: Optional[datetime] = None,
    settings: Optional[LifecycleSettings] = None,
) -> ExpiryRunSummary:
    """
    Run one expiry-tagging tick.

    Raises:
        ExpiryBatchError: the batch did not commit. No ttl from this run was written.
    """
    settings = settings or get_settings()
    now = now or utc_now()
    summary = ExpiryRunSummary()

    candidates = store.find_untagged_started(now, limit=settings.expiry_batch_limit)
    summary.matched = len(candidates)
    if not candidates:
        logger.info("Expiry run: no started tournaments awaiting a ttl")
        return summary

    staged: Dict[int, datetime] = {}
    for tournament in candidates:
        staged[tournament.id] = deletion_deadline(tournament.start_time, settings.ttl_hours)

    try:
        summary.updated = store.assign_ttls(staged)
    except ExpiryBatchError as e:
        logger.error(f"Expiry run: batch of {len(staged)} not applied, will retry next run: {e}")
        raise

    skipped = summary.matched - summary.updated
    if skipped:
        # Rows tagged or removed between our query and our commit
        summary.errors.append(f"{skipped} tournaments changed before commit and were left untouched")

    logger.info(
        f"Expiry run complete: matched={summary.matched} updated={summary.updated} "
        f"errors={len(summary.errors)}"
    )
    return summary
