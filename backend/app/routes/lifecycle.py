"""Lifecycle routes: manual trigger runs, cleanup controls and health.

The scheduled jobs call the same services; these endpoints exist for
operators and for hosts that want a forced pass.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel

from app.lifecycle import LifecycleRuntime, get_runtime
from app.services.expiry_tagging import run_expiry_tagging
from app.services.notification_trigger import run_notification_trigger
from app.services.tournament_store import ExpiryBatchError, LifecycleStoreError
from app.utils.clock import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/lifecycle", tags=["lifecycle"])


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class NotificationRunResponse(BaseModel):
    window_start: str
    window_end: str
    matched: int
    notified: int
    skipped: int
    failed: int
    errors: List[dict]


class ExpiryRunResponse(BaseModel):
    matched: int
    updated: int
    errors: List[str]


class CleanupRunResponse(BaseModel):
    success: bool
    deleted_count: int
    message: Optional[str] = None
    error: Optional[str] = None


class ExpiredCheckResponse(BaseModel):
    has_expired: bool
    expired_count: int
    message: Optional[str] = None
    error: Optional[str] = None


class CleanupTierResponse(BaseModel):
    tier: str
    interval_seconds: int
    active_tiers: List[str]


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    triggers_running: bool
    cleanup_initialized: bool
    cleanup_tiers: List[str]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def require_api_key(
    runtime: LifecycleRuntime = Depends(get_runtime),
    x_api_key: Optional[str] = Header(None),
    key: Optional[str] = Query(None),
) -> None:
    """Reject the request when LIFECYCLE_API_KEY is set and not supplied."""
    expected = runtime.settings.api_key
    if expected and (x_api_key or key) != expected:
        raise HTTPException(401, "Unauthorized. Invalid API key.")


# ---------------------------------------------------------------------------
# Trigger endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/notifications/run",
    response_model=NotificationRunResponse,
    dependencies=[Depends(require_api_key)],
)
def run_notifications(runtime: LifecycleRuntime = Depends(get_runtime)):
    """Run the starting-soon notification trigger once."""
    try:
        summary = run_notification_trigger(
            runtime.store,
            runtime.directory,
            runtime.sender,
            settings=runtime.settings,
            trigger="manual",
            clock=runtime.clock,
        )
    except LifecycleStoreError as e:
        logger.error(f"Manual notification run failed: {e}")
        raise HTTPException(500, str(e))
    return NotificationRunResponse(**summary.to_dict())


@router.post(
    "/expiry/run",
    response_model=ExpiryRunResponse,
    dependencies=[Depends(require_api_key)],
)
def run_expiry(runtime: LifecycleRuntime = Depends(get_runtime)):
    """Run the expiry-tagging trigger once."""
    try:
        summary = run_expiry_tagging(runtime.store, now=runtime.clock(), settings=runtime.settings)
    except ExpiryBatchError as e:
        raise HTTPException(500, f"ttl batch not applied: {e}")
    except LifecycleStoreError as e:
        raise HTTPException(500, str(e))
    return ExpiryRunResponse(**summary.to_dict())


# ---------------------------------------------------------------------------
# Cleanup endpoints
# ---------------------------------------------------------------------------


@router.post("/cleanup/run", response_model=CleanupRunResponse)
def run_cleanup(runtime: LifecycleRuntime = Depends(get_runtime)):
    """Forced one-shot deletion of expired tournaments."""
    logger.info("Manual tournament cleanup triggered")
    result = runtime.cleanup.delete_expired_tournaments()
    if not result.success:
        raise HTTPException(500, result.error or "Cleanup failed")
    return CleanupRunResponse(**result.to_dict())


@router.get("/cleanup/check", response_model=ExpiredCheckResponse)
def check_cleanup(runtime: LifecycleRuntime = Depends(get_runtime)):
    """Read-only probe for expired tournaments."""
    return ExpiredCheckResponse(**runtime.cleanup.check_for_expired_tournaments().to_dict())


@router.post("/cleanup/aggressive", response_model=CleanupTierResponse)
def enable_aggressive_cleanup(runtime: LifecycleRuntime = Depends(get_runtime)):
    tier = runtime.cleanup.start_aggressive_cleanup()
    return CleanupTierResponse(
        tier=tier.name, interval_seconds=tier.interval_seconds, active_tiers=runtime.cleanup.active_tiers()
    )


@router.post("/cleanup/ultra", response_model=CleanupTierResponse)
def enable_ultra_aggressive_cleanup(runtime: LifecycleRuntime = Depends(get_runtime)):
    tier = runtime.cleanup.start_ultra_aggressive_cleanup()
    return CleanupTierResponse(
        tier=tier.name, interval_seconds=tier.interval_seconds, active_tiers=runtime.cleanup.active_tiers()
    )


@router.get("/health", response_model=HealthResponse)
def lifecycle_health(runtime: LifecycleRuntime = Depends(get_runtime)):
    return HealthResponse(
        status="healthy",
        timestamp=utc_now().isoformat(),
        triggers_running=runtime.triggers.running,
        cleanup_initialized=runtime.cleanup.initialized,
        cleanup_tiers=runtime.cleanup.active_tiers(),
    )
