"""Runtime settings for the lifecycle scheduler, read from the environment."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    return int(raw)


@dataclass(frozen=True)
class LifecycleSettings:
    # Server triggers
    scheduler_enabled: bool = True
    trigger_interval_minutes: int = 5
    notification_lead_minutes: int = 20
    notification_window_buffer_seconds: int = 30
    notification_batch_limit: int = 50
    notification_max_workers: int = 8
    expiry_batch_limit: int = 100
    ttl_hours: int = 2

    # Cleanup agent
    cleanup_enabled: bool = True
    cleanup_batch_limit: int = 50
    cleanup_normal_seconds: int = 30
    cleanup_aggressive_seconds: int = 10
    cleanup_ultra_seconds: int = 5
    cleanup_ultra_max_empty_checks: int = 12
    cleanup_ultra_max_seconds: int = 300
    cleanup_backstop_seconds: int = 300

    api_key: Optional[str] = None


def get_settings() -> LifecycleSettings:
    """Build settings from the current environment."""
    return LifecycleSettings(
        scheduler_enabled=_env_bool("LIFECYCLE_SCHEDULER_ENABLED", "true"),
        trigger_interval_minutes=_env_int("TRIGGER_INTERVAL_MINUTES", 5),
        notification_lead_minutes=_env_int("NOTIFICATION_LEAD_MINUTES", 20),
        notification_window_buffer_seconds=_env_int("NOTIFICATION_WINDOW_BUFFER_SECONDS", 30),
        notification_batch_limit=_env_int("NOTIFICATION_BATCH_LIMIT", 50),
        notification_max_workers=_env_int("NOTIFICATION_MAX_WORKERS", 8),
        expiry_batch_limit=_env_int("EXPIRY_BATCH_LIMIT", 100),
        ttl_hours=_env_int("TTL_HOURS", 2),
        cleanup_enabled=_env_bool("CLEANUP_AGENT_ENABLED", "true"),
        cleanup_batch_limit=_env_int("CLEANUP_BATCH_LIMIT", 50),
        cleanup_normal_seconds=_env_int("CLEANUP_NORMAL_SECONDS", 30),
        cleanup_aggressive_seconds=_env_int("CLEANUP_AGGRESSIVE_SECONDS", 10),
        cleanup_ultra_seconds=_env_int("CLEANUP_ULTRA_SECONDS", 5),
        cleanup_ultra_max_empty_checks=_env_int("CLEANUP_ULTRA_MAX_EMPTY_CHECKS", 12),
        cleanup_ultra_max_seconds=_env_int("CLEANUP_ULTRA_MAX_SECONDS", 300),
        cleanup_backstop_seconds=_env_int("CLEANUP_BACKSTOP_SECONDS", 300),
        api_key=os.getenv("LIFECYCLE_API_KEY") or None,
    )
