"""Wallet services: transfers, quotas, chain sync and health."""

from ckbvault.services.health import check_health, is_healthy
from ckbvault.services.rate_limiter import (
    DESTINATION_LIMIT_EXCEEDED,
    HOURLY_LIMIT_EXCEEDED,
    RateLimiter,
    ReservationResult,
)
from ckbvault.services.sync_monitor import (
    SyncMonitor,
    SyncOutcome,
    SyncResult,
    SyncScheduler,
)
from ckbvault.services.transfer import TransferService

__all__ = [
    "check_health",
    "is_healthy",
    "DESTINATION_LIMIT_EXCEEDED",
    "HOURLY_LIMIT_EXCEEDED",
    "RateLimiter",
    "ReservationResult",
    "SyncMonitor",
    "SyncOutcome",
    "SyncResult",
    "SyncScheduler",
    "TransferService",
]
