"""FastAPI dependencies: authorization and service providers.

Providers build long-lived clients once per process; tests replace them
through app.dependency_overrides.
"""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Header, HTTPException

from ckbvault.ckb.node import CkbRpcNode, LedgerNode
from ckbvault.ckb.scripts import NetworkConfig, get_network
from ckbvault.config import get_settings
from ckbvault.fiber.rpc import FiberClient
from ckbvault.fiber.service import FiberService
from ckbvault.services.rate_limiter import RateLimiter
from ckbvault.services.sync_monitor import SyncMonitor
from ckbvault.services.transfer import TransferService
from ckbvault.signing.factory import get_signer
from ckbvault.store.database import get_store

logger = logging.getLogger(__name__)


async def require_auth(authorization: Optional[str] = Header(None)) -> None:
    """Authorization header must equal the configured AI token."""
    settings = get_settings()
    if not settings.ai_token or authorization != settings.ai_token:
        logger.warning("Rejected request with invalid Authorization header")
        raise HTTPException(status_code=401, detail="Unauthorized")


def get_network_config() -> NetworkConfig:
    return get_network(get_settings().ckb_network)


@lru_cache(maxsize=1)
def get_ledger_node() -> LedgerNode:
    settings = get_settings()
    return CkbRpcNode(
        settings.ckb_rpc_url,
        settings.indexer_url,
        timeout=settings.rpc_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_fiber_client() -> FiberClient:
    settings = get_settings()
    return FiberClient(settings.fiber_rpc_url, timeout=settings.rpc_timeout_seconds)


def get_transfer_service() -> TransferService:
    settings = get_settings()
    return TransferService(
        node=get_ledger_node(),
        signer=get_signer(),
        limiter=RateLimiter(get_store(), settings),
        settings=settings,
        network=get_network_config(),
    )


def get_sync_monitor() -> SyncMonitor:
    settings = get_settings()
    return SyncMonitor(
        store=get_store(),
        node=get_ledger_node(),
        lock_script=get_signer().lock_script,
        network=get_network_config(),
        lock_ttl_seconds=settings.sync_lock_ttl_seconds,
    )


def get_fiber_service() -> FiberService:
    return FiberService(get_fiber_client(), get_settings())
