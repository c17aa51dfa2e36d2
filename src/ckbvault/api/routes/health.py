"""Health check endpoints."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ckbvault.api.deps import get_fiber_client, get_ledger_node
from ckbvault.ckb.node import LedgerNode
from ckbvault.fiber.rpc import FiberClient
from ckbvault.services.health import check_health, is_healthy

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def health():
    """Basic liveness check."""
    return {"status": "healthy", "service": "ckb-vault"}


@router.get("/check")
async def health_check(
    fiber: FiberClient = Depends(get_fiber_client),
    node: LedgerNode = Depends(get_ledger_node),
):
    """Probe the Fiber and CKB nodes; 500 when the Fiber node is down."""
    status = await check_health(fiber, node)
    return JSONResponse(status_code=200 if is_healthy(status) else 500, content=status)
