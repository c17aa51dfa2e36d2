"""Reachability checks for the Fiber and CKB nodes."""

import logging
import time
from typing import Optional

from ckbvault.ckb.node import LedgerNode
from ckbvault.fiber.rpc import FiberClient

logger = logging.getLogger(__name__)


async def check_health(fiber: FiberClient, node: Optional[LedgerNode] = None) -> dict:
    """Probe each node once and report status and latency in milliseconds.

    The service counts as down when the Fiber node is down.
    """
    status = {"fiberRpc": {"status": "down"}}

    try:
        start = time.monotonic()
        info = await fiber.node_info()
        status["fiberRpc"] = {
            "status": "up",
            "latency": int((time.monotonic() - start) * 1000),
            "nodeInfo": {
                "version": info.get("version"),
                "peer_id": info.get("peer_id"),
                "channel_count": info.get("channel_count"),
                "peers_count": info.get("peers_count"),
            },
        }
    except Exception as e:
        logger.warning(f"Fiber node health check failed: {e}")
        status["fiberRpc"] = {"status": "down", "error": str(e)}

    if node is not None:
        try:
            start = time.monotonic()
            tip = await node.get_tip_block_number()
            status["ckbRpc"] = {
                "status": "up",
                "latency": int((time.monotonic() - start) * 1000),
                "tipBlockNumber": tip,
            }
        except Exception as e:
            logger.warning(f"CKB node health check failed: {e}")
            status["ckbRpc"] = {"status": "down", "error": str(e)}

    return status


def is_healthy(status: dict) -> bool:
    return status["fiberRpc"]["status"] == "up"
