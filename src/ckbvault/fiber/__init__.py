"""Fiber payment-channel node access."""

from ckbvault.fiber.rpc import FiberClient, ckb_to_hex, ckb_to_shannons, hex_to_ckb, num_to_hex
from ckbvault.fiber.service import FiberService

__all__ = [
    "FiberClient",
    "FiberService",
    "ckb_to_hex",
    "ckb_to_shannons",
    "hex_to_ckb",
    "num_to_hex",
]
