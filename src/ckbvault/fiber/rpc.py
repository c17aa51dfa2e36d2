"""Fiber node JSON-RPC client.

Thin async wrapper over the payment-channel node's RPC. Amounts travel as hex
shannons and timestamps as hex milliseconds; use the helpers below to convert.
"""

import itertools
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

import httpx

from ckbvault.ckb.types import SHANNONS_PER_CKB, format_units
from ckbvault.errors import FiberRpcError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TLC_EXPIRY_SECONDS = 3600
DEFAULT_INVOICE_EXPIRY_SECONDS = 3600
HASH_ALGORITHM = "sha256"


def num_to_hex(value: int) -> str:
    return hex(int(value))


def ckb_to_shannons(amount) -> int:
    """Convert a CKB amount (int, str or Decimal) to whole shannons."""
    try:
        shannons = Decimal(str(amount)) * SHANNONS_PER_CKB
    except InvalidOperation:
        raise ValidationError(f"Invalid CKB amount '{amount}'") from None
    if shannons != shannons.to_integral_value() or shannons < 0:
        raise ValidationError(f"Invalid CKB amount '{amount}'")
    return int(shannons)


def ckb_to_hex(amount) -> str:
    return num_to_hex(ckb_to_shannons(amount))


def hex_to_ckb(value: str) -> str:
    """Hex shannons as an exact CKB decimal string."""
    return format_units(int(value, 16), 8)


class FiberClient:
    """Client for one Fiber node."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the client.

        Args:
            rpc_url: Fiber node RPC endpoint
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
            clock: Time source for request ids and TLC expiry
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self._counter = itertools.count()

        self.tlc_expiry_seconds = DEFAULT_TLC_EXPIRY_SECONDS
        self.invoice_expiry_seconds = DEFAULT_INVOICE_EXPIRY_SECONDS

    def _next_id(self) -> int:
        return int(self._clock()) * 10 + next(self._counter) % 10

    async def call(self, method: str, params: list) -> Any:
        payload = {
            "id": self._next_id(),
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.rpc_url, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Fiber RPC {method} failed: {e}")
            raise FiberRpcError(f"Fiber RPC {method} failed: {e}") from e
        except ValueError as e:
            raise FiberRpcError(f"Fiber RPC {method} returned invalid JSON") from e

        if data.get("error"):
            error = data["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise FiberRpcError(f"RPC Error: {message}")

        return data.get("result")

    # Peers
    async def connect_peer(self, address: str, save: Optional[bool] = None) -> None:
        params = {"address": address}
        if save is not None:
            params["save"] = save
        await self.call("connect_peer", [params])

    async def disconnect_peer(self, peer_id: str) -> None:
        await self.call("disconnect_peer", [{"peer_id": peer_id}])

    # Channels
    async def open_channel(
        self,
        peer_id: str,
        funding_amount: str,
        public: bool = True,
        funding_udt_type_script: Optional[dict] = None,
    ) -> dict:
        params = {"peer_id": peer_id, "funding_amount": funding_amount, "public": public}
        if funding_udt_type_script:
            params["funding_udt_type_script"] = funding_udt_type_script
        return await self.call("open_channel", [params])

    async def list_channels(
        self, peer_id: Optional[str] = None, include_closed: Optional[bool] = None
    ) -> dict:
        params = {}
        if peer_id:
            params["peer_id"] = peer_id
        if include_closed is not None:
            params["include_closed"] = include_closed
        return await self.call("list_channels", [params])

    async def shutdown_channel(
        self, channel_id: str, close_script: dict, fee_rate: str, force: bool = False
    ) -> None:
        await self.call(
            "shutdown_channel",
            [{
                "channel_id": channel_id,
                "close_script": close_script,
                "force": force,
                "fee_rate": fee_rate,
            }],
        )

    async def add_tlc(
        self,
        channel_id: str,
        amount: str,
        payment_hash: str,
        expiry: Optional[str] = None,
        hash_algorithm: Optional[str] = None,
    ) -> dict:
        """Offer an HTLC on a channel; expiry defaults to one hour from now (ms)."""
        if expiry is None:
            expiry = num_to_hex(int((self._clock() + self.tlc_expiry_seconds) * 1000))
        return await self.call(
            "add_tlc",
            [{
                "channel_id": channel_id,
                "amount": amount,
                "payment_hash": payment_hash,
                "expiry": expiry,
                "hash_algorithm": hash_algorithm or HASH_ALGORITHM,
            }],
        )

    async def remove_tlc(self, channel_id: str, tlc_id: str, payment_preimage: str) -> None:
        await self.call(
            "remove_tlc",
            [{
                "channel_id": channel_id,
                "tlc_id": tlc_id,
                "reason": {"payment_preimage": payment_preimage},
            }],
        )

    # Invoices
    async def new_invoice(
        self,
        amount: str,
        currency: str,
        payment_preimage: str,
        description: Optional[str] = None,
        expiry: Optional[str] = None,
        hash_algorithm: Optional[str] = None,
    ) -> dict:
        params = {
            "amount": amount,
            "currency": currency,
            "payment_preimage": payment_preimage,
            "expiry": expiry or num_to_hex(self.invoice_expiry_seconds),
            "hash_algorithm": hash_algorithm or HASH_ALGORITHM,
        }
        if description is not None:
            params["description"] = description
        return await self.call("new_invoice", [params])

    async def parse_invoice(self, invoice: str) -> dict:
        result = await self.call("parse_invoice", [{"invoice": invoice}])
        return result["invoice"]

    # Payments
    async def send_payment(self, **params) -> dict:
        return await self.call("send_payment", [params])

    async def get_payment(self, payment_hash: str) -> dict:
        return await self.call("get_payment", [{"payment_hash": payment_hash}])

    # Node
    async def node_info(self) -> dict:
        return await self.call("node_info", [])
