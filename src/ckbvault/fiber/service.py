"""Channel and payment operations on the Fiber node.

Defaults for the channel peer and the cooperative-close script come from
settings, so callers can omit them.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ckbvault.config import Settings
from ckbvault.errors import FiberRpcError, PaymentTimeout, TransferError, ValidationError
from ckbvault.fiber.rpc import FiberClient, ckb_to_hex, ckb_to_shannons, hex_to_ckb, num_to_hex

logger = logging.getLogger(__name__)

DEFAULT_CLOSE_FEE_RATE = 1010
CHANNEL_BALANCE_FIELDS = (
    "local_balance",
    "remote_balance",
    "offered_tlc_balance",
    "received_tlc_balance",
)
PAYMENT_INFLIGHT = "Inflight"


class FiberService:
    """Operations the HTTP surface exposes for the Fiber node."""

    def __init__(
        self,
        client: FiberClient,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.settings = settings
        self._sleep = sleep

    async def connect(self, address: str, save: bool = True) -> None:
        if not address:
            raise ValidationError("Peer address is required")
        await self.client.connect_peer(address, save)
        logger.info(f"Connected to peer {address}")

    async def open_channel(self, funding_amount, peer_id: Optional[str] = None, public: bool = True) -> str:
        """Request a new channel funded with funding_amount CKB.

        Returns:
            Temporary channel id
        """
        peer_id = peer_id or self.settings.default_peer_id
        if not peer_id or not funding_amount:
            raise ValidationError("Peer ID and funding amount are required")

        result = await self.client.open_channel(peer_id, ckb_to_hex(funding_amount), public)
        logger.info(f"Channel open requested with {peer_id} for {funding_amount} CKB")
        return result["temporary_channel_id"]

    async def list_channels(
        self, peer_id: Optional[str] = None, include_closed: bool = False
    ) -> list[dict]:
        """Channels with their balances converted to CKB."""
        result = await self.client.list_channels(
            peer_id or self.settings.default_peer_id, include_closed
        )
        channels = []
        for channel in result.get("channels", []):
            formatted = dict(channel)
            for name in CHANNEL_BALANCE_FIELDS:
                if formatted.get(name) is not None:
                    formatted[name] = hex_to_ckb(formatted[name])
            channels.append(formatted)
        return channels

    async def default_channel_id(self) -> str:
        """First channel with the default peer."""
        if not self.settings.default_peer_id:
            raise ValidationError("Channel ID is required")
        result = await self.client.list_channels(self.settings.default_peer_id)
        channels = result.get("channels", [])
        if not channels:
            raise ValidationError(f"No channel with default peer {self.settings.default_peer_id}")
        channel_id = channels[0]["channel_id"]
        logger.info(f"Using default channel: {channel_id}")
        return channel_id

    def default_close_script(self) -> Optional[dict]:
        if not self.settings.close_code_hash or not self.settings.close_args:
            return None
        return {
            "code_hash": self.settings.close_code_hash,
            "hash_type": "type",
            "args": self.settings.close_args,
        }

    async def close_channel(
        self,
        channel_id: Optional[str] = None,
        close_script: Optional[dict] = None,
        force: bool = False,
        fee_rate: int = DEFAULT_CLOSE_FEE_RATE,
    ) -> str:
        close_script = close_script or self.default_close_script()
        if not close_script:
            raise ValidationError("Close script is required")
        channel_id = channel_id or await self.default_channel_id()

        await self.client.shutdown_channel(
            channel_id, close_script, num_to_hex(fee_rate), force=force
        )
        logger.info(f"Close requested for channel {channel_id} (force={force})")
        return channel_id

    async def parse_invoice(self, invoice: str) -> dict:
        """Decode an invoice, with its amount in CKB.

        Raises:
            ValidationError: If the node cannot parse the invoice
        """
        if not invoice:
            raise ValidationError("Invoice is required")
        try:
            parsed = await self.client.parse_invoice(invoice)
        except FiberRpcError as e:
            logger.warning(f"Failed to parse invoice: {e}")
            raise ValidationError("Invalid invoice format") from e

        result = dict(parsed)
        if result.get("amount") is not None:
            result["amount"] = hex_to_ckb(result["amount"])
        return result

    async def _checked_invoice(self, invoice: str, amount) -> dict:
        if not invoice or not amount:
            raise ValidationError("Invoice and amount are required")
        parsed = await self.client.parse_invoice(invoice)
        expected = ckb_to_shannons(amount)
        actual = int(parsed["amount"], 16) if parsed.get("amount") else None
        if actual != expected:
            shown = hex_to_ckb(parsed["amount"]) if actual is not None else "none"
            raise TransferError(
                f"Invoice amount does not match transfer amount: "
                f"Invoice amount {shown} CKB, Transfer amount {amount} CKB"
            )
        return parsed

    async def transfer_by_invoice(
        self, invoice: str, amount, channel_id: Optional[str] = None
    ) -> str:
        """Pay an invoice by offering a TLC directly on one channel.

        Returns:
            TLC id
        """
        parsed = await self._checked_invoice(invoice, amount)
        payment_hash = (parsed.get("data") or {}).get("payment_hash")
        if not payment_hash:
            raise TransferError("Payment hash not found in invoice")

        channel_id = channel_id or await self.default_channel_id()
        result = await self.client.add_tlc(channel_id, parsed["amount"], payment_hash)
        logger.info(f"Added TLC {result['tlc_id']} on {channel_id} for {amount} CKB")
        return result["tlc_id"]

    async def pay_invoice(self, invoice: str, amount) -> dict:
        """Send a routed payment and wait until it leaves the Inflight state.

        Raises:
            PaymentTimeout: If still inflight after payment_timeout_seconds
        """
        await self._checked_invoice(invoice, amount)
        payment = await self.client.send_payment(invoice=invoice)
        logger.info(f"Payment {payment.get('payment_hash')} sent: {payment.get('status')}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.payment_timeout_seconds
        while payment.get("status") == PAYMENT_INFLIGHT:
            if loop.time() >= deadline:
                raise PaymentTimeout(
                    f"Payment {payment.get('payment_hash')} still inflight after "
                    f"{self.settings.payment_timeout_seconds}s"
                )
            await self._sleep(self.settings.payment_poll_interval_seconds)
            payment = await self.client.get_payment(payment["payment_hash"])

        logger.info(f"Payment {payment.get('payment_hash')} finished: {payment.get('status')}")
        return payment
