"""Outbound transfers from the managed wallet.

Transfer flow:
1. Validate destination and amount
2. Reserve quota (destination + hourly ceilings)
3. Build outputs, collect funding cells, add token and capacity change
4. Sign and broadcast
5. Commit quota usage (only after the broadcast succeeded)
"""

import logging
import re
from typing import AsyncIterator

from ckbvault.ckb.address import decode_address, encode_address
from ckbvault.ckb.molecule import transaction_fee
from ckbvault.ckb.node import LedgerNode
from ckbvault.ckb.scripts import NetworkConfig
from ckbvault.ckb.types import (
    SHANNONS_PER_CKB,
    Cell,
    CellInput,
    CellOutput,
    Script,
    Transaction,
    format_units,
    hex_to_bytes,
    udt_amount_to_data,
)
from ckbvault.config import Settings
from ckbvault.errors import InsufficientFunds, TransferError, ValidationError
from ckbvault.services.rate_limiter import NATIVE_ASSET, RateLimiter, asset_key_for
from ckbvault.signing.base import Signer

logger = logging.getLogger(__name__)

_AMOUNT_RE = re.compile(r"^[0-9]+$")
_ARGS_RE = re.compile(r"^0x(?:[0-9a-f]{2})*$")

UDT_DATA_SIZE = 16


def parse_amount(value) -> int:
    """Parse a positive whole display-unit amount ("100")."""
    if isinstance(value, bool) or value is None:
        raise ValidationError("amountInCKB is required")
    text = str(value).strip()
    if not _AMOUNT_RE.match(text):
        raise ValidationError(f"Invalid amount '{value}': expected a positive integer")
    amount = int(text)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    return amount


def parse_token_args(value: str) -> str:
    """Normalize xUDT args to lower-case 0x-prefixed hex."""
    args = (value or "").strip().lower()
    if not args.startswith("0x"):
        args = "0x" + args
    if args == "0x" or not _ARGS_RE.match(args):
        raise ValidationError(f"Invalid xUDT args '{value}'")
    return args


class TransferService:
    """Builds, signs and broadcasts transfers for the managed lock."""

    def __init__(
        self,
        node: LedgerNode,
        signer: Signer,
        limiter: RateLimiter,
        settings: Settings,
        network: NetworkConfig,
    ):
        self.node = node
        self.signer = signer
        self.limiter = limiter
        self.settings = settings
        self.network = network

    @property
    def lock(self) -> Script:
        return self.signer.lock_script

    def address(self) -> str:
        """Full-format address of the managed wallet."""
        return self.signer.address

    def token_script(self, token_args: str) -> Script:
        return self.network.xudt.script(parse_token_args(token_args))

    # Balances
    async def balance(self) -> str:
        """Total CKB held by the managed lock."""
        capacity = await self.node.get_cells_capacity(self.lock)
        return format_units(capacity, 8)

    async def token_balance(self, token_args: str) -> str:
        """Total amount of one xUDT held by the managed lock."""
        type_script = self.token_script(token_args)
        total = 0
        async for cell in self.node.iter_cells(self.lock, type_script):
            if cell.output.type == type_script:
                total += cell.udt_amount
        return format_units(total, self.settings.token_decimals)

    # Transfers
    def _destination(self, destination: str) -> tuple[Script, str]:
        lock = decode_address(destination, self.network)
        return lock, encode_address(lock, self.network)

    async def _reserve(self, asset_key: str, destination: str, amount: int, ignore_limit: bool) -> None:
        result = await self.limiter.reserve(asset_key, destination, amount, ignore_limit)
        if not result.accepted:
            raise TransferError(result.message, reason=result.reason)

    async def transfer_native(self, destination: str, amount, ignore_limit: bool = False) -> str:
        """Send whole CKB to destination.

        Returns:
            Transaction hash

        Raises:
            ValidationError: Bad address or amount, or amount below the cell minimum
            TransferError: Quota exceeded
            InsufficientFunds: Managed cells cannot cover amount plus fee
            LedgerUnavailable: Node failure
        """
        to_lock, canonical = self._destination(destination)
        amount_units = parse_amount(amount)

        output = CellOutput(capacity=amount_units * SHANNONS_PER_CKB, lock=to_lock)
        minimum = output.occupied_capacity()
        if output.capacity < minimum:
            raise ValidationError(
                f"Amount {amount_units} CKB is below the minimum cell capacity "
                f"of {format_units(minimum, 8)} CKB"
            )
        await self._reserve(NATIVE_ASSET, canonical, amount_units, ignore_limit)

        tx = Transaction()
        tx.add_output(output)
        tx.add_cell_dep(self.network.secp256k1_blake160.cell_dep)
        await self._complete_capacity(tx, inputs_capacity=0)

        tx_hash = await self._sign_and_send(tx)
        logger.info(f"Sent {amount_units} CKB to {canonical}: {tx_hash}")
        await self._commit(NATIVE_ASSET, canonical, amount_units)
        return tx_hash

    async def transfer_token(
        self, token_args: str, destination: str, amount, ignore_limit: bool = False
    ) -> str:
        """Send whole xUDT units to destination.

        Returns:
            Transaction hash
        """
        type_script = self.token_script(token_args)
        asset_key = asset_key_for(type_script.args)
        to_lock, canonical = self._destination(destination)
        amount_units = parse_amount(amount)
        await self._reserve(asset_key, canonical, amount_units, ignore_limit)

        requested = amount_units * 10**self.settings.token_decimals
        tx = Transaction()
        token_output = CellOutput(capacity=0, lock=to_lock, type=type_script)
        token_output.capacity = token_output.occupied_capacity(b"\x00" * UDT_DATA_SIZE)
        tx.add_output(token_output, udt_amount_to_data(requested))

        collected = 0
        inputs_capacity = 0
        async for cell in self.node.iter_cells(self.lock, type_script):
            if cell.output.type != type_script or len(hex_to_bytes(cell.data)) < UDT_DATA_SIZE:
                continue
            tx.inputs.append(CellInput(previous_output=cell.out_point))
            collected += cell.udt_amount
            inputs_capacity += cell.capacity
            if collected >= requested:
                break

        if collected < requested:
            raise InsufficientFunds(
                f"Insufficient token balance: have "
                f"{format_units(collected, self.settings.token_decimals)}, need {amount_units}"
            )

        if collected > requested:
            change = CellOutput(capacity=0, lock=self.lock, type=type_script)
            change.capacity = change.occupied_capacity(b"\x00" * UDT_DATA_SIZE)
            tx.add_output(change, udt_amount_to_data(collected - requested))

        tx.add_cell_dep(self.network.xudt.cell_dep)
        tx.add_cell_dep(self.network.secp256k1_blake160.cell_dep)
        await self._complete_capacity(tx, inputs_capacity=inputs_capacity)

        tx_hash = await self._sign_and_send(tx)
        logger.info(f"Sent {amount_units} of xUDT {type_script.args} to {canonical}: {tx_hash}")
        await self._commit(asset_key, canonical, amount_units)
        return tx_hash

    # Building
    async def _plain_cells(self) -> AsyncIterator[Cell]:
        async for cell in self.node.iter_cells(self.lock):
            if cell.is_plain:
                yield cell

    def _fee(self, tx: Transaction) -> int:
        self.signer.prepare_witnesses(tx)
        return transaction_fee(tx, self.settings.fee_rate)

    async def _complete_capacity(self, tx: Transaction, inputs_capacity: int) -> None:
        """Add plain inputs and a change output until capacity and fee balance.

        The change output must hold at least its own occupied capacity; an
        exact zero remainder is settled without one.
        """
        cells = self._plain_cells()
        required = tx.outputs_capacity
        change = CellOutput(capacity=0, lock=self.lock)
        min_change = change.occupied_capacity()

        while True:
            if tx.inputs and inputs_capacity >= required:
                tx.add_output(change)
                fee = self._fee(tx)
                remainder = inputs_capacity - required - fee
                if remainder >= min_change:
                    change.capacity = remainder
                    logger.debug(f"Fee {fee} shannons, change {remainder} shannons")
                    return
                tx.outputs.pop()
                tx.outputs_data.pop()

                fee = self._fee(tx)
                if inputs_capacity - required == fee:
                    logger.debug(f"Fee {fee} shannons, no change output")
                    return

            cell = await anext(cells, None)
            if cell is None:
                raise InsufficientFunds(
                    f"Insufficient CKB: have {format_units(inputs_capacity, 8)}, "
                    f"need more than {format_units(required, 8)} plus fee"
                )
            tx.inputs.append(CellInput(previous_output=cell.out_point))
            inputs_capacity += cell.capacity

    async def _sign_and_send(self, tx: Transaction) -> str:
        self.signer.prepare_witnesses(tx)
        signed = await self.signer.sign_transaction(tx)
        tx_hash = await self.node.send_transaction(signed)
        logger.info(f"Transaction sent. Check it at {self.network.explorer_tx_url(tx_hash)}")
        return tx_hash

    async def _commit(self, asset_key: str, destination: str, amount: int) -> None:
        # The transaction is already on the network; a failed commit only under-counts.
        try:
            await self.limiter.commit(asset_key, destination, amount)
        except Exception:
            logger.exception(f"Failed to record {amount} {asset_key} usage for {destination}")
