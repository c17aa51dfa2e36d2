"""Incremental chain sync of the managed wallet's incoming transactions.

Each pass:
1. Take the store-wide sync lock (skip the pass if another holder has it)
2. Read the checkpoint and the chain tip
3. Find transactions that pay the managed lock in (checkpoint, tip]
4. Resolve inputs and store one balance-change record per transaction
5. Advance the checkpoint to the tip, then release the lock

Transactions in which the managed lock also spends an input are outbound and
are not recorded.
"""

import asyncio
import json
import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ckbvault.ckb.address import encode_address
from ckbvault.ckb.node import LedgerNode, TransactionDetail, TxRef
from ckbvault.ckb.scripts import NetworkConfig
from ckbvault.ckb.types import Script, format_units
from ckbvault.store.repository import CounterStore

logger = logging.getLogger(__name__)

LAST_SYNCED_BLOCK_KEY = "last_synced_block"
TRANSACTIONS_KEY = "transactions"
TRANSACTION_HASH_KEY = "transaction_hash"
SYNC_LOCK_KEY = "sync_lock"
SYNC_ANOMALIES_KEY = "sync_anomalies"


class SyncOutcome(str, Enum):
    """How a sync pass ended."""
    LOCK_DENIED = "lock_denied"          # Another pass holds the lock
    UP_TO_DATE = "up_to_date"            # Checkpoint already at the tip
    ANOMALY = "anomaly"                  # Checkpoint ahead of the tip
    NO_TRANSACTIONS = "no_transactions"  # Range scanned, nothing received
    SYNCED = "synced"                    # Records written


@dataclass
class SyncResult:
    outcome: SyncOutcome
    transactions: int = 0
    checkpoint: Optional[int] = None


def filter_received(refs: list[TxRef]) -> list[TxRef]:
    """Keep transactions that only pay the lock, one entry each, oldest first."""
    spending = {ref.tx_hash for ref in refs if ref.is_input}
    received: dict[str, TxRef] = {}
    for ref in refs:
        if ref.is_input or ref.tx_hash in spending or ref.tx_hash in received:
            continue
        received[ref.tx_hash] = ref
    return sorted(received.values(), key=lambda ref: (ref.block_number, ref.tx_index))


def build_transaction_record(
    detail: TransactionDetail, block_number: int, network: NetworkConfig
) -> dict:
    """Summarize a transaction as per-address CKB movements.

    balanceChanges holds, for every address seen on either side, the sum of
    its outputs minus the sum of its inputs.
    """
    inputs = [(encode_address(cell.lock, network), cell.capacity) for cell in detail.inputs]
    outputs = [(encode_address(cell.lock, network), cell.capacity) for cell in detail.outputs]

    changes: dict[str, int] = {}
    for address, value in inputs:
        changes[address] = changes.get(address, 0) - value
    for address, value in outputs:
        changes[address] = changes.get(address, 0) + value

    return {
        "txHash": detail.tx_hash,
        "blockNumber": block_number,
        "inputs": [{"address": a, "value": format_units(v, 8)} for a, v in inputs],
        "outputs": [{"address": a, "value": format_units(v, 8)} for a, v in outputs],
        "balanceChanges": [
            {"address": a, "value": format_units(v, 8)} for a, v in changes.items()
        ],
    }


class SyncMonitor:
    """One sync pass at a time across every process sharing the store."""

    def __init__(
        self,
        store: CounterStore,
        node: LedgerNode,
        lock_script: Script,
        network: NetworkConfig,
        lock_ttl_seconds: int = 60,
    ):
        self.store = store
        self.node = node
        self.lock_script = lock_script
        self.network = network
        self.lock_ttl_seconds = lock_ttl_seconds

    async def get_checkpoint(self) -> Optional[int]:
        value = await self.store.get(LAST_SYNCED_BLOCK_KEY)
        return int(value) if value is not None else None

    async def sync_once(self) -> SyncResult:
        """Run a single pass.

        Node or store failures propagate after the lock is released; the
        checkpoint is left where it was.
        """
        token = secrets.token_hex(16)
        acquired = await self.store.set(
            SYNC_LOCK_KEY, token, ex=self.lock_ttl_seconds, nx=True
        )
        if not acquired:
            logger.debug("Another sync pass holds the lock, skipping")
            return SyncResult(SyncOutcome.LOCK_DENIED)

        try:
            return await self._sync()
        finally:
            if not await self.store.delete_if_equal(SYNC_LOCK_KEY, token):
                logger.warning("Sync lock expired before the pass finished")

    async def _sync(self) -> SyncResult:
        checkpoint = await self.get_checkpoint()
        tip = await self.node.get_tip_block_number()

        if checkpoint is not None and checkpoint > tip:
            anomalies = await self.store.incr(SYNC_ANOMALIES_KEY)
            logger.warning(
                f"Checkpoint {checkpoint} is ahead of chain tip {tip} "
                f"(anomaly #{anomalies}), not syncing"
            )
            return SyncResult(SyncOutcome.ANOMALY, checkpoint=checkpoint)

        start = checkpoint + 1 if checkpoint is not None else 0
        if start > tip:
            return SyncResult(SyncOutcome.UP_TO_DATE, checkpoint=checkpoint)

        refs = await self.node.find_transactions(self.lock_script, start, tip + 1)
        received = filter_received(refs)

        if received:
            logger.info(f"Found {len(received)} new transactions from block {start} to {tip}")
            # One lookup at a time; each resolves its inputs with further calls.
            details = []
            for ref in received:
                details.append(await self.node.get_transaction_detail(ref.tx_hash))
            async with self.store.pipeline() as pipe:
                for ref, detail in zip(received, details):
                    record = build_transaction_record(detail, ref.block_number, self.network)
                    pipe.hset(TRANSACTIONS_KEY, ref.tx_hash, json.dumps(record))
                    pipe.zadd(TRANSACTION_HASH_KEY, {ref.tx_hash: ref.block_number})

        await self.store.set_if_greater(LAST_SYNCED_BLOCK_KEY, tip)
        logger.info(f"Synced transactions up to block {tip}")

        if not received:
            return SyncResult(SyncOutcome.NO_TRANSACTIONS, checkpoint=tip)
        return SyncResult(SyncOutcome.SYNCED, transactions=len(received), checkpoint=tip)

    async def recent_transactions(self, limit: int = 20) -> list[dict]:
        """Latest stored records, newest block first."""
        hashes = await self.store.zrange(TRANSACTION_HASH_KEY, limit=limit, desc=True)
        records = []
        for tx_hash in hashes:
            raw = await self.store.hget(TRANSACTIONS_KEY, tx_hash)
            if raw is not None:
                records.append(json.loads(raw))
        return records


class SyncScheduler:
    """Fires a sync pass every interval.

    Passes run as independent tasks, so a slow pass does not delay the next
    tick; overlapping passes are resolved by the store lock.
    """

    def __init__(self, monitor: SyncMonitor, interval_seconds: float = 3.0):
        self.monitor = monitor
        self.interval_seconds = interval_seconds
        self._running = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    async def _tick(self) -> None:
        try:
            result = await self.monitor.sync_once()
            if result.outcome == SyncOutcome.SYNCED:
                logger.info(
                    f"Recorded {result.transactions} transactions, checkpoint {result.checkpoint}"
                )
        except Exception as e:
            logger.error(f"Sync pass failed: {e}", exc_info=True)

    async def run(self) -> None:
        """Run until stop() is called."""
        self._running = True
        logger.info(f"Starting chain sync (interval: {self.interval_seconds}s)")

        while self._running:
            task = asyncio.create_task(self._tick())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            await asyncio.sleep(self.interval_seconds)

    def stop(self) -> None:
        """Stop scheduling new passes."""
        self._running = False
        logger.info("Stopping chain sync")

    async def wait_idle(self) -> None:
        """Wait for passes already started to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
