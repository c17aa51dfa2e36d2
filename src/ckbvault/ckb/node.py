"""CKB node and indexer access.

The transfer builder and the sync monitor only talk to the chain through the
LedgerNode interface; CkbRpcNode implements it over JSON-RPC.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

import httpx

from ckbvault.ckb.types import (
    Cell,
    CellInput,
    CellOutput,
    OutPoint,
    Script,
    Transaction,
    from_hex_int,
    to_hex_int,
)
from ckbvault.errors import LedgerUnavailable

logger = logging.getLogger(__name__)

# Cellbase inputs point at this null out point
NULL_TX_HASH = "0x" + "00" * 32

INDEXER_PAGE_SIZE = 100


@dataclass
class TxRef:
    """One indexer hit: a transaction touching a lock on its input or output side."""

    tx_hash: str
    block_number: int
    tx_index: int
    io_index: int
    is_input: bool


@dataclass
class TransactionDetail:
    """Committed transaction with every input resolved to the cell it spent."""

    tx_hash: str
    block_number: Optional[int]
    inputs: list[CellOutput] = field(default_factory=list)
    outputs: list[CellOutput] = field(default_factory=list)


class LedgerNode(ABC):
    """Read and broadcast access to a CKB node with an indexer."""

    @abstractmethod
    async def get_tip_block_number(self) -> int:
        """Current tip height."""
        pass

    @abstractmethod
    def iter_cells(
        self, lock: Script, type_script: Optional[Script] = None
    ) -> AsyncIterator[Cell]:
        """Live cells of a lock, optionally restricted to one type script.

        Cells are yielded oldest first, paging through the indexer lazily.
        """
        pass

    @abstractmethod
    async def find_transactions(
        self, lock: Script, start_block: int, end_block: int
    ) -> list[TxRef]:
        """Indexer hits for lock in the half-open block range [start_block, end_block)."""
        pass

    @abstractmethod
    async def get_transaction_detail(self, tx_hash: str) -> TransactionDetail:
        """Fetch a transaction and resolve its inputs."""
        pass

    @abstractmethod
    async def get_cells_capacity(self, lock: Script) -> int:
        """Total capacity (shannons) of live cells under lock."""
        pass

    @abstractmethod
    async def send_transaction(self, tx: Transaction) -> str:
        """Broadcast a signed transaction. Returns its hash."""
        pass


class CkbRpcNode(LedgerNode):
    """LedgerNode over the CKB node and indexer JSON-RPC endpoints."""

    def __init__(
        self,
        rpc_url: str,
        indexer_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            rpc_url: CKB node JSON-RPC endpoint
            indexer_url: Indexer endpoint (the node's built-in indexer if None)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.rpc_url = rpc_url
        self.indexer_url = indexer_url or rpc_url
        self.timeout = timeout
        self._transport = transport
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: list, url: Optional[str] = None):
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url or self.rpc_url, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"CKB RPC {method} failed: {e}")
            raise LedgerUnavailable(f"CKB RPC {method} failed: {e}") from e
        except ValueError as e:
            raise LedgerUnavailable(f"CKB RPC {method} returned invalid JSON") from e

        if data.get("error"):
            error = data["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            logger.error(f"CKB RPC {method} error: {message}")
            raise LedgerUnavailable(f"CKB RPC {method} error: {message}")

        return data.get("result")

    @staticmethod
    def _search_key(lock: Script, type_script: Optional[Script] = None, **filters) -> dict:
        search_key = {
            "script": lock.to_rpc(),
            "script_type": "lock",
            "script_search_mode": "exact",
        }
        if type_script is not None:
            filters["script"] = type_script.to_rpc()
        if filters:
            search_key["filter"] = filters
        return search_key

    async def get_tip_block_number(self) -> int:
        return from_hex_int(await self._call("get_tip_block_number", []))

    async def iter_cells(
        self, lock: Script, type_script: Optional[Script] = None
    ) -> AsyncIterator[Cell]:
        search_key = self._search_key(lock, type_script)
        cursor = None
        while True:
            params = [search_key, "asc", to_hex_int(INDEXER_PAGE_SIZE)]
            if cursor:
                params.append(cursor)
            page = await self._call("get_cells", params, self.indexer_url)
            objects = page.get("objects", []) if page else []

            for item in objects:
                yield Cell(
                    out_point=OutPoint.from_rpc(item["out_point"]),
                    output=CellOutput.from_rpc(item["output"]),
                    data=item.get("output_data") or "0x",
                    block_number=from_hex_int(item["block_number"]),
                )

            cursor = page.get("last_cursor") if page else None
            if len(objects) < INDEXER_PAGE_SIZE or not cursor:
                return

    async def find_transactions(
        self, lock: Script, start_block: int, end_block: int
    ) -> list[TxRef]:
        search_key = self._search_key(
            lock, block_range=[to_hex_int(start_block), to_hex_int(end_block)]
        )
        refs: list[TxRef] = []
        cursor = None
        while True:
            params = [search_key, "asc", to_hex_int(INDEXER_PAGE_SIZE)]
            if cursor:
                params.append(cursor)
            page = await self._call("get_transactions", params, self.indexer_url)
            objects = page.get("objects", []) if page else []

            for item in objects:
                refs.append(
                    TxRef(
                        tx_hash=item["tx_hash"],
                        block_number=from_hex_int(item["block_number"]),
                        tx_index=from_hex_int(item["tx_index"]),
                        io_index=from_hex_int(item["io_index"]),
                        is_input=item["io_type"] == "input",
                    )
                )

            cursor = page.get("last_cursor") if page else None
            if len(objects) < INDEXER_PAGE_SIZE or not cursor:
                return refs

    async def _get_transaction(self, tx_hash: str) -> dict:
        result = await self._call("get_transaction", [tx_hash])
        if not result or not result.get("transaction"):
            raise LedgerUnavailable(f"Transaction {tx_hash} not found")
        return result

    async def get_transaction_detail(self, tx_hash: str) -> TransactionDetail:
        result = await self._get_transaction(tx_hash)
        raw = result["transaction"]
        status = result.get("tx_status") or {}
        block_number = status.get("block_number")

        previous: dict[str, list[dict]] = {}
        inputs = []
        for item in raw["inputs"]:
            cell_input = CellInput.from_rpc(item)
            out_point = cell_input.previous_output
            if out_point.tx_hash == NULL_TX_HASH:
                continue
            if out_point.tx_hash not in previous:
                parent = await self._get_transaction(out_point.tx_hash)
                previous[out_point.tx_hash] = parent["transaction"]["outputs"]
            inputs.append(CellOutput.from_rpc(previous[out_point.tx_hash][out_point.index]))

        return TransactionDetail(
            tx_hash=tx_hash,
            block_number=from_hex_int(block_number) if block_number else None,
            inputs=inputs,
            outputs=[CellOutput.from_rpc(output) for output in raw["outputs"]],
        )

    async def get_cells_capacity(self, lock: Script) -> int:
        result = await self._call("get_cells_capacity", [self._search_key(lock)], self.indexer_url)
        if not result:
            return 0
        return from_hex_int(result["capacity"])

    async def send_transaction(self, tx: Transaction) -> str:
        tx_hash = await self._call("send_transaction", [tx.to_rpc(), "passthrough"])
        logger.info(f"Broadcast transaction {tx_hash}")
        return tx_hash
