"""Tests for the CKB JSON-RPC node client."""

import json

import httpx
import pytest

from ckbvault.ckb.node import INDEXER_PAGE_SIZE, NULL_TX_HASH, CkbRpcNode
from ckbvault.ckb.types import SHANNONS_PER_CKB, CellOutput, Transaction
from ckbvault.errors import LedgerUnavailable
from tests.conftest import lock_for

LOCK = lock_for(0x42)


def cell_object(n: int, capacity_ckb: int = 100) -> dict:
    return {
        "out_point": {"tx_hash": "0x" + f"{n:064x}", "index": "0x0"},
        "output": {
            "capacity": hex(capacity_ckb * SHANNONS_PER_CKB),
            "lock": LOCK.to_rpc(),
            "type": None,
        },
        "output_data": "0x",
        "block_number": hex(n),
    }


class RpcRecorder:
    """Routes JSON-RPC calls to per-method handlers and records them."""

    def __init__(self, handlers: dict):
        self.handlers = handlers
        self.calls: list[tuple[str, str, list]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append((str(request.url), body["method"], body["params"]))
        handler = self.handlers[body["method"]]
        result = handler(body["params"]) if callable(handler) else handler
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def make_node(handlers: dict, indexer_url=None) -> tuple[CkbRpcNode, RpcRecorder]:
    recorder = RpcRecorder(handlers)
    node = CkbRpcNode(
        "http://node.test/",
        indexer_url=indexer_url,
        transport=httpx.MockTransport(recorder),
    )
    return node, recorder


class TestIndexerQueries:
    """Tests for cell and transaction paging."""

    @pytest.mark.asyncio
    async def test_iter_cells_follows_cursor(self):
        pages = {
            None: {"objects": [cell_object(i) for i in range(INDEXER_PAGE_SIZE)], "last_cursor": "0xc1"},
            "0xc1": {"objects": [cell_object(1000)], "last_cursor": "0xc2"},
        }

        def get_cells(params):
            cursor = params[3] if len(params) > 3 else None
            return pages[cursor]

        node, recorder = make_node({"get_cells": get_cells}, indexer_url="http://indexer.test/")

        cells = [cell async for cell in node.iter_cells(LOCK)]

        assert len(cells) == INDEXER_PAGE_SIZE + 1
        assert cells[0].capacity == 100 * SHANNONS_PER_CKB
        assert cells[-1].block_number == 1000
        assert len(recorder.calls) == 2

        url, _, params = recorder.calls[0]
        assert url == "http://indexer.test/"
        assert params[0]["script"] == LOCK.to_rpc()
        assert params[0]["script_type"] == "lock"
        assert params[1:] == ["asc", hex(INDEXER_PAGE_SIZE)]

    @pytest.mark.asyncio
    async def test_iter_cells_type_filter(self, network):
        token = network.xudt.script("0x" + "ab" * 32)
        node, recorder = make_node({"get_cells": {"objects": [], "last_cursor": "0x"}})

        assert [cell async for cell in node.iter_cells(LOCK, token)] == []
        assert recorder.calls[0][2][0]["filter"] == {"script": token.to_rpc()}

    @pytest.mark.asyncio
    async def test_find_transactions_block_range(self):
        hits = {
            "objects": [
                {"tx_hash": "0xaa", "block_number": "0xb", "tx_index": "0x1", "io_index": "0x0", "io_type": "output"},
                {"tx_hash": "0xbb", "block_number": "0xc", "tx_index": "0x2", "io_index": "0x1", "io_type": "input"},
            ],
            "last_cursor": "0xff",
        }
        node, recorder = make_node({"get_transactions": hits})

        refs = await node.find_transactions(LOCK, 11, 13)

        assert [(ref.tx_hash, ref.block_number, ref.is_input) for ref in refs] == [
            ("0xaa", 11, False),
            ("0xbb", 12, True),
        ]
        assert recorder.calls[0][2][0]["filter"] == {"block_range": ["0xb", "0xd"]}

    @pytest.mark.asyncio
    async def test_cells_capacity(self):
        node, _ = make_node({"get_cells_capacity": {"capacity": hex(250 * SHANNONS_PER_CKB)}})
        assert await node.get_cells_capacity(LOCK) == 250 * SHANNONS_PER_CKB


class TestTransactions:
    """Tests for transaction lookup and broadcast."""

    @pytest.mark.asyncio
    async def test_detail_resolves_inputs(self):
        parent_hash = "0x" + "11" * 32
        child_hash = "0x" + "22" * 32
        sender = lock_for(0x01)

        transactions = {
            parent_hash: {
                "transaction": {
                    "inputs": [],
                    "outputs": [
                        CellOutput(capacity=1, lock=sender).to_rpc(),
                        CellOutput(capacity=300 * SHANNONS_PER_CKB, lock=sender).to_rpc(),
                    ],
                },
                "tx_status": {"block_number": "0xa"},
            },
            child_hash: {
                "transaction": {
                    "inputs": [
                        {"previous_output": {"tx_hash": NULL_TX_HASH, "index": "0xffffffff"}, "since": "0x0"},
                        {"previous_output": {"tx_hash": parent_hash, "index": "0x1"}, "since": "0x0"},
                    ],
                    "outputs": [CellOutput(capacity=300 * SHANNONS_PER_CKB, lock=LOCK).to_rpc()],
                },
                "tx_status": {"block_number": "0xb"},
            },
        }
        node, _ = make_node({"get_transaction": lambda params: transactions[params[0]]})

        detail = await node.get_transaction_detail(child_hash)

        assert detail.block_number == 11
        assert len(detail.inputs) == 1
        assert detail.inputs[0].capacity == 300 * SHANNONS_PER_CKB
        assert detail.inputs[0].lock == sender
        assert detail.outputs[0].lock == LOCK

    @pytest.mark.asyncio
    async def test_missing_transaction(self):
        node, _ = make_node({"get_transaction": None})
        with pytest.raises(LedgerUnavailable):
            await node.get_transaction_detail("0x" + "33" * 32)

    @pytest.mark.asyncio
    async def test_send_transaction_passthrough(self):
        node, recorder = make_node({"send_transaction": "0xhash"})

        assert await node.send_transaction(Transaction()) == "0xhash"
        assert recorder.calls[0][2][1] == "passthrough"

    @pytest.mark.asyncio
    async def test_rpc_error_is_ledger_unavailable(self):
        def rejected(request):
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -301, "message": "PoolRejected"}},
            )

        node = CkbRpcNode("http://node.test/", transport=httpx.MockTransport(rejected))
        with pytest.raises(LedgerUnavailable) as exc_info:
            await node.get_tip_block_number()
        assert "PoolRejected" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_http_status_error(self):
        node = CkbRpcNode("http://node.test/", transport=httpx.MockTransport(lambda r: httpx.Response(502)))
        with pytest.raises(LedgerUnavailable):
            await node.get_tip_block_number()
