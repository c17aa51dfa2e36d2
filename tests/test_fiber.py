"""Tests for the Fiber node client and channel operations."""

import json

import httpx
import pytest

from ckbvault.errors import FiberRpcError, PaymentTimeout, TransferError, ValidationError
from ckbvault.fiber.rpc import FiberClient, ckb_to_hex, ckb_to_shannons, hex_to_ckb, num_to_hex
from ckbvault.fiber.service import FiberService

PEER_ID = "QmPeer"
CHANNEL_ID = "0x" + "aa" * 32
PAYMENT_HASH = "0x" + "bb" * 32


class FakeFiberNode:
    """Scripted JSON-RPC responses keyed by method name."""

    def __init__(self):
        self.requests: list[dict] = []
        self.results: dict[str, object] = {}
        self.errors: dict[str, object] = {}
        self.payment_statuses: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        method = body["method"]

        if method in self.errors:
            return httpx.Response(200, json={"id": body["id"], "jsonrpc": "2.0", "error": self.errors[method]})
        if method == "get_payment":
            status = self.payment_statuses.pop(0) if self.payment_statuses else "Success"
            result = {"payment_hash": PAYMENT_HASH, "status": status}
        else:
            result = self.results.get(method)
        return httpx.Response(200, json={"id": body["id"], "jsonrpc": "2.0", "result": result})

    def params(self, method: str) -> dict:
        for body in reversed(self.requests):
            if body["method"] == method:
                return body["params"][0] if body["params"] else {}
        raise AssertionError(f"{method} was not called")


@pytest.fixture
def fiber_node() -> FakeFiberNode:
    return FakeFiberNode()


@pytest.fixture
def fiber_client(fiber_node, clock) -> FiberClient:
    return FiberClient(
        "http://fiber.test",
        transport=httpx.MockTransport(fiber_node.handler),
        clock=clock,
    )


@pytest.fixture
def fiber_service(fiber_client, settings) -> FiberService:
    settings.default_peer_id = PEER_ID
    settings.close_code_hash = "0x" + "cc" * 32
    settings.close_args = "0x" + "dd" * 20

    async def no_sleep(_seconds):
        return None

    return FiberService(fiber_client, settings, sleep=no_sleep)


class TestAmountHelpers:
    """Tests for CKB/shannon conversions."""

    def test_ckb_to_hex(self):
        assert ckb_to_hex(100) == "0x2540be400"
        assert ckb_to_hex("0.5") == hex(50_000_000)
        assert num_to_hex(255) == "0xff"

    def test_hex_to_ckb_is_exact(self):
        assert hex_to_ckb("0x2540be400") == "100"
        assert hex_to_ckb(hex(123_456_789)) == "1.23456789"

    @pytest.mark.parametrize("amount", ["abc", "0.000000001", "-1"])
    def test_rejects_bad_amounts(self, amount):
        with pytest.raises(ValidationError):
            ckb_to_shannons(amount)


class TestFiberClient:
    """Tests for the JSON-RPC wrapper."""

    @pytest.mark.asyncio
    async def test_request_envelope(self, fiber_client, fiber_node, clock):
        fiber_node.results["node_info"] = {"node_name": "test"}

        assert await fiber_client.node_info() == {"node_name": "test"}

        body = fiber_node.requests[0]
        assert body["jsonrpc"] == "2.0"
        assert body["method"] == "node_info"
        assert body["params"] == []
        assert body["id"] // 10 == int(clock())

    @pytest.mark.asyncio
    async def test_rpc_error(self, fiber_client, fiber_node):
        fiber_node.errors["connect_peer"] = {"code": -1, "message": "peer unreachable"}

        with pytest.raises(FiberRpcError) as exc_info:
            await fiber_client.connect_peer("/ip4/127.0.0.1/tcp/8228")
        assert exc_info.value.message == "RPC Error: peer unreachable"

    @pytest.mark.asyncio
    async def test_http_failure(self, clock):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = FiberClient("http://fiber.test", transport=httpx.MockTransport(refuse), clock=clock)
        with pytest.raises(FiberRpcError):
            await client.node_info()

    @pytest.mark.asyncio
    async def test_connect_peer_omits_unset_save(self, fiber_client, fiber_node):
        await fiber_client.connect_peer("/ip4/127.0.0.1/tcp/8228")
        assert fiber_node.params("connect_peer") == {"address": "/ip4/127.0.0.1/tcp/8228"}

    @pytest.mark.asyncio
    async def test_add_tlc_defaults(self, fiber_client, fiber_node, clock):
        """Expiry is one hour from now in hex milliseconds; hash is sha256."""
        fiber_node.results["add_tlc"] = {"tlc_id": "0x1"}

        await fiber_client.add_tlc(CHANNEL_ID, "0x64", PAYMENT_HASH)

        params = fiber_node.params("add_tlc")
        assert params["expiry"] == hex(int((clock() + 3600) * 1000))
        assert params["hash_algorithm"] == "sha256"

    @pytest.mark.asyncio
    async def test_new_invoice_defaults(self, fiber_client, fiber_node):
        fiber_node.results["new_invoice"] = {"invoice_address": "fibt1..."}

        await fiber_client.new_invoice("0x64", "Fibt", "0x" + "01" * 32)

        params = fiber_node.params("new_invoice")
        assert params["expiry"] == "0xe10"
        assert params["hash_algorithm"] == "sha256"
        assert "description" not in params


class TestChannels:
    """Tests for channel management."""

    @pytest.mark.asyncio
    async def test_open_channel_uses_default_peer(self, fiber_service, fiber_node):
        fiber_node.results["open_channel"] = {"temporary_channel_id": "0xtemp"}

        assert await fiber_service.open_channel("500") == "0xtemp"

        params = fiber_node.params("open_channel")
        assert params["peer_id"] == PEER_ID
        assert params["funding_amount"] == ckb_to_hex(500)
        assert params["public"] is True

    @pytest.mark.asyncio
    async def test_open_channel_requires_peer(self, fiber_service, settings):
        settings.default_peer_id = None
        with pytest.raises(ValidationError):
            await fiber_service.open_channel("500")

    @pytest.mark.asyncio
    async def test_list_channels_formats_balances(self, fiber_service, fiber_node):
        fiber_node.results["list_channels"] = {
            "channels": [{
                "channel_id": CHANNEL_ID,
                "local_balance": hex(150_000_000),
                "remote_balance": "0x0",
                "state": {"state_name": "CHANNEL_READY"},
            }]
        }

        channels = await fiber_service.list_channels()

        assert channels[0]["local_balance"] == "1.5"
        assert channels[0]["remote_balance"] == "0"
        assert channels[0]["state"] == {"state_name": "CHANNEL_READY"}
        assert fiber_node.params("list_channels") == {"peer_id": PEER_ID, "include_closed": False}

    @pytest.mark.asyncio
    async def test_close_default_channel(self, fiber_service, fiber_node):
        fiber_node.results["list_channels"] = {"channels": [{"channel_id": CHANNEL_ID}]}

        assert await fiber_service.close_channel() == CHANNEL_ID

        params = fiber_node.params("shutdown_channel")
        assert params["channel_id"] == CHANNEL_ID
        assert params["close_script"]["hash_type"] == "type"
        assert params["fee_rate"] == hex(1010)
        assert params["force"] is False

    @pytest.mark.asyncio
    async def test_close_without_channels(self, fiber_service, fiber_node):
        fiber_node.results["list_channels"] = {"channels": []}
        with pytest.raises(ValidationError):
            await fiber_service.close_channel()

    @pytest.mark.asyncio
    async def test_close_requires_script(self, fiber_service, settings):
        settings.close_code_hash = None
        with pytest.raises(ValidationError):
            await fiber_service.close_channel(CHANNEL_ID)


class TestInvoicesAndPayments:
    """Tests for invoice-driven transfers."""

    @pytest.fixture(autouse=True)
    def invoice(self, fiber_node):
        fiber_node.results["parse_invoice"] = {
            "invoice": {
                "currency": "Fibt",
                "amount": ckb_to_hex(10),
                "data": {"payment_hash": PAYMENT_HASH},
            }
        }

    @pytest.mark.asyncio
    async def test_parse_invoice_amount_in_ckb(self, fiber_service):
        parsed = await fiber_service.parse_invoice("fibt1invoice")
        assert parsed["amount"] == "10"
        assert parsed["data"]["payment_hash"] == PAYMENT_HASH

    @pytest.mark.asyncio
    async def test_invalid_invoice(self, fiber_service, fiber_node):
        fiber_node.errors["parse_invoice"] = {"code": -32602, "message": "invalid bech32"}

        with pytest.raises(ValidationError) as exc_info:
            await fiber_service.parse_invoice("garbage")
        assert exc_info.value.message == "Invalid invoice format"

    @pytest.mark.asyncio
    async def test_transfer_by_invoice_adds_tlc(self, fiber_service, fiber_node):
        fiber_node.results["list_channels"] = {"channels": [{"channel_id": CHANNEL_ID}]}
        fiber_node.results["add_tlc"] = {"tlc_id": "0x7"}

        assert await fiber_service.transfer_by_invoice("fibt1invoice", "10") == "0x7"

        params = fiber_node.params("add_tlc")
        assert params["channel_id"] == CHANNEL_ID
        assert params["amount"] == ckb_to_hex(10)
        assert params["payment_hash"] == PAYMENT_HASH

    @pytest.mark.asyncio
    async def test_amount_mismatch(self, fiber_service, fiber_node):
        with pytest.raises(TransferError) as exc_info:
            await fiber_service.transfer_by_invoice("fibt1invoice", "11", CHANNEL_ID)

        assert "Invoice amount 10 CKB, Transfer amount 11 CKB" in exc_info.value.message
        assert all(body["method"] != "add_tlc" for body in fiber_node.requests)

    @pytest.mark.asyncio
    async def test_pay_invoice_polls_until_settled(self, fiber_service, fiber_node):
        fiber_node.results["send_payment"] = {"payment_hash": PAYMENT_HASH, "status": "Inflight"}
        fiber_node.payment_statuses = ["Inflight", "Success"]

        payment = await fiber_service.pay_invoice("fibt1invoice", "10")

        assert payment["status"] == "Success"
        assert fiber_node.params("send_payment") == {"invoice": "fibt1invoice"}
        polls = [body for body in fiber_node.requests if body["method"] == "get_payment"]
        assert len(polls) == 2

    @pytest.mark.asyncio
    async def test_pay_invoice_timeout(self, fiber_service, fiber_node, settings):
        settings.payment_timeout_seconds = 0
        fiber_node.results["send_payment"] = {"payment_hash": PAYMENT_HASH, "status": "Inflight"}

        with pytest.raises(PaymentTimeout):
            await fiber_service.pay_invoice("fibt1invoice", "10")

    @pytest.mark.asyncio
    async def test_pay_invoice_failed_status_is_returned(self, fiber_service, fiber_node):
        fiber_node.results["send_payment"] = {"payment_hash": PAYMENT_HASH, "status": "Failed"}

        payment = await fiber_service.pay_invoice("fibt1invoice", "10")
        assert payment["status"] == "Failed"
