"""Pytest configuration and fixtures."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

TEST_PRIVATE_KEY = "0xd00c06bfd800d27397002dca6fb0993d5ba6399b4238b2f29ee9deb97593d2bc"
TEST_AI_TOKEN = "test-token"

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["AI_TOKEN"] = TEST_AI_TOKEN
os.environ["PRIVATE_KEY"] = TEST_PRIVATE_KEY
os.environ["CKB_NETWORK"] = "testnet"
os.environ["SYNC_ENABLED"] = "false"

from ckbvault.ckb.address import encode_address
from ckbvault.ckb.molecule import transaction_hash
from ckbvault.ckb.node import LedgerNode, TransactionDetail, TxRef
from ckbvault.ckb.scripts import SECP256K1_BLAKE160_CODE_HASH, NetworkConfig, get_network
from ckbvault.ckb.types import (
    SHANNONS_PER_CKB,
    Cell,
    CellOutput,
    OutPoint,
    Script,
    Transaction,
    udt_amount_to_data,
)
from ckbvault.config import Settings
from ckbvault.errors import LedgerUnavailable
from ckbvault.services.rate_limiter import RateLimiter
from ckbvault.services.transfer import TransferService
from ckbvault.signing.local import LocalSigner
from ckbvault.store.database import create_engine_for_url
from ckbvault.store.models import Base
from ckbvault.store.repository import CounterStore


class FakeClock:
    """Controllable UNIX time source."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLedgerNode(LedgerNode):
    """In-memory ledger node for service tests."""

    def __init__(self):
        self.tip = 0
        self.cells: list[Cell] = []
        self.tx_refs: list[TxRef] = []
        self.details: dict[str, TransactionDetail] = {}
        self.sent: list[Transaction] = []
        self.fail_send = False
        self.fail_tip = False
        self.fail_details: set[str] = set()
        self.find_calls: list[tuple[int, int]] = []
        self._next_index = 0

    def add_cell(
        self,
        lock: Script,
        capacity_ckb: int,
        type_script: Optional[Script] = None,
        data: str = "0x",
    ) -> Cell:
        self._next_index += 1
        cell = Cell(
            out_point=OutPoint(tx_hash="0x" + f"{self._next_index:064x}", index=0),
            output=CellOutput(capacity=capacity_ckb * SHANNONS_PER_CKB, lock=lock, type=type_script),
            data=data,
            block_number=1,
        )
        self.cells.append(cell)
        return cell

    def add_token_cell(self, lock: Script, type_script: Script, amount: int, capacity_ckb: int = 142) -> Cell:
        return self.add_cell(lock, capacity_ckb, type_script, udt_amount_to_data(amount))

    async def get_tip_block_number(self) -> int:
        if self.fail_tip:
            raise LedgerUnavailable("node down")
        return self.tip

    async def iter_cells(self, lock: Script, type_script: Optional[Script] = None):
        for cell in list(self.cells):
            if cell.output.lock != lock:
                continue
            if type_script is not None and cell.output.type != type_script:
                continue
            yield cell

    async def find_transactions(self, lock: Script, start_block: int, end_block: int) -> list[TxRef]:
        self.find_calls.append((start_block, end_block))
        return [ref for ref in self.tx_refs if start_block <= ref.block_number < end_block]

    async def get_transaction_detail(self, tx_hash: str) -> TransactionDetail:
        if tx_hash in self.fail_details:
            raise LedgerUnavailable(f"get_transaction {tx_hash} failed")
        return self.details[tx_hash]

    async def get_cells_capacity(self, lock: Script) -> int:
        return sum(cell.capacity for cell in self.cells if cell.output.lock == lock)

    async def send_transaction(self, tx: Transaction) -> str:
        if self.fail_send:
            raise LedgerUnavailable("send_transaction rejected")
        self.sent.append(tx)
        return transaction_hash(tx)


def lock_for(byte: int) -> Script:
    """secp256k1/blake160 lock with args filled with one byte value."""
    return Script(
        code_hash=SECP256K1_BLAKE160_CODE_HASH,
        hash_type="type",
        args="0x" + f"{byte:02x}" * 20,
    )


def address_for(byte: int, network: Optional[NetworkConfig] = None) -> str:
    return encode_address(lock_for(byte), network or get_network("testnet"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        ai_token=TEST_AI_TOKEN,
        private_key=TEST_PRIVATE_KEY,
        ckb_network="testnet",
        ckb_hourly_limit=3000,
        ckb_destination_limit=1,
        default_token_hourly_limit=1000,
        token_decimals=8,
        payment_poll_interval_seconds=0,
        payment_timeout_seconds=5,
    )


@pytest.fixture
def network() -> NetworkConfig:
    return get_network("testnet")


@asynccontextmanager
async def open_store(db_url: str, clock) -> AsyncGenerator[CounterStore, None]:
    engine = create_engine_for_url(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    try:
        yield CounterStore(session_factory, clock=clock)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def store(clock) -> AsyncGenerator[CounterStore, None]:
    """Counter store over a fresh in-memory database."""
    async with open_store("sqlite+aiosqlite:///:memory:", clock) as counter_store:
        yield counter_store


@pytest_asyncio.fixture
async def file_store(tmp_path, clock) -> AsyncGenerator[CounterStore, None]:
    """Counter store over a database file, one connection per session."""
    db_path = tmp_path / "store.db"
    async with open_store(f"sqlite+aiosqlite:///{db_path}", clock) as counter_store:
        yield counter_store


@pytest.fixture
def signer(network) -> LocalSigner:
    return LocalSigner(TEST_PRIVATE_KEY, network)


@pytest.fixture
def node() -> FakeLedgerNode:
    return FakeLedgerNode()


@pytest.fixture
def limiter(store, settings, clock) -> RateLimiter:
    return RateLimiter(store, settings, clock=clock)


@pytest.fixture
def transfer_service(node, signer, limiter, settings, network) -> TransferService:
    return TransferService(node, signer, limiter, settings, network)
