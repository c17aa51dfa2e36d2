"""CKB primitives: cells, scripts, serialization, addresses and node access."""

from ckbvault.ckb.address import decode_address, encode_address, normalize_address
from ckbvault.ckb.node import CkbRpcNode, LedgerNode, TransactionDetail, TxRef
from ckbvault.ckb.scripts import NetworkConfig, ScriptInfo, get_network
from ckbvault.ckb.types import (
    SHANNONS_PER_CKB,
    Cell,
    CellDep,
    CellInput,
    CellOutput,
    OutPoint,
    Script,
    Transaction,
)

__all__ = [
    "SHANNONS_PER_CKB",
    "Cell",
    "CellDep",
    "CellInput",
    "CellOutput",
    "OutPoint",
    "Script",
    "Transaction",
    "NetworkConfig",
    "ScriptInfo",
    "get_network",
    "decode_address",
    "encode_address",
    "normalize_address",
    "LedgerNode",
    "CkbRpcNode",
    "TransactionDetail",
    "TxRef",
]
