"""Molecule serialization of CKB structures and blake2b hashing.

Only the structures a transfer touches are covered: Script, CellOutput,
RawTransaction, Transaction and WitnessArgs.
"""

import hashlib
import struct
from typing import Optional

from ckbvault.ckb.types import (
    DEP_TYPES,
    HASH_TYPES,
    CellDep,
    CellInput,
    CellOutput,
    OutPoint,
    Script,
    Transaction,
    bytes_to_hex,
    hex_to_bytes,
)

CKB_HASH_PERSONALIZATION = b"ckb-default-hash"


def ckb_hash(data: bytes) -> bytes:
    """blake2b-256 with the CKB personalization."""
    return hashlib.blake2b(data, digest_size=32, person=CKB_HASH_PERSONALIZATION).digest()


def blake160(data: bytes) -> bytes:
    return ckb_hash(data)[:20]


def _u32(value: int) -> bytes:
    return struct.pack("<I", value)


def _u64(value: int) -> bytes:
    return struct.pack("<Q", value)


def _table(fields: list[bytes]) -> bytes:
    header_size = 4 * (len(fields) + 1)
    offsets = []
    position = header_size
    for item in fields:
        offsets.append(position)
        position += len(item)
    return _u32(position) + b"".join(_u32(offset) for offset in offsets) + b"".join(fields)


def _fixvec(items: list[bytes]) -> bytes:
    return _u32(len(items)) + b"".join(items)


def _dynvec(items: list[bytes]) -> bytes:
    if not items:
        return _u32(4)
    return _table(items)


def _bytes(value: bytes) -> bytes:
    return _u32(len(value)) + value


def serialize_script(script: Script) -> bytes:
    return _table([
        hex_to_bytes(script.code_hash),
        bytes([HASH_TYPES[script.hash_type]]),
        _bytes(hex_to_bytes(script.args)),
    ])


def serialize_out_point(out_point: OutPoint) -> bytes:
    return hex_to_bytes(out_point.tx_hash) + _u32(out_point.index)


def serialize_cell_dep(dep: CellDep) -> bytes:
    return serialize_out_point(dep.out_point) + bytes([DEP_TYPES[dep.dep_type]])


def serialize_cell_input(cell_input: CellInput) -> bytes:
    return _u64(cell_input.since) + serialize_out_point(cell_input.previous_output)


def serialize_cell_output(output: CellOutput) -> bytes:
    return _table([
        _u64(output.capacity),
        serialize_script(output.lock),
        serialize_script(output.type) if output.type else b"",
    ])


def serialize_raw_transaction(tx: Transaction) -> bytes:
    return _table([
        _u32(tx.version),
        _fixvec([serialize_cell_dep(dep) for dep in tx.cell_deps]),
        _fixvec([hex_to_bytes(header) for header in tx.header_deps]),
        _fixvec([serialize_cell_input(cell_input) for cell_input in tx.inputs]),
        _dynvec([serialize_cell_output(output) for output in tx.outputs]),
        _dynvec([_bytes(hex_to_bytes(data)) for data in tx.outputs_data]),
    ])


def serialize_transaction(tx: Transaction) -> bytes:
    return _table([
        serialize_raw_transaction(tx),
        _dynvec([_bytes(hex_to_bytes(witness)) for witness in tx.witnesses]),
    ])


def serialize_witness_args(
    lock: Optional[bytes] = None,
    input_type: Optional[bytes] = None,
    output_type: Optional[bytes] = None,
) -> bytes:
    return _table([
        _bytes(lock) if lock is not None else b"",
        _bytes(input_type) if input_type is not None else b"",
        _bytes(output_type) if output_type is not None else b"",
    ])


def script_hash(script: Script) -> str:
    return bytes_to_hex(ckb_hash(serialize_script(script)))


def transaction_hash(tx: Transaction) -> str:
    """Hash of the raw transaction (witnesses excluded)."""
    return bytes_to_hex(ckb_hash(serialize_raw_transaction(tx)))


def transaction_fee(tx: Transaction, fee_rate: int) -> int:
    """Fee in shannons for fee_rate shannons per 1000 bytes.

    The block stores a 4-byte offset per transaction, which counts toward size.
    """
    size = len(serialize_transaction(tx)) + 4
    return (size * fee_rate + 999) // 1000
