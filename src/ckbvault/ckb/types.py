"""CKB data types and their JSON-RPC representation.

Hashes, args and data are kept as 0x-prefixed hex strings, numbers as Python
ints; `to_rpc` / `from_rpc` convert to the node's hex-number JSON shape.
"""

from dataclasses import dataclass, field
from typing import Optional

SHANNONS_PER_CKB = 10**8

HASH_TYPES = {"data": 0, "type": 1, "data1": 2, "data2": 4}
DEP_TYPES = {"code": 0, "dep_group": 1}


def hex_to_bytes(value: str) -> bytes:
    """Decode a 0x-prefixed hex string."""
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def bytes_to_hex(value: bytes) -> str:
    return "0x" + value.hex()


def to_hex_int(value: int) -> str:
    return hex(value)


def from_hex_int(value: str) -> int:
    return int(value, 16)


@dataclass(frozen=True)
class Script:
    """Lock or type script."""

    code_hash: str
    hash_type: str
    args: str = "0x"

    @property
    def occupied_bytes(self) -> int:
        """Bytes a script occupies inside a cell."""
        return 32 + 1 + len(hex_to_bytes(self.args))

    def to_rpc(self) -> dict:
        return {"code_hash": self.code_hash, "hash_type": self.hash_type, "args": self.args}

    @classmethod
    def from_rpc(cls, data: dict) -> "Script":
        return cls(
            code_hash=data["code_hash"].lower(),
            hash_type=data["hash_type"],
            args=data["args"].lower(),
        )


@dataclass(frozen=True)
class OutPoint:
    """Reference to a cell: creating transaction hash and output index."""

    tx_hash: str
    index: int

    def to_rpc(self) -> dict:
        return {"tx_hash": self.tx_hash, "index": to_hex_int(self.index)}

    @classmethod
    def from_rpc(cls, data: dict) -> "OutPoint":
        return cls(tx_hash=data["tx_hash"], index=from_hex_int(data["index"]))


@dataclass(frozen=True)
class CellDep:
    out_point: OutPoint
    dep_type: str = "code"

    def to_rpc(self) -> dict:
        return {"out_point": self.out_point.to_rpc(), "dep_type": self.dep_type}


@dataclass(frozen=True)
class CellInput:
    previous_output: OutPoint
    since: int = 0

    def to_rpc(self) -> dict:
        return {"previous_output": self.previous_output.to_rpc(), "since": to_hex_int(self.since)}

    @classmethod
    def from_rpc(cls, data: dict) -> "CellInput":
        return cls(
            previous_output=OutPoint.from_rpc(data["previous_output"]),
            since=from_hex_int(data.get("since", "0x0")),
        )


@dataclass
class CellOutput:
    """Cell body: capacity in shannons, owner lock, optional type."""

    capacity: int
    lock: Script
    type: Optional[Script] = None

    def occupied_capacity(self, data: bytes = b"") -> int:
        """Minimum capacity (shannons) this output needs to hold data."""
        size = 8 + self.lock.occupied_bytes + len(data)
        if self.type is not None:
            size += self.type.occupied_bytes
        return size * SHANNONS_PER_CKB

    def to_rpc(self) -> dict:
        return {
            "capacity": to_hex_int(self.capacity),
            "lock": self.lock.to_rpc(),
            "type": self.type.to_rpc() if self.type else None,
        }

    @classmethod
    def from_rpc(cls, data: dict) -> "CellOutput":
        return cls(
            capacity=from_hex_int(data["capacity"]),
            lock=Script.from_rpc(data["lock"]),
            type=Script.from_rpc(data["type"]) if data.get("type") else None,
        )


@dataclass
class Cell:
    """Live cell as returned by the indexer."""

    out_point: OutPoint
    output: CellOutput
    data: str = "0x"
    block_number: Optional[int] = None

    @property
    def capacity(self) -> int:
        return self.output.capacity

    @property
    def is_plain(self) -> bool:
        """True for cells that only hold capacity (no type, no data)."""
        return self.output.type is None and self.data in ("0x", "")

    @property
    def udt_amount(self) -> int:
        """Token amount: first 16 bytes of data, little-endian."""
        return udt_amount_from_data(self.data)


def udt_amount_from_data(data: str) -> int:
    raw = hex_to_bytes(data)
    if len(raw) < 16:
        return 0
    return int.from_bytes(raw[:16], "little")


def udt_amount_to_data(amount: int) -> str:
    return bytes_to_hex(amount.to_bytes(16, "little"))


@dataclass
class Transaction:
    """Mutable transaction under construction."""

    version: int = 0
    cell_deps: list[CellDep] = field(default_factory=list)
    header_deps: list[str] = field(default_factory=list)
    inputs: list[CellInput] = field(default_factory=list)
    outputs: list[CellOutput] = field(default_factory=list)
    outputs_data: list[str] = field(default_factory=list)
    witnesses: list[str] = field(default_factory=list)

    def add_output(self, output: CellOutput, data: str = "0x") -> None:
        self.outputs.append(output)
        self.outputs_data.append(data)

    def add_cell_dep(self, dep: CellDep) -> None:
        if dep not in self.cell_deps:
            self.cell_deps.append(dep)

    @property
    def outputs_capacity(self) -> int:
        return sum(output.capacity for output in self.outputs)

    def to_rpc(self) -> dict:
        return {
            "version": to_hex_int(self.version),
            "cell_deps": [dep.to_rpc() for dep in self.cell_deps],
            "header_deps": list(self.header_deps),
            "inputs": [cell_input.to_rpc() for cell_input in self.inputs],
            "outputs": [output.to_rpc() for output in self.outputs],
            "outputs_data": list(self.outputs_data),
            "witnesses": list(self.witnesses),
        }


def format_units(value: int, decimals: int = 8) -> str:
    """Exact decimal string of an integer base-unit amount (no trailing zeros)."""
    sign = "-" if value < 0 else ""
    whole, fraction = divmod(abs(value), 10**decimals)
    digits = str(fraction).rjust(decimals, "0").rstrip("0") if decimals else ""
    return f"{sign}{whole}.{digits}" if digits else f"{sign}{whole}"
