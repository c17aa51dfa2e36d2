"""Known script deployments per CKB network.

Only the scripts the wallet uses: the default secp256k1/blake160 lock and xUDT.
"""

from dataclasses import dataclass

from ckbvault.ckb.types import CellDep, OutPoint, Script


@dataclass(frozen=True)
class ScriptInfo:
    """A deployed script: how to reference it and which dep unlocks it."""

    code_hash: str
    hash_type: str
    cell_dep: CellDep

    def script(self, args: str = "0x") -> Script:
        return Script(code_hash=self.code_hash, hash_type=self.hash_type, args=args.lower())

    def matches(self, script: Script) -> bool:
        return script.code_hash == self.code_hash and script.hash_type == self.hash_type


@dataclass(frozen=True)
class NetworkConfig:
    """Configuration for a CKB network."""

    name: str
    address_prefix: str
    explorer_url: str
    secp256k1_blake160: ScriptInfo
    xudt: ScriptInfo

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/transaction/{tx_hash}"


SECP256K1_BLAKE160_CODE_HASH = "0x9bd7e06f3ecf4be0f2fcd2188b23f1b9fcc88e5d4b65a8637b17723bbda3cce8"
SECP256K1_MULTISIG_CODE_HASH = "0x5c5069eb0857efc65e1bca0c07df34c31663b3622fd3876c876320fc9634e2a8"

# ======================
# Network Configurations
# ======================

NETWORKS: dict[str, NetworkConfig] = {
    "testnet": NetworkConfig(
        name="testnet",
        address_prefix="ckt",
        explorer_url="https://pudge.explorer.nervos.org",
        secp256k1_blake160=ScriptInfo(
            code_hash=SECP256K1_BLAKE160_CODE_HASH,
            hash_type="type",
            cell_dep=CellDep(
                out_point=OutPoint(
                    tx_hash="0xf8de3bb47d055cdf460d93a2a6e1b05f7432f9777c8c474abf4eec1d4aee5d37",
                    index=0,
                ),
                dep_type="dep_group",
            ),
        ),
        xudt=ScriptInfo(
            code_hash="0x25c29dc317811a6f6f3985a7a9ebc4838bd388d19d0feeecf0bcd60f6c0975bb",
            hash_type="type",
            cell_dep=CellDep(
                out_point=OutPoint(
                    tx_hash="0xbf6fb538763efec2a70a6a3dcb7242787087e1030c4e7d86585bc63a9d337f5f",
                    index=0,
                ),
                dep_type="code",
            ),
        ),
    ),
    "mainnet": NetworkConfig(
        name="mainnet",
        address_prefix="ckb",
        explorer_url="https://explorer.nervos.org",
        secp256k1_blake160=ScriptInfo(
            code_hash=SECP256K1_BLAKE160_CODE_HASH,
            hash_type="type",
            cell_dep=CellDep(
                out_point=OutPoint(
                    tx_hash="0x71a7ba8fc96349fea0ed3a5c47992e3b4084b031a42264a018e0072e8172e46c",
                    index=0,
                ),
                dep_type="dep_group",
            ),
        ),
        xudt=ScriptInfo(
            code_hash="0x50bd8d6680b8b9cf98b73f3c08faf8b2a21914311954118ad6609be6e78a1b95",
            hash_type="type",
            cell_dep=CellDep(
                out_point=OutPoint(
                    tx_hash="0xc07844ce21b38e4b071dd0e1ee3b0e27afd8d7532491327f39b786343f558ab7",
                    index=0,
                ),
                dep_type="code",
            ),
        ),
    ),
}


def get_network(name: str) -> NetworkConfig:
    """Get configuration for a network name (testnet/mainnet)."""
    try:
        return NETWORKS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown CKB network: {name}") from None
