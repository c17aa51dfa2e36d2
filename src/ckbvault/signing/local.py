"""Local signing backend.

Holds the managed secp256k1 key in memory and signs with the default
secp256k1/blake160 sighash-all lock.

WARNING: The private key lives in process memory. Keep only operating
balances on the managed address.
"""

import hashlib
import logging
import struct

from eth_keys import keys

from ckbvault.ckb.address import encode_address
from ckbvault.ckb.molecule import CKB_HASH_PERSONALIZATION, blake160, serialize_witness_args, transaction_hash
from ckbvault.ckb.scripts import NetworkConfig
from ckbvault.ckb.types import Script, Transaction, bytes_to_hex, hex_to_bytes
from ckbvault.signing.base import Signer, SigningError

logger = logging.getLogger(__name__)

SIGNATURE_SIZE = 65


class LocalSigner(Signer):
    """Signer over an in-memory private key."""

    def __init__(self, private_key_hex: str, network: NetworkConfig):
        """Initialize the signer.

        Args:
            private_key_hex: 32-byte secp256k1 key, hex with or without 0x
            network: Network whose lock deployment and address prefix to use
        """
        try:
            self._key = keys.PrivateKey(hex_to_bytes(private_key_hex.strip()))
        except Exception as e:
            raise SigningError(f"Invalid private key: {e}") from e

        self.network = network
        pubkey = self._key.public_key.to_compressed_bytes()
        self._lock = network.secp256k1_blake160.script(bytes_to_hex(blake160(pubkey)))
        self._address = encode_address(self._lock, network)
        logger.info(f"Loaded managed key for {self._address}")

    @property
    def lock_script(self) -> Script:
        return self._lock

    @property
    def address(self) -> str:
        return self._address

    def prepare_witnesses(self, tx: Transaction) -> None:
        """One witness per input; the first one holds a zeroed signature slot."""
        witnesses = ["0x"] * len(tx.inputs)
        if witnesses:
            witnesses[0] = bytes_to_hex(serialize_witness_args(lock=b"\x00" * SIGNATURE_SIZE))
        tx.witnesses = witnesses

    def sighash_all(self, tx: Transaction) -> bytes:
        """Message for the managed lock group.

        Every input of transactions built here belongs to the managed lock,
        so the group covers all witnesses.
        """
        if not tx.inputs:
            raise SigningError("Transaction has no inputs to sign")
        if len(tx.witnesses) != len(tx.inputs):
            self.prepare_witnesses(tx)

        hasher = hashlib.blake2b(digest_size=32, person=CKB_HASH_PERSONALIZATION)
        hasher.update(hex_to_bytes(transaction_hash(tx)))
        for witness in tx.witnesses:
            raw = hex_to_bytes(witness)
            hasher.update(struct.pack("<Q", len(raw)))
            hasher.update(raw)
        return hasher.digest()

    async def sign_transaction(self, tx: Transaction) -> Transaction:
        message = self.sighash_all(tx)
        signature = self._key.sign_msg_hash(message).to_bytes()
        tx.witnesses[0] = bytes_to_hex(serialize_witness_args(lock=signature))
        logger.debug(f"Signed transaction {transaction_hash(tx)}")
        return tx
