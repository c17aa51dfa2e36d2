"""Base interface for transaction signing.

Signing flow:
1. Build the unsigned transaction with placeholder witnesses
2. Compute the fee over the placeholder-sized transaction
3. Signer fills in the lock witness (no raw key exposure)
4. Broadcast the signed transaction
"""

import logging
from abc import ABC, abstractmethod

from ckbvault.ckb.types import Script, Transaction

logger = logging.getLogger(__name__)


class Signer(ABC):
    """Holder of the single managed key.

    Implementations never expose the private key; callers only see the lock
    script, its address and signed transactions.
    """

    @property
    @abstractmethod
    def lock_script(self) -> Script:
        """Lock script guarding the managed wallet's cells."""
        pass

    @property
    @abstractmethod
    def address(self) -> str:
        """Full-format address of the lock script."""
        pass

    @abstractmethod
    def prepare_witnesses(self, tx: Transaction) -> None:
        """Set witnesses to their final size so fee estimation is exact."""
        pass

    @abstractmethod
    async def sign_transaction(self, tx: Transaction) -> Transaction:
        """Sign every input of tx owned by the managed lock.

        Returns:
            The same transaction with witnesses filled in
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(address={self.address})"


class SigningError(Exception):
    """Exception raised when signing fails."""
    pass
