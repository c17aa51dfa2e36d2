"""Transaction signing for the managed wallet."""

from ckbvault.signing.base import Signer, SigningError
from ckbvault.signing.factory import get_signer, reset_signer
from ckbvault.signing.local import LocalSigner

__all__ = [
    "Signer",
    "SigningError",
    "LocalSigner",
    "get_signer",
    "reset_signer",
]
