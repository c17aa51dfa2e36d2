"""Signer factory.

Creates the signer for the managed key from configuration.
"""

import logging
from typing import Optional

from ckbvault.ckb.scripts import get_network
from ckbvault.config import get_settings
from ckbvault.signing.base import Signer

logger = logging.getLogger(__name__)

_signer_instance: Optional[Signer] = None


def get_signer() -> Signer:
    """Get the configured signer instance.

    Raises:
        RuntimeError: If no private key is configured
    """
    global _signer_instance

    if _signer_instance is not None:
        return _signer_instance

    settings = get_settings()
    if not settings.has_wallet:
        raise RuntimeError("PRIVATE_KEY is not configured")

    from ckbvault.signing.local import LocalSigner

    _signer_instance = LocalSigner(settings.private_key, get_network(settings.ckb_network))
    return _signer_instance


def reset_signer() -> None:
    """Reset the signer instance (for testing)."""
    global _signer_instance
    _signer_instance = None
