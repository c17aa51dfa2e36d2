"""HTTP surface."""

from ckbvault.api.app import create_app

__all__ = ["create_app"]
