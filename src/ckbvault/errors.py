"""Error taxonomy shared by services and the HTTP layer.

Client faults (400): ValidationError, TransferError, InsufficientFunds.
Server faults (500): RpcError and its subclasses, PaymentTimeout.
"""


class VaultError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(VaultError):
    """Missing or malformed request field."""

    status_code = 400


class TransferError(VaultError):
    """Transfer refused by a domain rule (rate limit, invoice mismatch)."""

    status_code = 400

    def __init__(self, message: str, reason: str = "transfer_rejected"):
        super().__init__(message)
        self.reason = reason


class InsufficientFunds(TransferError):
    """Managed wallet cannot cover the requested capacity or token amount."""

    def __init__(self, message: str):
        super().__init__(message, reason="insufficient_funds")


class RpcError(VaultError):
    """Remote node call failed."""

    status_code = 500


class LedgerUnavailable(RpcError):
    """CKB node or indexer call failed."""


class FiberRpcError(RpcError):
    """Fiber node call failed."""


class PaymentTimeout(VaultError):
    """Payment stayed inflight past the configured wait."""
