"""CKB Vault - rate-limited custodial CKB wallet with chain sync and Fiber access."""

__version__ = "0.1.0"
