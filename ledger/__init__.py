"""
Pix Credit Ledger

This package provides:
- Webhook authentication by institution address and shared secret
- Validation of Pix notification batches, skipping malformed items
- A durable per-txid credit balance with redelivery deduplication
- Atomic consume-and-reset, or whole-unit dispensing with remainder carry-over
- Best-effort archival of raw receipts
"""

from .errors import (
    LedgerError,
    AuthenticationFailed,
    AddressNotAuthorized,
    InvalidCredential,
    MalformedRecord,
    NotFound,
    StoreError,
    StoreConflict,
    StoreUnavailable,
)
from .models import (
    AccrualOutcome,
    TransactionRecord,
    LedgerEntry,
    BatchResult,
)
from .service import LedgerService

__all__ = [
    "LedgerError",
    "AuthenticationFailed",
    "AddressNotAuthorized",
    "InvalidCredential",
    "MalformedRecord",
    "NotFound",
    "StoreError",
    "StoreConflict",
    "StoreUnavailable",
    "AccrualOutcome",
    "TransactionRecord",
    "LedgerEntry",
    "BatchResult",
    "LedgerService",
]
