from typing import Optional


class LedgerError(Exception):
    pass


class AuthenticationFailed(LedgerError):
    pass


class AddressNotAuthorized(AuthenticationFailed):
    pass


class InvalidCredential(AuthenticationFailed):
    pass


class MalformedRecord(LedgerError):
    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class NotFound(LedgerError):
    pass


class StoreError(LedgerError):
    """Transient persistence failure; safe to retry the single operation."""


class StoreConflict(StoreError):
    pass


class StoreUnavailable(StoreError):
    pass


class StoreRejected(StoreError):
    """The database refused the write itself; retrying will not help."""
