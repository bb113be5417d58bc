"""
Error taxonomy for entitlement resolution.

Remote-store errors and cache errors are recoverable and get downgraded to
the next fallback layer. InvalidState is surfaced to the caller.
"""
from typing import Optional


class EntitlementError(Exception):
    """Base class for all entitlement engine errors."""

    def __init__(self, message: str, *, user_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.user_id = user_id


class RemoteStoreError(EntitlementError):
    """A remote read or write did not complete."""


class DataUnavailable(RemoteStoreError):
    """The backing table has not been provisioned yet. Treated as "no data"."""


class TransientIOFailure(RemoteStoreError):
    """Single-call network, driver or auth failure. Never retried internally."""


class InvalidState(EntitlementError):
    """Operation is not valid for the record's current state."""


class InconsistentCache(EntitlementError):
    """Cached payload does not have the expected shape. Treated as a cache miss."""
