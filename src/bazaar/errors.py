"""Marketplace error taxonomy.

Every ledger operation reports failure by raising one of these. ``code`` is a
stable identifier that the tool surface returns to callers.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base exception for ledger operations."""

    code = "MarketplaceError"


class InvalidPriceError(MarketplaceError):
    """Price (or new price) is not a positive integer."""

    code = "InvalidPrice"


class AlreadyListedError(MarketplaceError):
    """A listing already exists for the item."""

    code = "AlreadyListed"


class NotListedError(MarketplaceError):
    """No active listing exists for the item."""

    code = "NotListed"


class NotOwnerError(MarketplaceError):
    """Requester does not own the item, or is not the listing's seller."""

    code = "NotOwner"


class NotApprovedError(MarketplaceError):
    """The marketplace is not an approved operator for the item."""

    code = "NotApproved"


class PriceNotMetError(MarketplaceError):
    """Payment is below the listed price."""

    code = "PriceNotMet"


class NoProceedsError(MarketplaceError):
    """Requester has nothing to withdraw."""

    code = "NoProceeds"


class TransferFailedError(MarketplaceError):
    """Item registry or value transfer collaborator failed."""

    code = "TransferFailed"


class LockConflictError(MarketplaceError):
    """A nested operation needs a lock another operation holds.

    Only raised for requests out of lock rank order, which never wait.
    """

    code = "LockConflict"


class SnapshotError(Exception):
    """Raised when a persisted ledger snapshot cannot be read."""
