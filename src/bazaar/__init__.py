"""Bazaar: a fixed-price marketplace ledger.

Listings, purchases and seller proceeds for non-fungible items, with
reentrancy-safe payouts.
"""

__version__ = "0.1.0"

from bazaar.certificate import (
    CertificateError,
    RequesterCertificate,
    authority_fingerprint,
    load_authority_key,
    verify_requester_certificate,
)
from bazaar.config import MarketplaceConfig
from bazaar.constants import CertifiedAction, EventKind, SNAPSHOT_SCHEMA_VERSION
from bazaar.errors import (
    MarketplaceError,
    InvalidPriceError,
    AlreadyListedError,
    NotListedError,
    NotOwnerError,
    NotApprovedError,
    PriceNotMetError,
    NoProceedsError,
    TransferFailedError,
    LockConflictError,
    SnapshotError,
)
from bazaar.events import ListingCreated, ListingRemoved, ItemSold, LoggingEventSink, MemoryEventSink
from bazaar.http_client import ServiceClient, ServiceError, ServiceAuthError
from bazaar.interfaces import ItemRegistry, ValueTransfer, EventSink, LedgerVault
from bazaar.ledger import Listing, ListingKey, MarketLedger
from bazaar.marketplace import Marketplace
from bazaar.payout_client import HTTPValueTransfer
from bazaar.registry_client import HTTPItemRegistry
from bazaar.snapshots import LedgerCheckpointer
from bazaar.vaults import JSONFileVault

__all__ = [
    "CertificateError",
    "MarketplaceConfig",
    "CertifiedAction",
    "EventKind",
    "SNAPSHOT_SCHEMA_VERSION",
    "MarketplaceError",
    "InvalidPriceError",
    "AlreadyListedError",
    "NotListedError",
    "NotOwnerError",
    "NotApprovedError",
    "PriceNotMetError",
    "NoProceedsError",
    "TransferFailedError",
    "LockConflictError",
    "SnapshotError",
    "ListingCreated",
    "ListingRemoved",
    "ItemSold",
    "LoggingEventSink",
    "MemoryEventSink",
    "ServiceClient",
    "ServiceError",
    "ServiceAuthError",
    "ItemRegistry",
    "ValueTransfer",
    "EventSink",
    "LedgerVault",
    "Listing",
    "ListingKey",
    "MarketLedger",
    "Marketplace",
    "HTTPValueTransfer",
    "HTTPItemRegistry",
    "LedgerCheckpointer",
    "JSONFileVault",
    "verify_requester_certificate",
    "RequesterCertificate",
    "load_authority_key",
    "authority_fingerprint",
]
