"""Constants for the bazaar marketplace ledger."""

from enum import Enum


SNAPSHOT_SCHEMA_VERSION = 1
DEFAULT_FLUSH_INTERVAL_SECS = 60


class EventKind(str, Enum):
    """Notification kinds published to the event sink."""

    LISTING_CREATED = "ListingCreated"
    LISTING_REMOVED = "ListingRemoved"
    ITEM_SOLD = "ItemSold"


class CertifiedAction(str, Enum):
    """Operations a requester certificate can authorize (``bazaar_action``)."""

    LIST = "list"
    CANCEL = "cancel"
    REPRICE = "reprice"
    BUY = "buy"
    WITHDRAW = "withdraw"


# Actions whose certificate must also name the collection and item_id.
ITEM_SCOPED_ACTIONS = frozenset({
    CertifiedAction.LIST,
    CertifiedAction.CANCEL,
    CertifiedAction.REPRICE,
    CertifiedAction.BUY,
})

CERTIFICATE_PROTOCOL = "bazaar-requester-01"
