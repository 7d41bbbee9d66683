"""Listings and proceeds: the two maps the marketplace owns.

Pure data model with no I/O, no validation of business rules. ``Marketplace``
decides *whether* a mutation is allowed; this module only applies it and
knows how to serialize the result. All prices and balances are integers in
the smallest currency unit.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from bazaar.constants import SNAPSHOT_SCHEMA_VERSION
from bazaar.errors import SnapshotError

logger = logging.getLogger(__name__)


def is_amount(value: object) -> bool:
    """True for a plain int. Floats, bools and numeric strings are not amounts."""
    return isinstance(value, int) and not isinstance(value, bool)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class ListingKey(NamedTuple):
    """Composite key of a listing: (collection, item_id)."""

    collection: str
    item_id: int


@dataclass(frozen=True)
class Listing:
    """An active fixed-price offer. Repricing replaces the whole record."""

    price: int
    seller: str

    def to_dict(self) -> dict[str, Any]:
        return {"price": self.price, "seller": self.seller}


# ---------------------------------------------------------------------------
# MarketLedger
# ---------------------------------------------------------------------------


@dataclass
class MarketLedger:
    """Active listings keyed by ``ListingKey`` and proceeds keyed by seller.

    A seller with a zero balance has no entry in ``proceeds``.
    """

    listings: dict[ListingKey, Listing] = field(default_factory=dict)
    proceeds: dict[str, int] = field(default_factory=dict)

    # -- queries ---------------------------------------------------------------

    def get_listing(self, key: ListingKey) -> Listing | None:
        return self.listings.get(key)

    def get_proceeds(self, seller: str) -> int:
        return self.proceeds.get(seller, 0)

    # -- mutations ------------------------------------------------------------

    def put_listing(self, key: ListingKey, listing: Listing) -> Listing | None:
        """Insert or replace a listing. Returns the listing it replaced."""
        previous = self.listings.get(key)
        self.listings[key] = listing
        return previous

    def pop_listing(self, key: ListingKey) -> Listing | None:
        return self.listings.pop(key, None)

    def restore_listing(self, key: ListingKey, listing: Listing) -> None:
        """Re-insert a removed listing unless the key was listed again since."""
        current = self.listings.get(key)
        if current is not None and current != listing:
            logger.warning(
                "Not restoring listing %s/%s: key was re-listed by %s.",
                key.collection, key.item_id, current.seller,
            )
            return
        self.listings[key] = listing

    def adjust_proceeds(self, seller: str, delta: int) -> int:
        """Add ``delta`` (may be negative) to a balance. Returns the new balance."""
        balance = self.proceeds.get(seller, 0) + delta
        if balance < 0:
            raise ValueError(
                f"proceeds for {seller} would become negative ({balance})"
            )
        if balance == 0:
            self.proceeds.pop(seller, None)
        else:
            self.proceeds[seller] = balance
        return balance

    def copy(self) -> MarketLedger:
        # Listing is frozen, so shallow dict copies are independent.
        return MarketLedger(listings=dict(self.listings), proceeds=dict(self.proceeds))

    # -- serialization --------------------------------------------------------

    def to_json(self) -> str:
        """Serialize to a pretty-printed JSON snapshot with schema version."""
        return json.dumps({
            "v": SNAPSHOT_SCHEMA_VERSION,
            "listings": [
                {
                    "collection": key.collection,
                    "item_id": key.item_id,
                    **listing.to_dict(),
                }
                for key, listing in sorted(self.listings.items())
            ],
            "proceeds": dict(sorted(self.proceeds.items())),
        }, indent=2)

    @classmethod
    def from_json(cls, data: str) -> MarketLedger:
        """Deserialize a snapshot.

        Raises ``SnapshotError`` when the document itself is unreadable.
        Individual malformed entries are skipped with a warning so one bad
        record does not take the whole marketplace offline.
        """
        try:
            obj = json.loads(data)
        except (json.JSONDecodeError, TypeError) as e:
            raise SnapshotError(f"Ledger snapshot is not valid JSON: {e}") from e

        if not isinstance(obj, dict):
            raise SnapshotError("Ledger snapshot is not a JSON object.")

        version = obj.get("v")
        if version != SNAPSHOT_SCHEMA_VERSION:
            raise SnapshotError(f"Unsupported ledger snapshot version: {version!r}")

        ledger = cls()

        raw_listings = obj.get("listings", [])
        if isinstance(raw_listings, list):
            for entry in raw_listings:
                if not (
                    isinstance(entry, dict)
                    and isinstance(entry.get("collection"), str)
                    and is_amount(entry.get("item_id"))
                    and is_amount(entry.get("price"))
                    and isinstance(entry.get("seller"), str)
                ):
                    logger.warning("Skipping malformed listing in snapshot: %r", entry)
                    continue
                if entry["price"] <= 0:
                    logger.warning("Skipping non-positive listing price in snapshot: %r", entry)
                    continue
                key = ListingKey(entry["collection"], entry["item_id"])
                ledger.listings[key] = Listing(price=entry["price"], seller=entry["seller"])

        raw_proceeds = obj.get("proceeds", {})
        if isinstance(raw_proceeds, dict):
            for seller, amount in raw_proceeds.items():
                if not is_amount(amount):
                    logger.warning(
                        "Skipping malformed proceeds for %s in snapshot: %r", seller, amount,
                    )
                    continue
                if amount > 0:
                    ledger.proceeds[str(seller)] = amount

        return ledger
