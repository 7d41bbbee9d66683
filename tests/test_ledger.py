"""Tests for MarketLedger model and snapshot serialization."""

import json

import pytest

from bazaar.errors import SnapshotError
from bazaar.ledger import Listing, ListingKey, MarketLedger

KEY = ListingKey("0xBasicNft", 0)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListing:
    def test_to_dict(self) -> None:
        assert Listing(price=100, seller="0xS").to_dict() == {"price": 100, "seller": "0xS"}

    def test_is_immutable(self) -> None:
        listing = Listing(price=100, seller="0xS")
        with pytest.raises(AttributeError):
            listing.seller = "0xOther"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# MarketLedger mutations
# ---------------------------------------------------------------------------


class TestMarketLedger:
    def test_defaults(self) -> None:
        ledger = MarketLedger()
        assert ledger.get_listing(KEY) is None
        assert ledger.get_proceeds("0xS") == 0

    def test_put_listing_returns_previous(self) -> None:
        ledger = MarketLedger()
        assert ledger.put_listing(KEY, Listing(100, "0xS")) is None
        assert ledger.put_listing(KEY, Listing(200, "0xS")) == Listing(100, "0xS")
        assert ledger.get_listing(KEY) == Listing(200, "0xS")

    def test_pop_listing(self) -> None:
        ledger = MarketLedger()
        ledger.put_listing(KEY, Listing(100, "0xS"))
        assert ledger.pop_listing(KEY) == Listing(100, "0xS")
        assert ledger.pop_listing(KEY) is None

    def test_restore_listing_into_empty_key(self) -> None:
        ledger = MarketLedger()
        ledger.restore_listing(KEY, Listing(100, "0xS"))
        assert ledger.get_listing(KEY) == Listing(100, "0xS")

    def test_restore_listing_keeps_newer_listing(self) -> None:
        ledger = MarketLedger()
        ledger.put_listing(KEY, Listing(300, "0xNewOwner"))
        ledger.restore_listing(KEY, Listing(100, "0xS"))
        assert ledger.get_listing(KEY) == Listing(300, "0xNewOwner")

    def test_adjust_proceeds(self) -> None:
        ledger = MarketLedger()
        assert ledger.adjust_proceeds("0xS", 150) == 150
        assert ledger.adjust_proceeds("0xS", 50) == 200
        assert ledger.get_proceeds("0xS") == 200

    def test_adjust_to_zero_drops_entry(self) -> None:
        ledger = MarketLedger()
        ledger.adjust_proceeds("0xS", 150)
        assert ledger.adjust_proceeds("0xS", -150) == 0
        assert "0xS" not in ledger.proceeds

    def test_adjust_below_zero_rejected(self) -> None:
        ledger = MarketLedger()
        ledger.adjust_proceeds("0xS", 10)
        with pytest.raises(ValueError, match="negative"):
            ledger.adjust_proceeds("0xS", -11)
        assert ledger.get_proceeds("0xS") == 10

    def test_copy_is_independent(self) -> None:
        ledger = MarketLedger()
        ledger.put_listing(KEY, Listing(100, "0xS"))
        ledger.adjust_proceeds("0xS", 5)
        view = ledger.copy()
        view.pop_listing(KEY)
        view.adjust_proceeds("0xS", -5)
        assert ledger.get_listing(KEY) == Listing(100, "0xS")
        assert ledger.get_proceeds("0xS") == 5


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


class TestLedgerSerialization:
    def test_roundtrip(self) -> None:
        ledger = MarketLedger()
        ledger.put_listing(KEY, Listing(100, "0xS"))
        ledger.put_listing(ListingKey("0xOther", 7), Listing(5, "0xT"))
        ledger.adjust_proceeds("0xS", 150)
        restored = MarketLedger.from_json(ledger.to_json())
        assert restored == ledger

    def test_schema_version(self) -> None:
        obj = json.loads(MarketLedger().to_json())
        assert obj["v"] == 1

    def test_listing_entries_are_flat(self) -> None:
        ledger = MarketLedger()
        ledger.put_listing(KEY, Listing(100, "0xS"))
        obj = json.loads(ledger.to_json())
        assert obj["listings"] == [
            {"collection": "0xBasicNft", "item_id": 0, "price": 100, "seller": "0xS"}
        ]

    def test_to_json_is_pretty_printed(self) -> None:
        assert "\n" in MarketLedger().to_json()

    def test_from_json_missing_fields(self) -> None:
        restored = MarketLedger.from_json('{"v": 1}')
        assert restored.listings == {}
        assert restored.proceeds == {}

    def test_from_json_corrupt_data(self) -> None:
        with pytest.raises(SnapshotError, match="not valid JSON"):
            MarketLedger.from_json("not json at all")

    def test_from_json_none(self) -> None:
        with pytest.raises(SnapshotError):
            MarketLedger.from_json(None)  # type: ignore[arg-type]

    def test_from_json_non_dict(self) -> None:
        with pytest.raises(SnapshotError, match="not a JSON object"):
            MarketLedger.from_json('"just a string"')

    def test_from_json_unknown_version(self) -> None:
        with pytest.raises(SnapshotError, match="version"):
            MarketLedger.from_json('{"v": 99}')

    def test_malformed_entries_skipped(self) -> None:
        data = json.dumps({
            "v": 1,
            "listings": [
                {"collection": "c", "item_id": 1, "price": 10, "seller": "s"},
                {"collection": "c", "item_id": "not-a-number", "price": 10, "seller": "s"},
                {"collection": "c", "item_id": 2, "seller": "s"},
                {"collection": "c", "item_id": 3, "price": 0, "seller": "s"},
            ],
            "proceeds": {"s": 40, "t": "lots", "u": 0},
        })
        restored = MarketLedger.from_json(data)
        assert list(restored.listings) == [ListingKey("c", 1)]
        assert restored.proceeds == {"s": 40}

    def test_fractional_amounts_not_truncated(self) -> None:
        data = json.dumps({
            "v": 1,
            "listings": [
                {"collection": "c", "item_id": 1, "price": 10.9, "seller": "s"},
                {"collection": "c", "item_id": 2.0, "price": 10, "seller": "s"},
                {"collection": "c", "item_id": 3, "price": True, "seller": "s"},
                {"collection": "c", "item_id": 4, "price": "10", "seller": "s"},
                {"collection": "c", "item_id": 5, "price": 7, "seller": "s"},
            ],
            "proceeds": {"s": 40.5, "t": 12.0, "u": "9", "v": 3},
        })
        restored = MarketLedger.from_json(data)
        assert restored.listings == {ListingKey("c", 5): Listing(7, "s")}
        assert restored.proceeds == {"v": 3}
