"""Tests for marketplace event types and the bundled sinks."""

import logging

import pytest

from bazaar.constants import EventKind
from bazaar.events import ItemSold, ListingCreated, ListingRemoved, LoggingEventSink, MemoryEventSink
from bazaar.interfaces import EventSink


class TestEventPayloads:
    def test_listing_created(self) -> None:
        event = ListingCreated("0xNft", 0, "0xS", 100)
        assert event.to_dict() == {
            "kind": "ListingCreated",
            "collection": "0xNft",
            "item_id": 0,
            "seller": "0xS",
            "price": 100,
        }

    def test_listing_removed(self) -> None:
        assert ListingRemoved("0xNft", 0).to_dict() == {
            "kind": "ListingRemoved", "collection": "0xNft", "item_id": 0,
        }

    def test_item_sold(self) -> None:
        assert ItemSold("0xNft", 0, "0xB", 100).to_dict()["kind"] == "ItemSold"

    def test_kind_is_not_a_field(self) -> None:
        assert ItemSold("0xNft", 0, "0xB", 100) == ItemSold("0xNft", 0, "0xB", 100)
        assert ItemSold.kind is EventKind.ITEM_SOLD


class TestSinks:
    def test_sinks_satisfy_protocol(self) -> None:
        assert isinstance(LoggingEventSink(), EventSink)
        assert isinstance(MemoryEventSink(), EventSink)

    @pytest.mark.asyncio
    async def test_logging_sink(self, caplog) -> None:
        with caplog.at_level(logging.INFO, logger="bazaar.events"):
            await LoggingEventSink().publish(ListingRemoved("0xNft", 3))
        assert "ListingRemoved" in caplog.text

    @pytest.mark.asyncio
    async def test_memory_sink_filters_by_kind(self) -> None:
        sink = MemoryEventSink()
        await sink.publish(ListingCreated("0xNft", 0, "0xS", 100))
        await sink.publish(ListingRemoved("0xNft", 0))
        assert sink.of_kind(EventKind.LISTING_REMOVED) == [ListingRemoved("0xNft", 0)]
        assert len(sink.events) == 2
