"""Notifications published after a ledger transaction commits.

Delivery is best-effort: a failing sink is logged and never affects
ledger state.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Union

from bazaar.constants import EventKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListingCreated:
    """Published on list and on reprice (re-announces the current terms)."""

    kind: ClassVar[EventKind] = EventKind.LISTING_CREATED

    collection: str
    item_id: int
    seller: str
    price: int

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, **asdict(self)}


@dataclass(frozen=True)
class ListingRemoved:
    kind: ClassVar[EventKind] = EventKind.LISTING_REMOVED

    collection: str
    item_id: int

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, **asdict(self)}


@dataclass(frozen=True)
class ItemSold:
    """``price`` is the listed price, not the (possibly larger) payment."""

    kind: ClassVar[EventKind] = EventKind.ITEM_SOLD

    collection: str
    item_id: int
    buyer: str
    price: int

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, **asdict(self)}


MarketEvent = Union[ListingCreated, ListingRemoved, ItemSold]


class LoggingEventSink:
    """EventSink that writes each event to the ``bazaar.events`` logger."""

    async def publish(self, event: MarketEvent) -> None:
        logger.info("%s %s", event.kind.value, event.to_dict())


@dataclass
class MemoryEventSink:
    """EventSink that keeps published events in a list."""

    events: list[MarketEvent] = field(default_factory=list)

    async def publish(self, event: MarketEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: EventKind) -> list[MarketEvent]:
        return [e for e in self.events if e.kind == kind]
