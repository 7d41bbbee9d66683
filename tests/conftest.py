"""Shared fakes for marketplace tests: an in-memory item registry and payout channel."""

from __future__ import annotations

from typing import Awaitable, Callable

import pytest

from bazaar.events import MemoryEventSink
from bazaar.marketplace import Marketplace

OPERATOR = "bazaar-operator"
COLLECTION = "0xBasicNft"
SELLER = "0xSeller"
BUYER = "0xBuyer"


class FakeRegistry:
    """In-memory ItemRegistry. ``on_transfer`` runs before the transfer is applied."""

    def __init__(self) -> None:
        self.owners: dict[tuple[str, int], str] = {}
        self.approvals: set[tuple[str, int, str]] = set()
        self.transfers: list[tuple[str, int, str, str]] = []
        self.fail_transfer = False
        self.on_transfer: Callable[[str, int, str, str], Awaitable[None]] | None = None

    def mint(self, collection: str, item_id: int, owner: str, approve: bool = True) -> None:
        self.owners[(collection, item_id)] = owner
        if approve:
            self.approvals.add((collection, item_id, OPERATOR))

    async def owner_of(self, collection: str, item_id: int) -> str | None:
        return self.owners.get((collection, item_id))

    async def is_approved_for_operator(
        self, collection: str, item_id: int, operator: str
    ) -> bool:
        return (collection, item_id, operator) in self.approvals

    async def transfer(
        self, collection: str, item_id: int, sender: str, recipient: str
    ) -> bool:
        if self.on_transfer is not None:
            await self.on_transfer(collection, item_id, sender, recipient)
        if self.fail_transfer:
            return False
        if self.owners.get((collection, item_id)) != sender:
            return False
        self.owners[(collection, item_id)] = recipient
        self.transfers.append((collection, item_id, sender, recipient))
        return True


class FakePayouts:
    """In-memory ValueTransfer. ``on_send`` runs before the payout is recorded."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, int]] = []
        self.fail = False
        self.on_send: Callable[[str, int], Awaitable[None]] | None = None

    async def send(self, recipient: str, amount: int) -> bool:
        if self.on_send is not None:
            await self.on_send(recipient, amount)
        if self.fail:
            return False
        self.sent.append((recipient, amount))
        return True


@pytest.fixture()
def registry() -> FakeRegistry:
    reg = FakeRegistry()
    reg.mint(COLLECTION, 0, SELLER)
    return reg


@pytest.fixture()
def payouts() -> FakePayouts:
    return FakePayouts()


@pytest.fixture()
def sink() -> MemoryEventSink:
    return MemoryEventSink()


@pytest.fixture()
def market(registry: FakeRegistry, payouts: FakePayouts, sink: MemoryEventSink) -> Marketplace:
    return Marketplace(registry, payouts, OPERATOR, event_sink=sink)
