"""Collaborator interfaces the marketplace depends on.

The marketplace never stores ownership facts; it asks the ``ItemRegistry``
on every operation. Concrete HTTP implementations live in
``bazaar.registry_client`` and ``bazaar.payout_client``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from bazaar.events import MarketEvent


@runtime_checkable
class ItemRegistry(Protocol):
    """Source of truth for item ownership, operator approval and transfer."""

    async def owner_of(self, collection: str, item_id: int) -> str | None: ...

    async def is_approved_for_operator(
        self, collection: str, item_id: int, operator: str
    ) -> bool: ...

    async def transfer(
        self, collection: str, item_id: int, sender: str, recipient: str
    ) -> bool: ...


@runtime_checkable
class ValueTransfer(Protocol):
    """Outbound payment channel. Returns True only once the send is accepted."""

    async def send(self, recipient: str, amount: int) -> bool: ...


@runtime_checkable
class EventSink(Protocol):
    """Fire-and-forget notification receiver."""

    async def publish(self, event: MarketEvent) -> None: ...


@runtime_checkable
class LedgerVault(Protocol):
    """Async persistence backend for ledger snapshots.

    Any object implementing these two methods can serve as the durable
    backing store for ``LedgerCheckpointer``.
    """

    async def store_snapshot(self, snapshot_json: str) -> str: ...

    async def fetch_snapshot(self) -> str | None: ...
