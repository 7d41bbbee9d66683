"""Fixed-price marketplace: listing, purchase and proceeds withdrawal.

Every mutating operation runs as one journaled transaction. Local effects
are applied *before* any external call (item transfer, payout) and reverted
if that call fails, so a collaborator that calls back into the marketplace
while the call is in flight always sees the post-effect state: a re-entered
``buy_item`` finds no listing and a re-entered ``withdraw_proceeds`` finds no
balance.

Mutations are serialized per listing key and per seller with task-reentrant
``asyncio`` locks, waited for only in rank order (listing, then seller).
Queries take no lock: they read the ledger with other tasks' in-flight
transactions undone, so they never block and never see a half-applied one.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable, Hashable

from bazaar.errors import (
    AlreadyListedError,
    InvalidPriceError,
    LockConflictError,
    NoProceedsError,
    NotApprovedError,
    NotListedError,
    NotOwnerError,
    PriceNotMetError,
    TransferFailedError,
)
from bazaar.events import ItemSold, ListingCreated, ListingRemoved, MarketEvent
from bazaar.ledger import Listing, ListingKey, MarketLedger, is_amount
from bazaar.snapshots import LedgerCheckpointer

if TYPE_CHECKING:
    from bazaar.config import MarketplaceConfig
    from bazaar.interfaces import EventSink, ItemRegistry, LedgerVault, ValueTransfer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------


class _KeyLock:
    """An ``asyncio.Lock`` the owning task may acquire again.

    Re-entry lets a collaborator callback reach the ledger's own checks
    (and fail them) instead of deadlocking on the caller's lock.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._owner: asyncio.Task[Any] | None = None
        self._depth = 0
        self._waiting = 0
        self.users = 0

    async def acquire(self, *, wait: bool = True) -> bool:
        """Acquire, or re-enter if the current task owns the lock.

        With ``wait=False`` a lock that is held or contended is not waited
        for and False is returned.
        """
        task = asyncio.current_task()
        if task is not None and self._owner is task:
            self._depth += 1
            return True
        if not wait and (self._owner is not None or self._waiting):
            return False
        self._waiting += 1
        try:
            await self._lock.acquire()
        finally:
            self._waiting -= 1
        self._owner = task
        self._depth = 1
        return True

    def release(self) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._owner = None
            self._lock.release()


# Lock ranks. A task only ever waits for a lock ranked above every lock it
# already holds, so listing locks come before seller locks.
_LISTING_RANK = 0
_SELLER_RANK = 1


def _listing_lock(key: ListingKey) -> tuple[int, ListingKey]:
    return (_LISTING_RANK, key)


def _seller_lock(seller: str) -> tuple[int, str]:
    return (_SELLER_RANK, seller)


# Ranks of the marketplace locks held by the current task.
_held_ranks: contextvars.ContextVar[tuple[int, ...]] = contextvars.ContextVar(
    "bazaar_held_lock_ranks", default=()
)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class _Transaction:
    """Undo journal, buffered events and uncommitted credits of one operation.

    Undo steps are recorded as ``(MarketLedger method name, *args)`` so they
    can be replayed against the live ledger (rollback) or against a copy
    (building the committed view for snapshots).
    """

    def __init__(self, ledger: MarketLedger) -> None:
        self._ledger = ledger
        self.undo: list[tuple[Any, ...]] = []
        self.events: list[MarketEvent] = []
        self.credits: dict[str, int] = {}

    def insert_listing(self, key: ListingKey, listing: Listing) -> None:
        self._ledger.put_listing(key, listing)
        self.undo.append(("pop_listing", key))

    def replace_listing(self, key: ListingKey, listing: Listing) -> None:
        previous = self._ledger.put_listing(key, listing)
        self.undo.append(("put_listing", key, previous))

    def remove_listing(self, key: ListingKey) -> Listing | None:
        listing = self._ledger.pop_listing(key)
        if listing is not None:
            self.undo.append(("restore_listing", key, listing))
        return listing

    def credit(self, seller: str, amount: int) -> None:
        self._ledger.adjust_proceeds(seller, amount)
        self.undo.append(("adjust_proceeds", seller, -amount))
        self.credits[seller] = self.credits.get(seller, 0) + amount

    def debit(self, seller: str, amount: int) -> None:
        self._ledger.adjust_proceeds(seller, -amount)
        self.undo.append(("adjust_proceeds", seller, amount))

    def revert_onto(
        self, ledger: MarketLedger, only: tuple[Hashable, ...] | None = None,
    ) -> None:
        """Replay the undo steps, optionally just those for listing keys or
        sellers in ``only``."""
        for op, *args in reversed(self.undo):
            if only is None or args[0] in only:
                getattr(ledger, op)(*args)


# Transactions open in the current task, outermost first.
_active: contextvars.ContextVar[tuple[_Transaction, ...]] = contextvars.ContextVar(
    "bazaar_active_transactions", default=()
)


# ---------------------------------------------------------------------------
# Marketplace
# ---------------------------------------------------------------------------


class Marketplace:
    """Ledger of active listings and seller proceeds.

    Args:
        registry: Ownership/approval oracle and item transfer.
        value_transfer: Payout channel used by ``withdraw_proceeds``.
        operator_id: The marketplace's own identity; sellers must approve it
            as an operator for an item before listing it.
        event_sink: Optional best-effort notification receiver.
        ledger: Initial state (e.g. loaded from a snapshot).
        vault: Optional snapshot store; enables write-behind persistence.
    """

    def __init__(
        self,
        registry: ItemRegistry,
        value_transfer: ValueTransfer,
        operator_id: str,
        *,
        event_sink: EventSink | None = None,
        ledger: MarketLedger | None = None,
        vault: LedgerVault | None = None,
        flush_interval_secs: int = 60,
        flush_retries: int = 1,
        flush_retry_delay: float = 2.0,
    ) -> None:
        self._registry = registry
        self._value_transfer = value_transfer
        self._operator_id = operator_id
        self._event_sink = event_sink
        self._ledger = ledger if ledger is not None else MarketLedger()
        self._locks: dict[Hashable, _KeyLock] = {}
        self._in_flight: list[_Transaction] = []
        self._owned_clients: list[Any] = []
        self._checkpointer: LedgerCheckpointer | None = None
        if vault is not None:
            self._checkpointer = LedgerCheckpointer(
                vault,
                self.committed_ledger,
                flush_interval_secs=flush_interval_secs,
                flush_retries=flush_retries,
                flush_retry_delay=flush_retry_delay,
            )

    @classmethod
    async def open(
        cls,
        registry: ItemRegistry,
        value_transfer: ValueTransfer,
        operator_id: str,
        vault: LedgerVault,
        **kwargs: Any,
    ) -> Marketplace:
        """Create a marketplace whose state is restored from ``vault``."""
        ledger = await LedgerCheckpointer.load(vault)
        return cls(registry, value_transfer, operator_id, ledger=ledger, vault=vault, **kwargs)

    @classmethod
    async def from_config(
        cls,
        config: MarketplaceConfig,
        event_sink: EventSink | None = None,
    ) -> Marketplace:
        """Wire the HTTP registry/payout adapters and file vault from config."""
        from bazaar.payout_client import HTTPValueTransfer
        from bazaar.registry_client import HTTPItemRegistry
        from bazaar.vaults import JSONFileVault

        if not (config.registry_host and config.registry_api_key):
            raise ValueError("registry_host and registry_api_key are required.")
        if not (config.payout_host and config.payout_api_key):
            raise ValueError("payout_host and payout_api_key are required.")

        registry = HTTPItemRegistry(config.registry_host, config.registry_api_key)
        payouts = HTTPValueTransfer(config.payout_host, config.payout_api_key)
        tuning = {
            "event_sink": event_sink,
            "flush_interval_secs": config.flush_interval_secs,
            "flush_retries": config.flush_retries,
            "flush_retry_delay": config.flush_retry_delay,
        }
        try:
            if config.snapshot_path:
                market = await cls.open(
                    registry, payouts, config.operator_id,
                    JSONFileVault(config.snapshot_path), **tuning,
                )
            else:
                market = cls(registry, payouts, config.operator_id, **tuning)
        except BaseException:
            await registry.close()
            await payouts.close()
            raise
        market._owned_clients.extend([registry, payouts])
        return market

    @property
    def operator_id(self) -> str:
        return self._operator_id

    @property
    def checkpointer(self) -> LedgerCheckpointer | None:
        return self._checkpointer

    # -- plumbing -------------------------------------------------------------

    @asynccontextmanager
    async def _locked(self, name: tuple[int, Hashable]) -> AsyncIterator[None]:
        """Hold the lock ``name`` (a rank and a key) for the body.

        Waiting is allowed only in rank order. An out-of-order request, such
        as a payout callback touching another listing, gets the lock only if
        it is free right now and fails with LockConflictError otherwise.
        """
        rank = name[0]
        held = _held_ranks.get()
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = _KeyLock()
        lock.users += 1
        try:
            if not await lock.acquire(wait=all(r < rank for r in held)):
                raise LockConflictError(
                    f"{name[1]} is busy in another operation and cannot be "
                    "waited for from inside this one."
                )
            token = _held_ranks.set(held + (rank,))
            try:
                yield
            finally:
                _held_ranks.reset(token)
                lock.release()
        finally:
            lock.users -= 1
            if lock.users == 0 and self._locks.get(name) is lock:
                del self._locks[name]

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[_Transaction]:
        """Journal one operation; revert its effects if the body raises."""
        txn = _Transaction(self._ledger)
        token = _active.set(_active.get() + (txn,))
        self._in_flight.append(txn)
        try:
            yield txn
        except BaseException:
            if txn.undo:
                logger.warning("Rolling back %d ledger effect(s).", len(txn.undo))
                txn.revert_onto(self._ledger)
            raise
        finally:
            self._in_flight.remove(txn)
            _active.reset(token)

    async def _finish(self, txn: _Transaction, *, flush: bool = False) -> None:
        """Post-commit work: persist, then publish buffered events."""
        if self._checkpointer is not None:
            self._checkpointer.mark_dirty()
            if flush:
                if not await self._checkpointer.flush():
                    logger.error(
                        "CRITICAL: Failed to persist ledger after a value-moving "
                        "operation. State is in memory but may be lost on restart."
                    )
            else:
                await self._checkpointer.maybe_flush()
        for event in txn.events:
            await self._publish(event)

    async def _publish(self, event: MarketEvent) -> None:
        if self._event_sink is None:
            return
        try:
            await self._event_sink.publish(event)
        except Exception:
            logger.warning("Event sink failed to accept %s.", event.kind.value, exc_info=True)

    @staticmethod
    async def _external(
        what: str, call: Callable[..., Awaitable[Any]], *args: Any,
    ) -> Any:
        """Await a collaborator call, mapping any exception to TransferFailedError."""
        try:
            return await call(*args)
        except Exception as exc:
            logger.warning("%s failed: %s", what, exc)
            raise TransferFailedError(f"{what} failed: {exc}") from exc

    # -- queries --------------------------------------------------------------

    def _visible(
        self, *, key: ListingKey | None = None, seller: str | None = None,
    ) -> MarketLedger:
        """One listing and/or one balance as the calling task may observe it.

        Effects of other tasks' in-flight transactions are undone. The
        caller's own effects stay visible, so a callback running inside one
        of its operations sees the post-effect state.
        """
        own = _active.get()
        view = MarketLedger()
        if key is not None and key in self._ledger.listings:
            view.listings[key] = self._ledger.listings[key]
        if seller is not None and seller in self._ledger.proceeds:
            view.proceeds[seller] = self._ledger.proceeds[seller]
        for txn in reversed(self._in_flight):
            if txn not in own:
                txn.revert_onto(view, only=(key, seller))
        return view

    async def get_listing(self, collection: str, item_id: int) -> Listing | None:
        """Return the committed listing for an item, or None if not listed.

        Never waits for an in-flight operation on the item.
        """
        key = ListingKey(collection, item_id)
        return self._visible(key=key).get_listing(key)

    async def get_proceeds(self, seller: str) -> int:
        """Return the committed, un-withdrawn proceeds of a seller."""
        return self._visible(seller=seller).get_proceeds(seller)

    def committed_ledger(self) -> MarketLedger:
        """Copy of the ledger with every in-flight transaction undone."""
        view = self._ledger.copy()
        for txn in reversed(self._in_flight):
            txn.revert_onto(view)
        return view

    def stats(self) -> dict[str, int]:
        committed = self.committed_ledger()
        return {
            "active_listings": len(committed.listings),
            "sellers_with_proceeds": len(committed.proceeds),
            "total_proceeds": sum(committed.proceeds.values()),
            "in_flight_transactions": len(self._in_flight),
        }

    # -- operations -----------------------------------------------------------

    async def list_item(
        self, collection: str, item_id: int, price: int, requester: str,
    ) -> Listing:
        """Offer an item for sale at a fixed ``price``.

        Raises InvalidPriceError unless ``price`` is a positive int, then
        AlreadyListedError, NotOwnerError, NotApprovedError, or
        TransferFailedError if the registry is unreachable.
        """
        if not is_amount(price) or price <= 0:
            raise InvalidPriceError(f"Price must be a positive integer, got {price!r}.")
        key = ListingKey(collection, item_id)
        async with self._locked(_listing_lock(key)):
            if key in self._ledger.listings:
                raise AlreadyListedError(f"{collection}/{item_id} is already listed.")

            owner = await self._external(
                "Item registry ownership lookup", self._registry.owner_of,
                collection, item_id,
            )
            if owner != requester:
                raise NotOwnerError(f"{requester} does not own {collection}/{item_id}.")

            approved = await self._external(
                "Item registry approval lookup", self._registry.is_approved_for_operator,
                collection, item_id, self._operator_id,
            )
            if not approved:
                raise NotApprovedError(
                    f"Marketplace is not approved to transfer {collection}/{item_id}."
                )

            # A registry callback may have listed the key while we awaited.
            if key in self._ledger.listings:
                raise AlreadyListedError(f"{collection}/{item_id} is already listed.")

            listing = Listing(price=price, seller=requester)
            async with self._transaction() as txn:
                txn.insert_listing(key, listing)
                txn.events.append(ListingCreated(collection, item_id, requester, price))

        await self._finish(txn)
        return listing

    async def cancel_listing(self, collection: str, item_id: int, requester: str) -> None:
        """Withdraw an active listing. Only its seller may cancel it."""
        key = ListingKey(collection, item_id)
        async with self._locked(_listing_lock(key)):
            listing = self._ledger.get_listing(key)
            if listing is None:
                raise NotListedError(f"{collection}/{item_id} is not listed.")
            if listing.seller != requester:
                raise NotOwnerError(f"{requester} is not the seller of {collection}/{item_id}.")

            async with self._transaction() as txn:
                txn.remove_listing(key)
                txn.events.append(ListingRemoved(collection, item_id))

        await self._finish(txn)

    async def update_price(
        self, collection: str, item_id: int, new_price: int, requester: str,
    ) -> Listing:
        """Reprice an active listing in place. The seller never changes."""
        if not is_amount(new_price) or new_price <= 0:
            raise InvalidPriceError(f"Price must be a positive integer, got {new_price!r}.")
        key = ListingKey(collection, item_id)
        async with self._locked(_listing_lock(key)):
            listing = self._ledger.get_listing(key)
            if listing is None:
                raise NotListedError(f"{collection}/{item_id} is not listed.")
            if listing.seller != requester:
                raise NotOwnerError(f"{requester} is not the seller of {collection}/{item_id}.")

            updated = Listing(price=new_price, seller=listing.seller)
            async with self._transaction() as txn:
                txn.replace_listing(key, updated)
                txn.events.append(
                    ListingCreated(collection, item_id, updated.seller, new_price)
                )

        await self._finish(txn)
        return updated

    async def buy_item(
        self, collection: str, item_id: int, payment: int, buyer: str,
    ) -> Listing:
        """Purchase a listed item. Returns the listing that was bought.

        The whole ``payment`` is credited to the seller, including any amount
        above the listed price; overpayment is not refunded.

        Order: delete listing, credit seller, then transfer the item. If the
        transfer fails the first two effects are reverted and
        TransferFailedError is raised.
        """
        key = ListingKey(collection, item_id)
        async with self._locked(_listing_lock(key)):
            listing = self._ledger.get_listing(key)
            if listing is None:
                raise NotListedError(f"{collection}/{item_id} is not listed.")
            if not is_amount(payment) or payment < listing.price:
                raise PriceNotMetError(
                    f"Payment {payment!r} does not meet the price {listing.price} "
                    f"of {collection}/{item_id}."
                )

            # Holding the seller lock keeps a concurrent withdrawal from paying
            # out this credit before the transfer settles.
            async with self._locked(_seller_lock(listing.seller)):
                async with self._transaction() as txn:
                    txn.remove_listing(key)
                    txn.credit(listing.seller, payment)
                    transferred = await self._external(
                        "Item transfer", self._registry.transfer,
                        collection, item_id, listing.seller, buyer,
                    )
                    if not transferred:
                        raise TransferFailedError(
                            f"Item registry refused to transfer {collection}/{item_id} "
                            f"from {listing.seller} to {buyer}."
                        )
                    txn.events.append(ItemSold(collection, item_id, buyer, listing.price))

        await self._finish(txn, flush=True)
        return listing

    async def withdraw_proceeds(self, requester: str) -> int:
        """Pay out the requester's entire balance. Returns the amount sent.

        The balance is zeroed *before* the payout is sent; if the send fails
        the balance is restored and TransferFailedError is raised.
        """
        async with self._locked(_seller_lock(requester)):
            # Credits from sales still in flight in this task are not payable yet.
            pending = sum(t.credits.get(requester, 0) for t in _active.get())
            amount = self._ledger.get_proceeds(requester) - pending
            if amount <= 0:
                raise NoProceedsError(f"{requester} has no proceeds to withdraw.")

            async with self._transaction() as txn:
                txn.debit(requester, amount)
                sent = await self._external(
                    "Proceeds payout", self._value_transfer.send, requester, amount,
                )
                if not sent:
                    raise TransferFailedError(
                        f"Payout of {amount} to {requester} was not accepted."
                    )

        logger.info("Paid out %d in proceeds to %s.", amount, requester)
        await self._finish(txn, flush=True)
        return amount

    # -- lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        """Start background snapshot flushing, if persistence is configured."""
        if self._checkpointer is not None:
            await self._checkpointer.start_background_flush()

    async def close(self) -> None:
        """Flush remaining state and close adapters created by ``from_config``."""
        if self._checkpointer is not None:
            await self._checkpointer.stop()
        for client in self._owned_clients:
            await client.close()
        self._owned_clients.clear()

    async def __aenter__(self) -> Marketplace:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
