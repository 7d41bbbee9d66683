"""Write-behind persistence of the marketplace ledger to a vault.

The in-memory ``MarketLedger`` is the hot path for every operation. The
vault is the durable backing store, updated every ``flush_interval_secs``
or immediately after value-moving operations (buy, withdraw).
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from bazaar.ledger import MarketLedger

if TYPE_CHECKING:
    from bazaar.interfaces import LedgerVault

logger = logging.getLogger(__name__)


class LedgerCheckpointer:
    """Dirty tracking and retrying flush of ledger snapshots.

    - ``mark_dirty()`` after every committed transaction.
    - ``flush()`` writes a snapshot now (credit-critical paths).
    - ``maybe_flush()`` writes only when the flush interval has elapsed.
    - A background task can flush periodically until ``stop()``.

    ``snapshot`` returns the ledger state to persist; the marketplace passes
    a function that excludes in-flight, uncommitted effects.
    """

    def __init__(
        self,
        vault: LedgerVault,
        snapshot: Callable[[], MarketLedger],
        flush_interval_secs: int = 60,
        flush_retries: int = 1,
        flush_retry_delay: float = 2.0,
    ) -> None:
        self._vault = vault
        self._snapshot = snapshot
        self._flush_interval = flush_interval_secs
        self._flush_retries = flush_retries
        self._flush_retry_delay = flush_retry_delay
        self._generation = 0
        self._flushed_generation = 0
        self._flush_lock = asyncio.Lock()
        self._flush_task: asyncio.Task[None] | None = None
        self._last_flush_at: str | None = None
        self._total_flushes: int = 0
        self._last_flush_check: float = time.monotonic()

    @staticmethod
    async def load(vault: LedgerVault) -> MarketLedger:
        """Load the last snapshot from the vault; empty ledger if none exists.

        Vault and snapshot errors propagate: starting from an empty ledger
        when a snapshot exists but can't be read would forget proceeds.
        """
        snapshot_json = await vault.fetch_snapshot()
        if snapshot_json is None:
            logger.info("No ledger snapshot in vault; starting empty.")
            return MarketLedger()
        ledger = MarketLedger.from_json(snapshot_json)
        logger.info(
            "Loaded ledger snapshot: %d listing(s), %d seller balance(s).",
            len(ledger.listings), len(ledger.proceeds),
        )
        return ledger

    def mark_dirty(self) -> None:
        self._generation += 1

    @property
    def dirty(self) -> bool:
        return self._generation != self._flushed_generation

    async def maybe_flush(self) -> None:
        """Flush if enough time has passed since the last check.

        Piggybacks on request-driven activity so dirty state is eventually
        persisted even when the background loop isn't running.
        """
        now = time.monotonic()
        if now - self._last_flush_check < self._flush_interval:
            return
        self._last_flush_check = now
        if self.dirty and await self.flush():
            logger.info("Opportunistic flush: wrote ledger snapshot.")

    async def flush(self) -> bool:
        """Write the current snapshot with retry. Returns True on success.

        A clean ledger is a successful no-op. Failures are logged, not raised.
        """
        async with self._flush_lock:
            if not self.dirty:
                return True
            generation = self._generation
            snapshot_json = self._snapshot().to_json()

            max_attempts = 1 + self._flush_retries
            for attempt in range(max_attempts):
                try:
                    await self._vault.store_snapshot(snapshot_json)
                except Exception:
                    if attempt < max_attempts - 1:
                        logger.warning(
                            "Snapshot flush attempt %d/%d failed, retrying in %.1fs...",
                            attempt + 1, max_attempts, self._flush_retry_delay,
                        )
                        await asyncio.sleep(self._flush_retry_delay)
                    else:
                        logger.warning(
                            "Failed to flush ledger snapshot after %d attempt(s).",
                            max_attempts,
                        )
                    continue
                # Changes marked after the snapshot was taken stay dirty.
                self._flushed_generation = generation
                self._last_flush_at = datetime.now(timezone.utc).isoformat()
                self._total_flushes += 1
                return True
        return False

    async def start_background_flush(self) -> None:
        """Start the periodic background flush task."""
        if self._flush_task is not None:
            return
        self._flush_task = asyncio.create_task(self._background_flush_loop())

    async def _background_flush_loop(self) -> None:
        """Periodically flush until cancelled."""
        logger.info(
            "Background snapshot flush started (interval=%ds).", self._flush_interval,
        )
        cycles = 0
        try:
            while True:
                await asyncio.sleep(self._flush_interval)
                cycles += 1
                if self.dirty:
                    if await self.flush():
                        logger.info(
                            "Background flush: wrote snapshot (cycle %d, total flushes: %d).",
                            cycles, self._total_flushes,
                        )
                elif cycles % 10 == 0:
                    logger.info(
                        "Background flush heartbeat: cycle %d, total flushes %d.",
                        cycles, self._total_flushes,
                    )
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        """Cancel the background task and write any remaining changes."""
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None
        await self.flush()

    def health(self) -> dict[str, object]:
        """Return checkpoint health metrics for monitoring."""
        return {
            "dirty": self.dirty,
            "last_flush_at": self._last_flush_at,
            "total_flushes": self._total_flushes,
            "flush_retries": self._flush_retries,
            "flush_retry_delay": self._flush_retry_delay,
            "background_flush_running": self._flush_task is not None
                                        and not self._flush_task.done(),
            "last_flush_check_age_secs": round(
                time.monotonic() - self._last_flush_check, 1
            ),
        }
