"""ValueTransfer over HTTP. Pays withdrawn proceeds via a payout service."""

from __future__ import annotations

import logging
from typing import Any

from bazaar.http_client import ServiceClient, ServiceValidationError

logger = logging.getLogger(__name__)

# Payout states that mean the payout will never be sent.
_FAILED_STATES = frozenset({"Failed", "Rejected", "Cancelled"})


class HTTPValueTransfer(ServiceClient):
    """Implements the ``ValueTransfer`` protocol.

    ``POST /payouts`` with ``{"destination", "amount"}``; amounts are integers
    in the smallest currency unit.
    """

    async def create_payout(self, destination: str, amount: int) -> dict[str, Any]:
        """POST /payouts — create a payout and return the service's record."""
        if amount <= 0:
            raise ValueError(f"payout amount must be positive, got {amount}")
        payload: dict[str, Any] = {"destination": destination, "amount": amount}
        return await self._request("POST", "/payouts", json_data=payload)

    async def get_payout(self, payout_id: str) -> dict[str, Any]:
        """GET /payouts/{payoutId} — payout details."""
        return await self._request("GET", f"/payouts/{payout_id}")

    async def send(self, recipient: str, amount: int) -> bool:
        """Create a payout. False if the service rejects it outright."""
        try:
            payout = await self.create_payout(recipient, amount)
        except ServiceValidationError as e:
            logger.warning("Payout of %d to %s rejected: %s", amount, recipient, e)
            return False
        state = payout.get("state", "Unknown")
        if state in _FAILED_STATES:
            logger.warning(
                "Payout %s of %d to %s ended in state %s.",
                payout.get("id", ""), amount, recipient, state,
            )
            return False
        return True
