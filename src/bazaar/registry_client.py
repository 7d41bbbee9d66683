"""ItemRegistry over HTTP.

Endpoints (relative to ``{host}/api/v1``):
- ``GET  /collections/{c}/items/{id}`` -> ``{"owner": "..."}``
- ``GET  /collections/{c}/items/{id}/approvals/{operator}`` -> ``{"approved": bool}``
- ``POST /collections/{c}/items/{id}/transfer`` ``{"from", "to"}`` -> ``{"owner": "..."}``
"""

from __future__ import annotations

import logging

from bazaar.http_client import ServiceClient, ServiceNotFoundError, ServiceValidationError

logger = logging.getLogger(__name__)


class HTTPItemRegistry(ServiceClient):
    """Implements the ``ItemRegistry`` protocol against a registry service."""

    @staticmethod
    def _item_path(collection: str, item_id: int) -> str:
        return f"/collections/{collection}/items/{item_id}"

    async def owner_of(self, collection: str, item_id: int) -> str | None:
        """Current owner, or None if the item doesn't exist."""
        try:
            data = await self._request("GET", self._item_path(collection, item_id))
        except ServiceNotFoundError:
            return None
        return data.get("owner") or None

    async def is_approved_for_operator(
        self, collection: str, item_id: int, operator: str
    ) -> bool:
        try:
            data = await self._request(
                "GET", f"{self._item_path(collection, item_id)}/approvals/{operator}"
            )
        except ServiceNotFoundError:
            return False
        return bool(data.get("approved", False))

    async def transfer(
        self, collection: str, item_id: int, sender: str, recipient: str
    ) -> bool:
        """Move an item. True only if the registry reports ``recipient`` as owner.

        A 422 (e.g. sender no longer owns the item) is a refusal, not an
        error. Other service errors propagate.
        """
        try:
            data = await self._request(
                "POST",
                f"{self._item_path(collection, item_id)}/transfer",
                json_data={"from": sender, "to": recipient},
            )
        except ServiceValidationError as e:
            logger.warning(
                "Registry refused transfer of %s/%s to %s: %s",
                collection, item_id, recipient, e,
            )
            return False
        return data.get("owner") == recipient
