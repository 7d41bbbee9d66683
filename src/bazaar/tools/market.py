"""Marketplace tools: list, cancel, reprice, buy, withdraw, and read-only lookups.

Each mutating tool authenticates the caller with a requester certificate
issued for that action (and item), runs one ledger operation, and returns a
result dict. Domain failures never raise out of a tool; they come back as
``success=False`` with the error's stable ``error_code``.
"""

from __future__ import annotations

import importlib.metadata
import logging
import platform
from typing import Any

from bazaar.certificate import (
    CertificateError,
    authority_fingerprint,
    load_authority_key,
    verify_requester_certificate,
)
from bazaar.config import MarketplaceConfig
from bazaar.constants import CertifiedAction
from bazaar.errors import MarketplaceError
from bazaar.http_client import ServiceClient
from bazaar.ledger import Listing
from bazaar.marketplace import Marketplace

logger = logging.getLogger(__name__)


def _authenticate(
    certificate: str,
    authority_public_key: str | None,
    action: CertifiedAction,
    collection: str | None = None,
    item_id: int | None = None,
) -> tuple[str | None, dict[str, Any] | None]:
    """Return (requester, None) on success or (None, error result).

    The certificate must authorize ``action``, and for item actions this
    exact collection and item_id.
    """
    if not authority_public_key:
        return None, {
            "success": False,
            "error_code": "Misconfigured",
            "error": "Marketplace misconfigured: authority_public_key is required.",
        }
    if not certificate:
        return None, {
            "success": False,
            "error_code": "CertificateRequired",
            "error": f"A requester certificate for '{action.value}' is required.",
        }
    try:
        cert = verify_requester_certificate(
            certificate, authority_public_key, action,
            collection=collection, item_id=item_id,
        )
    except CertificateError as e:
        logger.info("Rejected %s certificate: %s", action.value, e)
        return None, {
            "success": False,
            "error_code": "CertificateRejected",
            "error": f"Certificate rejected: {e}",
        }
    return cert.requester, None


def _failure(error: MarketplaceError) -> dict[str, Any]:
    return {"success": False, "error_code": error.code, "error": str(error)}


def _listing_dict(collection: str, item_id: int, listing: Listing) -> dict[str, Any]:
    return {"collection": collection, "item_id": item_id, **listing.to_dict()}


async def list_item_tool(
    market: Marketplace,
    collection: str,
    item_id: int,
    price: int,
    certificate: str,
    authority_public_key: str | None,
) -> dict[str, Any]:
    """List an item for sale at a fixed price.

    The requester must own the item and have approved the marketplace as an
    operator for it in the item registry.
    """
    requester, error = _authenticate(
        certificate, authority_public_key, CertifiedAction.LIST, collection, item_id,
    )
    if error is not None:
        return error
    try:
        listing = await market.list_item(collection, item_id, price, requester)
    except MarketplaceError as e:
        return _failure(e)
    return {
        "success": True,
        "listing": _listing_dict(collection, item_id, listing),
        "message": f"Listed {collection}/{item_id} for {price:,}.",
    }


async def cancel_listing_tool(
    market: Marketplace,
    collection: str,
    item_id: int,
    certificate: str,
    authority_public_key: str | None,
) -> dict[str, Any]:
    """Cancel one of the requester's own listings."""
    requester, error = _authenticate(
        certificate, authority_public_key, CertifiedAction.CANCEL, collection, item_id,
    )
    if error is not None:
        return error
    try:
        await market.cancel_listing(collection, item_id, requester)
    except MarketplaceError as e:
        return _failure(e)
    return {"success": True, "message": f"Listing for {collection}/{item_id} cancelled."}


async def update_listing_tool(
    market: Marketplace,
    collection: str,
    item_id: int,
    new_price: int,
    certificate: str,
    authority_public_key: str | None,
) -> dict[str, Any]:
    """Reprice one of the requester's own listings."""
    requester, error = _authenticate(
        certificate, authority_public_key, CertifiedAction.REPRICE, collection, item_id,
    )
    if error is not None:
        return error
    try:
        listing = await market.update_price(collection, item_id, new_price, requester)
    except MarketplaceError as e:
        return _failure(e)
    return {
        "success": True,
        "listing": _listing_dict(collection, item_id, listing),
        "message": f"{collection}/{item_id} repriced to {new_price:,}.",
    }


async def buy_item_tool(
    market: Marketplace,
    collection: str,
    item_id: int,
    payment: int,
    certificate: str,
    authority_public_key: str | None,
) -> dict[str, Any]:
    """Buy a listed item.

    The full ``payment`` is credited to the seller. Paying more than the
    listed price is accepted, and the excess is not refunded.

    Returns dict with:
        success: True when the item was transferred to the requester.
        listing: The terms that were bought.
        payment: Amount credited to the seller.
        overpayment: ``payment - price`` (0 when paying exactly).
    """
    requester, error = _authenticate(
        certificate, authority_public_key, CertifiedAction.BUY, collection, item_id,
    )
    if error is not None:
        return error
    try:
        listing = await market.buy_item(collection, item_id, payment, requester)
    except MarketplaceError as e:
        return _failure(e)
    overpayment = payment - listing.price
    result: dict[str, Any] = {
        "success": True,
        "listing": _listing_dict(collection, item_id, listing),
        "payment": payment,
        "overpayment": overpayment,
        "message": f"Bought {collection}/{item_id} from {listing.seller}.",
    }
    if overpayment > 0:
        result["message"] += f" {overpayment:,} above the asking price was not refunded."
    return result


async def withdraw_proceeds_tool(
    market: Marketplace,
    certificate: str,
    authority_public_key: str | None,
) -> dict[str, Any]:
    """Pay out all of the requester's accrued sale proceeds."""
    requester, error = _authenticate(
        certificate, authority_public_key, CertifiedAction.WITHDRAW,
    )
    if error is not None:
        return error
    try:
        amount = await market.withdraw_proceeds(requester)
    except MarketplaceError as e:
        return _failure(e)
    return {
        "success": True,
        "amount": amount,
        "message": f"Withdrew {amount:,} in proceeds.",
    }


async def get_listing_tool(
    market: Marketplace, collection: str, item_id: int,
) -> dict[str, Any]:
    """Read-only: the active listing for an item, if any."""
    listing = await market.get_listing(collection, item_id)
    return {
        "success": True,
        "listed": listing is not None,
        "listing": _listing_dict(collection, item_id, listing) if listing else None,
    }


async def get_proceeds_tool(market: Marketplace, seller: str) -> dict[str, Any]:
    """Read-only: a seller's un-withdrawn proceeds."""
    return {"success": True, "seller": seller, "proceeds": await market.get_proceeds(seller)}


async def _reachable(client: ServiceClient | None) -> bool | None:
    if client is None:
        return None
    try:
        await client.health_check()
    except Exception:
        return False
    return True


async def marketplace_status_tool(
    config: MarketplaceConfig,
    market: Marketplace,
    registry: ServiceClient | None = None,
    payouts: ServiceClient | None = None,
) -> dict[str, Any]:
    """Report configuration, collaborator reachability and ledger health.

    Admin/operator tool. Pass the HTTP adapters to have their ``/health``
    endpoints checked; ``None`` reachability means not checked.
    """
    result: dict[str, Any] = {
        "operator_id": config.operator_id,
        "registry_host": config.registry_host or None,
        "registry_api_key_status": "present" if config.registry_api_key else "missing",
        "payout_host": config.payout_host or None,
        "payout_api_key_status": "present" if config.payout_api_key else "missing",
        "snapshot_path": config.snapshot_path or None,
    }

    versions: dict[str, str] = {"python": platform.python_version()}
    for pkg in ("bazaar-ledger", "httpx"):
        try:
            versions[pkg.replace("-", "_")] = importlib.metadata.version(pkg)
        except importlib.metadata.PackageNotFoundError:
            versions[pkg.replace("-", "_")] = "unknown"
    result["versions"] = versions

    authority_config: dict[str, Any] = {
        "public_key_configured": bool(config.authority_public_key),
        "certificate_verification_enabled": False,
    }
    if config.authority_public_key:
        try:
            key = load_authority_key(config.authority_public_key)
        except CertificateError as e:
            authority_config["public_key_valid"] = False
            authority_config["public_key_error"] = str(e)
        else:
            authority_config["public_key_fingerprint"] = authority_fingerprint(key)
            authority_config["public_key_valid"] = True
            authority_config["certificate_verification_enabled"] = True
    result["authority_config"] = authority_config

    result["registry_reachable"] = await _reachable(registry)
    result["payout_reachable"] = await _reachable(payouts)

    result["ledger"] = market.stats()
    checkpointer = market.checkpointer
    result["persistence"] = checkpointer.health() if checkpointer is not None else None
    return result
