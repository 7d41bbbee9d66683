"""Concrete LedgerVault implementations."""

from bazaar.vaults.local import JSONFileVault

__all__ = ["JSONFileVault"]
