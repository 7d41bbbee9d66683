"""Marketplace configuration as a plain frozen dataclass.

The host application constructs this from its own settings (env vars,
pydantic-settings, etc.) and passes it to ``Marketplace.from_config``.
"""

from dataclasses import dataclass

from bazaar.constants import DEFAULT_FLUSH_INTERVAL_SECS


@dataclass(frozen=True)
class MarketplaceConfig:
    operator_id: str
    registry_host: str | None = None
    registry_api_key: str | None = None
    payout_host: str | None = None
    payout_api_key: str | None = None
    authority_public_key: str | None = None
    snapshot_path: str | None = None
    flush_interval_secs: int = DEFAULT_FLUSH_INTERVAL_SECS
    flush_retries: int = 1
    flush_retry_delay: float = 2.0
