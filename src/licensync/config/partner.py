"""Partner license API configuration values."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .env import env_int, require_env_vars
from .http_resilience import ResilienceConfig

PARTNER_DEFAULT_BASE_URL = "http://localhost:2341"
PARTNER_DEFAULT_TIMEOUT_MS = 30_000
PARTNER_USER_AGENT = "licensync/1.0"


@dataclass(frozen=True)
class PartnerApiConfig:
    """Holds partner license API configuration values."""

    api_key: str
    resilience: ResilienceConfig
    page_size: int = 100


def get_partner_config(*, resilience: ResilienceConfig | None = None) -> PartnerApiConfig:
    values = require_env_vars(("EXTERNAL_LICENSE_API_KEY",))
    base_url = os.getenv("EXTERNAL_LICENSE_API_URL") or PARTNER_DEFAULT_BASE_URL
    timeout_ms = env_int("EXTERNAL_LICENSE_API_TIMEOUT_MS", PARTNER_DEFAULT_TIMEOUT_MS)
    return PartnerApiConfig(
        api_key=values["EXTERNAL_LICENSE_API_KEY"],
        resilience=resilience
        or ResilienceConfig(
            name="partner",
            base_url=base_url.rstrip("/"),
            timeout_seconds=timeout_ms / 1000,
            default_headers={"User-Agent": PARTNER_USER_AGENT},
        ),
        page_size=env_int("EXTERNAL_LICENSE_API_PAGE_SIZE", 100),
    )
