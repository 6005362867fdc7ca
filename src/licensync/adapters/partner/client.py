"""HTTP client for the partner license API."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from licensync.adapters.http_resilience import ResilientClient
from licensync.config import PartnerApiConfig, get_partner_config

from .schema import PartnerErrorResponse, PartnerLicensePage, PartnerLicensePayload
from .translator import to_external_record

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from licensync.config import ResilienceConfig
    from licensync.domain.model import ExternalLicenseRecord

log = getLogger(__name__)

LICENSES_PATH = "/api/v1/licenses"
DEFAULT_MAX_PAGES = 1000


class PartnerApiError(RuntimeError):
    """Raised when the partner API answers with an error or an unreadable payload."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


@dataclass(slots=True)
class PartnerLicenseClient:
    """Reads licenses from the partner API.

    Calling an instance with an appid fetches that single license, which makes
    the client usable wherever an ``ExternalLicenseSource`` is expected.
    """

    config: PartnerApiConfig = field(default_factory=get_partner_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )

    def __call__(self, appid: str) -> ExternalLicenseRecord | None:
        return self.fetch_license(appid)

    def fetch_license(self, appid: str) -> ExternalLicenseRecord | None:
        if not appid.strip():
            raise ValueError("appid is required")
        with self.client_factory(self.config.resilience) as client:
            response = client.get(
                f"{LICENSES_PATH}/{quote(appid.strip(), safe='')}", headers=self._headers()
            )
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        payload = self._json(response)
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        try:
            return to_external_record(PartnerLicensePayload.model_validate(payload))
        except ValidationError as exc:
            raise PartnerApiError(f"Invalid license payload for appid {appid}: {exc}") from exc

    def iter_license_pages(
        self, *, max_pages: int = DEFAULT_MAX_PAGES
    ) -> Iterator[list[ExternalLicenseRecord]]:
        """Yield the partner's licenses one page at a time until an empty page."""

        page_size = self.config.page_size
        with self.client_factory(self.config.resilience) as client:
            for page_number in range(1, max_pages + 1):
                response = client.get(
                    LICENSES_PATH,
                    params={"page": page_number, "limit": page_size},
                    headers=self._headers(),
                )
                page = self._parse_page(self._json(response), page_number)
                if not page.data:
                    return
                log.debug("Fetched partner page %s (%s licenses)", page_number, len(page.data))
                yield [to_external_record(item) for item in page.data]
                if page.meta and page.meta.total_pages and page_number >= page.meta.total_pages:
                    return
        log.warning("Stopped reading partner licenses after %s pages", max_pages)

    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self.config.api_key, "Accept": "application/json"}

    @staticmethod
    def _json(response: httpx.Response) -> object:
        if response.is_error:
            message = response.reason_phrase
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                error = PartnerErrorResponse.model_validate(body)
                message = error.message or error.error or message
            log.error("Partner API error %s: %s", response.status_code, message)
            raise PartnerApiError(message, status_code=response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise PartnerApiError("Partner API returned a non-JSON body") from exc

    @staticmethod
    def _parse_page(payload: object, page_number: int) -> PartnerLicensePage:
        try:
            return PartnerLicensePage.model_validate(payload)
        except ValidationError as exc:
            raise PartnerApiError(f"Invalid partner license page {page_number}: {exc}") from exc


if TYPE_CHECKING:
    from licensync.domain.ports import ExternalLicenseSource

    _source_check: ExternalLicenseSource = PartnerLicenseClient()
