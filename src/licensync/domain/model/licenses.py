"""License records on both sides of the reconciliation.

``ExternalLicenseRecord`` mirrors one row of the partner system's license table;
``InternalLicenseRecord`` is the license owned by this application. The two
shapes only partially overlap: ``appid`` is the partner's canonical key,
``countid`` a legacy key that may be reused across records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Final

from .enums import LicenseStatus, SyncStatus

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

APPID_MAX_LENGTH: Final[int] = 255
DEFAULT_PRODUCT: Final[str] = "ABC Business Suite"
DEFAULT_PLAN: Final[str] = "Basic"
DEFAULT_TERM: Final[str] = "monthly"

_ACTIVE_STATUS_TOKENS: Final[frozenset[str]] = frozenset({"active", "1", "true", "yes"})


def normalize_appid(value: object) -> str | None:
    """Strip and truncate an appid; blank values become ``None``."""

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text[:APPID_MAX_LENGTH]


def appid_key(value: object) -> str | None:
    """Case-insensitive lookup key for an appid."""

    normalized = normalize_appid(value)
    return normalized.lower() if normalized is not None else None


def normalize_external_status(value: object) -> LicenseStatus | None:
    """Collapse the partner's numeric (1/0) or textual status into a license status.

    Anything that is not recognisably active is treated as cancelled; ``None``
    means the partner did not report a status at all.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        return LicenseStatus.ACTIVE if value else LicenseStatus.CANCEL
    if isinstance(value, int | Decimal | float):
        return LicenseStatus.ACTIVE if value == 1 else LicenseStatus.CANCEL
    text = str(value).strip().lower()
    if not text:
        return None
    return LicenseStatus.ACTIVE if text in _ACTIVE_STATUS_TOKENS else LicenseStatus.CANCEL


@dataclass(slots=True, kw_only=True)
class ExternalLicenseRecord:
    """License as mirrored from the partner system."""

    appid: str | None = None
    countid: int | None = None
    email_license: str | None = None
    dba: str | None = None
    zip: str | None = None
    mid: str | None = None
    license_type: str | None = None
    status: int | str | None = None
    activate_date: datetime | None = None
    coming_expired: datetime | None = None
    monthly_fee: Decimal | None = None
    sms_balance: Decimal | None = None
    sms_purchased: int | None = None
    package: object | None = None
    note: str | None = None
    sendbat_workspace: str | None = None
    last_active: datetime | None = None

    id: UUID | None = None
    last_synced_at: datetime | None = None
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_error: str | None = None

    def __post_init__(self) -> None:
        self.appid = normalize_appid(self.appid)

    @property
    def appid_key(self) -> str | None:
        return appid_key(self.appid)

    @property
    def normalized_status(self) -> LicenseStatus | None:
        return normalize_external_status(self.status)

    @property
    def has_identifier(self) -> bool:
        return self.appid is not None or self.countid is not None

    def describe(self) -> str:
        """Short identifier used in logs and error reports."""

        if self.appid is not None:
            return f"appid={self.appid}"
        if self.countid is not None:
            return f"countid={self.countid}"
        return f"id={self.id}"


@dataclass(slots=True, kw_only=True)
class InternalLicenseRecord:
    """License owned by this application."""

    key: str
    id: UUID | None = None
    product: str = DEFAULT_PRODUCT
    dba: str | None = None
    zip: str | None = None
    starts_at: datetime | None = None
    status: LicenseStatus = LicenseStatus.PENDING
    plan: str = DEFAULT_PLAN
    term: str = DEFAULT_TERM
    cancel_date: datetime | None = None
    last_payment: Decimal | None = None
    last_active: datetime | None = None
    sms_purchased: int | None = None
    sms_sent: int | None = None
    sms_balance: Decimal | None = None
    seats_total: int = 1
    seats_used: int = 0
    agents: int = 0
    agents_name: list[str] = field(default_factory=list[str])
    agents_cost: Decimal = Decimal(0)
    notes: str | None = None

    appid: str | None = None
    countid: int | None = None
    external_email: str | None = None
    mid: str | None = None
    license_type: str | None = None
    package_data: object | None = None
    sendbat_workspace: str | None = None
    coming_expired: datetime | None = None
    external_sync_status: SyncStatus | None = None
    last_external_sync: datetime | None = None

    @property
    def appid_key(self) -> str | None:
        return appid_key(self.appid)


type InternalPatch = dict[str, object]
