"""Translate external license data into internal writes."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Final

from licensync.domain.model import (
    DEFAULT_PLAN,
    DEFAULT_PRODUCT,
    DEFAULT_TERM,
    InternalLicenseRecord,
    LicenseStatus,
    SyncStatus,
)

from .gaps import is_present

if TYPE_CHECKING:
    from datetime import datetime

    from licensync.domain.model import ExternalLicenseRecord, InternalPatch

FALLBACK_DBA: Final[str] = "External License"

# (external field, internal field) copied verbatim when present on the external record
_COPIED_FIELDS: Final[tuple[tuple[str, str], ...]] = (
    ("dba", "dba"),
    ("zip", "zip"),
    ("monthly_fee", "last_payment"),
    ("last_active", "last_active"),
    ("note", "notes"),
    ("appid", "appid"),
    ("countid", "countid"),
    ("activate_date", "starts_at"),
    ("sms_balance", "sms_balance"),
    ("sms_purchased", "sms_purchased"),
    ("mid", "mid"),
    ("license_type", "license_type"),
    ("package", "package_data"),
    ("sendbat_workspace", "sendbat_workspace"),
    ("coming_expired", "coming_expired"),
    ("email_license", "external_email"),
)

SYNC_BOOKKEEPING_FIELDS: Final[frozenset[str]] = frozenset(
    {"external_sync_status", "last_external_sync"}
)


def build_update_patch(external: ExternalLicenseRecord, *, now: datetime) -> InternalPatch:
    """Selective patch: only fields the external record actually carries.

    Internally-authored fields (plan, term, seats, agents and so on) never appear
    in the patch. A cancelled status also stamps ``cancel_date`` from the last
    activity, or ``now`` when there is none.
    """

    patch: InternalPatch = {}
    for external_field, internal_field in _COPIED_FIELDS:
        value = getattr(external, external_field)
        if is_present(value):
            patch[internal_field] = value

    status = external.normalized_status
    if status is not None:
        patch["status"] = status
        if status is LicenseStatus.CANCEL:
            patch["cancel_date"] = external.last_active or now

    patch["external_sync_status"] = SyncStatus.SYNCED
    patch["last_external_sync"] = now
    return patch


def present_fields(external: ExternalLicenseRecord) -> tuple[str, ...]:
    """Internal names of every field the external record would write."""

    names = [
        internal_field
        for external_field, internal_field in _COPIED_FIELDS
        if is_present(getattr(external, external_field))
    ]
    if external.normalized_status is not None:
        names.append("status")
    return tuple(names)


def updated_field_names(patch: InternalPatch) -> list[str]:
    return [name for name in patch if name not in SYNC_BOOKKEEPING_FIELDS]


def _amount_or_zero(value: Decimal | None) -> Decimal:
    return value if value is not None else Decimal(0)


def _present_or[T](value: T | None, fallback: T) -> T:
    return value if is_present(value) and value is not None else fallback


def build_internal_record(
    external: ExternalLicenseRecord, *, key: str, now: datetime
) -> InternalLicenseRecord:
    """Full internal record for an external license with no internal counterpart."""

    status = external.normalized_status or LicenseStatus.PENDING
    return InternalLicenseRecord(
        key=key,
        product=DEFAULT_PRODUCT,
        dba=_present_or(external.dba, _present_or(external.email_license, FALLBACK_DBA)),
        zip=external.zip if is_present(external.zip) else None,
        starts_at=external.activate_date or now,
        status=status,
        plan=DEFAULT_PLAN,
        term=DEFAULT_TERM,
        cancel_date=(external.last_active or now) if status is LicenseStatus.CANCEL else None,
        last_payment=_amount_or_zero(external.monthly_fee),
        last_active=external.last_active or now,
        sms_purchased=external.sms_purchased if external.sms_purchased is not None else 0,
        sms_sent=0,
        sms_balance=_amount_or_zero(external.sms_balance),
        seats_total=1,
        seats_used=0,
        notes=external.note if is_present(external.note) else None,
        appid=external.appid,
        countid=external.countid,
        external_email=external.email_license if is_present(external.email_license) else None,
        mid=external.mid if is_present(external.mid) else None,
        license_type=external.license_type if is_present(external.license_type) else None,
        package_data=external.package,
        sendbat_workspace=(
            external.sendbat_workspace if is_present(external.sendbat_workspace) else None
        ),
        coming_expired=external.coming_expired,
        external_sync_status=SyncStatus.SYNCED,
        last_external_sync=now,
    )
