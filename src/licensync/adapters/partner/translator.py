"""Translate partner license payloads into external license records."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Final

from licensync.domain.model import ExternalLicenseRecord

from .schema import PartnerLicensePayload

if TYPE_CHECKING:
    from .schema import PartnerLicenseInput

log = getLogger(__name__)

KNOWN_LICENSE_TYPES: Final[frozenset[str]] = frozenset(
    {"product", "service", "trial", "enterprise", "demo"}
)


def _ensure_payload(payload: PartnerLicenseInput) -> PartnerLicensePayload:
    if isinstance(payload, PartnerLicensePayload):
        return payload
    return PartnerLicensePayload.model_validate(payload)


def to_external_record(payload: PartnerLicenseInput) -> ExternalLicenseRecord:
    license_payload = _ensure_payload(payload)
    if license_payload.license_type and license_payload.license_type not in KNOWN_LICENSE_TYPES:
        log.warning(
            "Partner license %s has unknown license type %r",
            license_payload.appid or license_payload.countid,
            license_payload.license_type,
        )
    return ExternalLicenseRecord(
        appid=license_payload.appid,
        countid=license_payload.countid,
        email_license=license_payload.email_license,
        dba=license_payload.dba,
        zip=license_payload.zip,
        mid=license_payload.mid,
        license_type=license_payload.license_type,
        status=license_payload.status,
        activate_date=license_payload.activate_date,
        coming_expired=license_payload.coming_expired,
        monthly_fee=license_payload.monthly_fee,
        sms_balance=license_payload.sms_balance,
        sms_purchased=license_payload.sms_purchased,
        package=license_payload.package,
        note=license_payload.note,
        sendbat_workspace=license_payload.sendbat_workspace,
        last_active=license_payload.last_active,
    )
