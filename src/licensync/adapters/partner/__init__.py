"""Public interface for the partner license adapter."""

from __future__ import annotations

from .client import PartnerApiError, PartnerLicenseClient
from .schema import PartnerLicenseInput, PartnerLicensePage, PartnerLicensePayload
from .translator import to_external_record

__all__ = [
    "PartnerApiError",
    "PartnerLicenseClient",
    "PartnerLicenseInput",
    "PartnerLicensePage",
    "PartnerLicensePayload",
    "to_external_record",
]
