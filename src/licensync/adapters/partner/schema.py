"""Pydantic models describing the partner license API payloads."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Annotated

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
)

_PARTNER_DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%Y %H:%M:%S", "%Y-%m-%d %H:%M:%S")


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _to_text(value: object) -> object:
    value = _blank_to_none(value)
    if isinstance(value, int | float) and not isinstance(value, bool):
        return str(value)
    return value


def parse_partner_datetime(value: object) -> datetime | None:
    """Parse ISO 8601 or the partner's ``MM/DD/YYYY`` dates; naive values are UTC."""

    value = _blank_to_none(value)
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        parsed = _parse_date_text(value)
    else:
        raise ValueError(f"Unsupported date value: {value!r}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _parse_date_text(text: str) -> datetime:
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _PARTNER_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)  # noqa: DTZ007
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date format: {text!r}")


Text = Annotated[str | None, BeforeValidator(_to_text)]
PartnerDateTime = Annotated[datetime | None, BeforeValidator(parse_partner_datetime)]


class PartnerBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class PartnerLicensePayload(PartnerBaseModel):
    appid: Text = None
    countid: int | None = None
    email_license: Text = Field(
        default=None, validation_alias=AliasChoices("Email_license", "email_license")
    )
    dba: Text = None
    zip: Text = None
    mid: Text = None
    license_type: Text = None
    status: int | str | None = None
    activate_date: PartnerDateTime = Field(
        default=None,
        validation_alias=AliasChoices("ActivateDate", "activateDate", "activate_date"),
    )
    coming_expired: PartnerDateTime = Field(
        default=None,
        validation_alias=AliasChoices("Coming_expired", "comingExpired", "coming_expired"),
    )
    monthly_fee: Decimal | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("monthlyFee", "monthly_fee")
    )
    sms_balance: Decimal | None = Field(
        default=None, validation_alias=AliasChoices("smsBalance", "sms_balance")
    )
    sms_purchased: int | None = Field(
        default=None, validation_alias=AliasChoices("smsPurchased", "sms_purchased")
    )
    package: object | None = Field(
        default=None, validation_alias=AliasChoices("Package", "package")
    )
    note: Text = Field(default=None, validation_alias=AliasChoices("Note", "note"))
    sendbat_workspace: Text = Field(
        default=None, validation_alias=AliasChoices("Sendbat_workspace", "sendbat_workspace")
    )
    last_active: PartnerDateTime = Field(
        default=None, validation_alias=AliasChoices("lastActive", "last_active")
    )

    _normalize_blank_numbers = field_validator(
        "countid", "monthly_fee", "sms_balance", "sms_purchased", "status", mode="before"
    )(_blank_to_none)


class PageMeta(PartnerBaseModel):
    page: int | None = None
    limit: int | None = None
    total: int | None = None
    total_pages: int | None = Field(default=None, alias="totalPages")


class PartnerLicensePage(PartnerBaseModel):
    data: list[PartnerLicensePayload]
    meta: PageMeta | None = None


class PartnerErrorResponse(PartnerBaseModel):
    success: bool = False
    message: str | None = None
    error: str | None = None


PartnerLicenseInput = PartnerLicensePayload | Mapping[str, object]
