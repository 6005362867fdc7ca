"""Field-level gap analysis between an internal license and its external match.

The rules live in one table (``FIELD_RULES``). Each rule pairs an internal
field with the external field it is fed from, a comparator, the kinds of gap
it reports, and optionally a normaliser applied to the external value before
anything is compared:

* ``missing``: the internal value is falsy while the external one is present;
* ``stale``: both values are present and differ.

A field is reported at most once, under its internal name, in table order. The
comparators are the same ones the selective merge must satisfy, so after a
successful update a second analysis of the pair finds nothing to do.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Flag, auto
from typing import TYPE_CHECKING, Final

from licensync.domain.model import MatchStrategy, normalize_external_status

if TYPE_CHECKING:
    from collections.abc import Callable

    from licensync.domain.model import ExternalLicenseRecord, InternalLicenseRecord

    from .lookup import LookupIndex


type Comparator = Callable[[object, object], bool]
type Normalizer = Callable[[object], object]

_CENTS: Final[Decimal] = Decimal("0.01")


class GapKind(Flag):
    MISSING = auto()
    STALE = auto()
    BOTH = MISSING | STALE


def is_present(value: object) -> bool:
    """External values count as present unless they are ``None`` or blank text."""

    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _same_text(internal: object, external: object) -> bool:
    return str(internal).strip() == str(external).strip()


def _as_cents(value: object) -> Decimal | None:
    try:
        return Decimal(str(value)).quantize(_CENTS)
    except (InvalidOperation, ValueError):
        return None


def _same_amount(internal: object, external: object) -> bool:
    left, right = _as_cents(internal), _as_cents(external)
    if left is None or right is None:
        return _same_text(internal, external)
    return left == right


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _same_instant(internal: object, external: object) -> bool:
    if isinstance(internal, datetime) and isinstance(external, datetime):
        return _as_utc(internal) == _as_utc(external)
    return _same_text(internal, external)


def canonical_json(value: object) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _same_document(internal: object, external: object) -> bool:
    return canonical_json(internal) == canonical_json(external)


def _same_count(internal: object, external: object) -> bool:
    try:
        return int(str(internal)) == int(str(external))
    except ValueError:
        return _same_text(internal, external)


def _same_status(internal: object, external: object) -> bool:
    return str(internal) == str(external)


@dataclass(frozen=True, slots=True)
class FieldRule:
    internal_field: str
    external_field: str
    compare: Comparator
    kinds: GapKind
    normalize_external: Normalizer | None = None

    def detect(self, internal: InternalLicenseRecord, external: ExternalLicenseRecord) -> bool:
        external_value = getattr(external, self.external_field)
        if self.normalize_external is not None:
            external_value = self.normalize_external(external_value)
        if not is_present(external_value):
            return False

        internal_value = getattr(internal, self.internal_field)
        if not internal_value and GapKind.MISSING in self.kinds:
            return internal_value is None or not self.compare(internal_value, external_value)
        if internal_value is not None and GapKind.STALE in self.kinds:
            return not self.compare(internal_value, external_value)
        return False


FIELD_RULES: Final[tuple[FieldRule, ...]] = (
    FieldRule("dba", "dba", _same_text, GapKind.MISSING),
    FieldRule("zip", "zip", _same_text, GapKind.MISSING),
    FieldRule("last_payment", "monthly_fee", _same_amount, GapKind.BOTH),
    FieldRule("last_active", "last_active", _same_instant, GapKind.MISSING),
    FieldRule("sms_balance", "sms_balance", _same_amount, GapKind.BOTH),
    FieldRule("sms_purchased", "sms_purchased", _same_count, GapKind.MISSING),
    FieldRule("starts_at", "activate_date", _same_instant, GapKind.MISSING),
    FieldRule("notes", "note", _same_text, GapKind.MISSING),
    FieldRule("status", "status", _same_status, GapKind.STALE, normalize_external_status),
    FieldRule("mid", "mid", _same_text, GapKind.BOTH),
    FieldRule("license_type", "license_type", _same_text, GapKind.BOTH),
    FieldRule("package_data", "package", _same_document, GapKind.BOTH),
    FieldRule("sendbat_workspace", "sendbat_workspace", _same_text, GapKind.BOTH),
    FieldRule("coming_expired", "coming_expired", _same_instant, GapKind.BOTH),
)


@dataclass(frozen=True, slots=True)
class GapAnalysis:
    needs_sync: bool
    external: ExternalLicenseRecord | None = None
    missing_fields: tuple[str, ...] = ()
    matched_by: MatchStrategy | None = None


NO_MATCH: Final[GapAnalysis] = GapAnalysis(needs_sync=False)


def find_external_match(
    internal: InternalLicenseRecord, index: LookupIndex
) -> tuple[ExternalLicenseRecord, MatchStrategy] | None:
    """Resolve the external counterpart of ``internal``; appid wins over countid."""

    by_appid = index.find_by_appid(internal.appid)
    if by_appid is not None:
        return by_appid, MatchStrategy.APPID
    by_countid = index.find_by_countid(internal.countid)
    if by_countid is not None:
        return by_countid, MatchStrategy.COUNTID
    return None


def missing_fields(
    internal: InternalLicenseRecord,
    external: ExternalLicenseRecord,
    rules: tuple[FieldRule, ...] = FIELD_RULES,
) -> tuple[str, ...]:
    return tuple(rule.internal_field for rule in rules if rule.detect(internal, external))


def analyze_gaps(internal: InternalLicenseRecord, index: LookupIndex) -> GapAnalysis:
    match = find_external_match(internal, index)
    if match is None:
        return NO_MATCH
    external, matched_by = match
    fields = missing_fields(internal, external)
    return GapAnalysis(
        needs_sync=bool(fields),
        external=external,
        missing_fields=fields,
        matched_by=matched_by,
    )
