"""In-memory index of external licenses keyed by appid and countid."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from licensync.domain.model import appid_key

from .pagination import PageStream

if TYPE_CHECKING:
    from collections.abc import Iterable

    from licensync.domain.model import ExternalLicenseRecord
    from licensync.domain.ports import ExternalLicenseStore

log = getLogger(__name__)


@dataclass(slots=True)
class LookupIndex:
    """Maps from normalized appid and countid to the external record last seen with it."""

    by_appid: dict[str, ExternalLicenseRecord] = field(
        default_factory=dict[str, "ExternalLicenseRecord"]
    )
    by_countid: dict[int, ExternalLicenseRecord] = field(
        default_factory=dict[int, "ExternalLicenseRecord"]
    )
    records_seen: int = 0
    ambiguous_countids: int = 0
    truncated: bool = False

    def add(self, record: ExternalLicenseRecord) -> None:
        self.records_seen += 1
        key = record.appid_key
        if key is not None:
            self.by_appid[key] = record
        if record.countid is not None:
            if record.countid in self.by_countid:
                self.ambiguous_countids += 1
            self.by_countid[record.countid] = record

    def extend(self, records: Iterable[ExternalLicenseRecord]) -> None:
        for record in records:
            self.add(record)

    def find_by_appid(self, appid: str | None) -> ExternalLicenseRecord | None:
        key = appid_key(appid)
        if key is None:
            return None
        return self.by_appid.get(key)

    def find_by_countid(self, countid: int | None) -> ExternalLicenseRecord | None:
        if countid is None:
            return None
        return self.by_countid.get(countid)


def build_lookup_index(
    store: ExternalLicenseStore,
    *,
    chunk_size: int,
    max_pages: int,
) -> LookupIndex:
    """Read the whole external store page by page into a ``LookupIndex``.

    When the read stops early the partial index is returned with ``truncated``
    set; a failure on the first page propagates.
    """

    index = LookupIndex()
    stream = PageStream(
        store.page, page_size=chunk_size, max_pages=max_pages, label="External lookup index"
    )
    for records in stream:
        index.extend(records)
    index.truncated = stream.truncated

    if index.ambiguous_countids:
        log.warning(
            "%s external records share a countid with an earlier record; the last one wins",
            index.ambiguous_countids,
        )
    log.info(
        "Built external lookup index: %s by appid, %s by countid from %s records",
        len(index.by_appid),
        len(index.by_countid),
        index.records_seen,
    )
    return index
