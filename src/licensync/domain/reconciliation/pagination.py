"""Bounded page iteration over a paginated store."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from .errors import PlannerSafetyLimitReached, TransientStoreError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence

    from licensync.domain.ports import Page

log = getLogger(__name__)


type PageFetcher[TRecord] = Callable[[int, int], Page[TRecord]]


def iterate_pages[TRecord](
    fetch: PageFetcher[TRecord],
    *,
    page_size: int,
    max_pages: int,
) -> Iterator[Sequence[TRecord]]:
    """Yield non-empty pages (1-based) until the store returns an empty one.

    Short pages do not end the walk, as stores may cap ``page_size``. It stops
    early once the records read reach the store's reported ``total``.
    Raises ``PlannerSafetyLimitReached`` when ``max_pages`` pages were yielded and
    the store still has not signalled the end. Pages already yielded stay valid.
    """

    if page_size < 1:
        raise ValueError(f"page_size must be positive (got {page_size})")
    if max_pages < 1:
        raise ValueError(f"max_pages must be positive (got {max_pages})")

    page_number = 1
    records_read = 0
    while True:
        if page_number > max_pages:
            raise PlannerSafetyLimitReached(pages_read=page_number - 1, max_pages=max_pages)
        page = fetch(page_number, page_size)
        if not page.records:
            return
        log.debug(
            "Fetched page %s (%s records, total %s)", page_number, len(page.records), page.total
        )
        yield page.records
        records_read += len(page.records)
        if 0 < page.total <= records_read:
            return
        page_number += 1


class PageStream[TRecord]:
    """Iterable over a store's pages that degrades to a partial read.

    Hitting the page ceiling, or a transient failure after the first page, ends
    the stream early with ``truncated`` set. A failure on the very first page
    propagates: there is nothing partial to report.
    """

    def __init__(
        self,
        fetch: PageFetcher[TRecord],
        *,
        page_size: int,
        max_pages: int,
        label: str,
    ) -> None:
        self._fetch = fetch
        self._page_size = page_size
        self._max_pages = max_pages
        self.label = label
        self.pages_read = 0
        self.records_read = 0
        self.truncated = False

    def __iter__(self) -> Iterator[Sequence[TRecord]]:
        pages = iterate_pages(self._fetch, page_size=self._page_size, max_pages=self._max_pages)
        try:
            for records in pages:
                self.pages_read += 1
                self.records_read += len(records)
                yield records
        except PlannerSafetyLimitReached as exc:
            log.warning("%s: %s; continuing with partial results", self.label, exc)
            self.truncated = True
        except TransientStoreError as exc:
            if self.pages_read == 0:
                raise
            log.error(  # noqa: TRY400
                "%s: reading page %s failed (%s); continuing with partial results",
                self.label,
                self.pages_read + 1,
                exc,
            )
            self.truncated = True
