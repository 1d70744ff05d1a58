"""
Page Fetcher

Issues exactly one bounded request against a record source and turns the
result into a ``Page``. Each call is raced against a client-side timer; a call
that loses the race is abandoned, not interrupted.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional, Union

import requests
from pydantic import ValidationError

from constants.schemas import SORT_ORDER, InventoryFilters, InventoryRecord, Page, PageRequest
from utils.record_sources import RecordSource
from utils.sync_config import SyncConfig
from utils.sync_errors import CountProbeFailure, FetchFailed, SourceError, TransientFetchError

logger = logging.getLogger(__name__)

# Calls that time out keep their worker until the transport gives up, so
# keep a few spare workers for the next request.
RACE_WORKERS = 4

FiltersLike = Union[InventoryFilters, Dict[str, Any], None]


def normalize_filters(filters: FiltersLike) -> Dict[str, Any]:
    """Reduce any accepted filter form to the active equality predicates"""
    if filters is None:
        return {}
    if isinstance(filters, dict):
        filters = InventoryFilters(**filters)
    return filters.active()


class PageFetcher:
    def __init__(self, source: RecordSource, config: Optional[SyncConfig] = None):
        self.source = source
        self.config = config or SyncConfig()
        self._executor = ThreadPoolExecutor(max_workers=RACE_WORKERS, thread_name_prefix="page-fetch")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def __enter__(self) -> "PageFetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _race(self, call: Callable[[], Any], timeout: float) -> Any:
        future = self._executor.submit(call)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            raise

    def fetch_page(self, offset: int, limit: Optional[int] = None, filters: FiltersLike = None) -> Page:
        """
        Fetch one page of inventory records.

        Args:
            offset: Index of the first row to return (>= 0)
            limit: Requested page size, clamped to the configured ceiling
            filters: Equality filters; "all" and empty values are skipped

        Returns:
            Page: Records in (state, district, department_type) order

        Raises:
            TransientFetchError: Timeout, network failure or server error
            FetchFailed: Any other failure, including malformed rows
        """
        if offset < 0:
            raise ValueError(f"offset must be >= 0, got {offset}")

        if limit is None:
            limit = self.config.page_size
        if limit <= 0:
            raise ValueError(f"limit must be > 0, got {limit}")
        if limit > self.config.max_page_size:
            logger.warning(f"Requested page size {limit} exceeds the ceiling, using {self.config.max_page_size}")
            limit = self.config.max_page_size

        request = PageRequest(offset=offset, limit=limit, filters=normalize_filters(filters), order=list(SORT_ORDER))
        timeout = self.config.request_timeout

        start_time = time.monotonic()
        try:
            rows, total_count = self._race(lambda: self.source.fetch_rows(request, timeout), timeout)
        except FutureTimeout:
            raise TransientFetchError(offset, f"request timed out after {timeout:g} seconds")
        except requests.RequestException as e:
            raise TransientFetchError(offset, str(e)) from e
        except SourceError as e:
            if e.retryable:
                raise TransientFetchError(offset, str(e)) from e
            raise FetchFailed(offset, str(e)) from e
        except Exception as e:
            raise FetchFailed(offset, f"{type(e).__name__}: {e}") from e

        if not isinstance(rows, list):
            raise FetchFailed(offset, f"malformed page: expected a list of rows, got {type(rows).__name__}")

        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.debug(f"Rows {request.offset}-{request.range_end}: {len(rows)} received in {elapsed_ms:.0f}ms")

        records = self._to_records(offset, rows)
        if len(records) > limit:
            logger.warning(f"Source returned {len(records)} rows for a page of {limit}, truncating")
            records = records[:limit]

        try:
            return Page(
                offset=offset,
                limit=limit,
                records=records,
                has_more=len(records) == limit,
                total_count=self._total_hint(total_count) if offset == 0 else None,
            )
        except ValidationError as e:
            raise FetchFailed(offset, f"malformed page: {e.errors()[0]['msg']}") from e

    @staticmethod
    def _to_records(offset: int, rows: List[Any]) -> List[InventoryRecord]:
        try:
            return [InventoryRecord.model_validate(row) for row in rows]
        except ValidationError as e:
            raise FetchFailed(offset, f"malformed inventory row: {e.errors()[0]['msg']}") from e

    @staticmethod
    def _total_hint(total_count: Any) -> Optional[int]:
        """A usable total-count hint, or None. A bad hint never fails the page."""
        if total_count is None:
            return None
        if isinstance(total_count, int) and not isinstance(total_count, bool) and total_count >= 0:
            return total_count
        if isinstance(total_count, str) and total_count.strip().isdigit():
            return int(total_count)
        logger.warning(f"Ignoring invalid total count hint: {total_count!r}")
        return None

    def count(self, filters: FiltersLike = None) -> int:
        """
        Count-only probe used to size a run. Best-effort.

        Raises:
            CountProbeFailure: The count could not be obtained in time
        """
        active = normalize_filters(filters)
        timeout = self.config.count_timeout
        try:
            total = self._race(lambda: self.source.count_rows(active, timeout), timeout)
        except FutureTimeout:
            raise CountProbeFailure(f"count request timed out after {timeout:g} seconds")
        except Exception as e:
            raise CountProbeFailure(str(e)) from e

        if total is None or int(total) < 0:
            raise CountProbeFailure(f"invalid row count: {total!r}")
        return int(total)
