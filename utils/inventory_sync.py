"""
Owner of the in-memory inventory buffer.

``reload_all`` runs a fresh sync and swaps the buffer in one step, so readers
see either the previous complete buffer or the new one, never a partial run.
"""

import logging
import threading
from typing import Callable, List, Optional, Tuple

from constants.schemas import FacetSet, InventoryRecord
from utils.facets import FacetProvider
from utils.inventory_view import ViewPage, filter_records, paginate
from utils.page_driver import ResilientPageDriver, SyncResult
from utils.page_fetcher import FiltersLike, PageFetcher
from utils.progress import ProgressChannel, ProgressListener
from utils.record_sources import RecordSource
from utils.sync_config import SyncConfig

logger = logging.getLogger(__name__)


class InventoryStore:
    def __init__(
        self,
        source: RecordSource,
        config: Optional[SyncConfig] = None,
        facet_provider: Optional[FacetProvider] = None,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        self.source = source
        self.config = config or SyncConfig()
        self.facet_provider = facet_provider or FacetProvider(source, self.config)
        self._sleep = sleep
        self._lock = threading.Lock()
        self._buffer: Tuple[InventoryRecord, ...] = ()
        self._last_result: Optional[SyncResult] = None
        self._active_driver: Optional[ResilientPageDriver] = None

    @property
    def records(self) -> Tuple[InventoryRecord, ...]:
        return self._buffer

    @property
    def last_result(self) -> Optional[SyncResult]:
        return self._last_result

    def reload_all(
        self,
        filters: FiltersLike = None,
        on_progress: Optional[ProgressListener] = None,
        probe_count: bool = True,
    ) -> SyncResult:
        """
        Load every record matching ``filters`` and replace the buffer.

        An aborted run leaves the previous buffer in place; its result is still
        returned so the caller can report it.
        """
        channel = ProgressChannel()
        unsubscribe = channel.subscribe(on_progress) if on_progress else None

        fetcher = PageFetcher(self.source, self.config)
        driver = ResilientPageDriver(fetcher, self.config, channel=channel, sleep=self._sleep)
        self._active_driver = driver
        try:
            result = driver.run(filters, probe_count=probe_count)
        finally:
            self._active_driver = None
            if unsubscribe:
                unsubscribe()
            fetcher.close()

        with self._lock:
            self._last_result = result
            if result.aborted:
                logger.warning(f"Keeping the previous {len(self._buffer)} records after an aborted reload")
            else:
                self._buffer = tuple(result.records)
        return result

    def cancel(self) -> None:
        driver = self._active_driver
        if driver is not None:
            driver.cancel()

    def facets(self, state: Optional[str] = None, district: Optional[str] = None) -> FacetSet:
        return self.facet_provider.facet_set(list(self._buffer), state=state, district=district)

    def filtered(
        self,
        state: Optional[str] = None,
        district: Optional[str] = None,
        department_type: Optional[str] = None,
    ) -> List[InventoryRecord]:
        return filter_records(list(self._buffer), state, district, department_type)

    def view(
        self,
        state: Optional[str] = None,
        district: Optional[str] = None,
        department_type: Optional[str] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> ViewPage:
        return paginate(self.filtered(state, district, department_type), page, per_page)
