"""
Resilient Page Driver

Pulls an entire (optionally filtered) inventory dataset through the Page
Fetcher, one page at a time, in increasing offset order. Failed pages are
retried in place with exponential backoff; a page that keeps failing is
recorded and skipped. The run only gives up early when several pages in a row
fail before any page has succeeded.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional

from constants.schemas import InventoryRecord, RunStatus, SyncProgress
from utils.page_fetcher import FiltersLike, PageFetcher
from utils.progress import ProgressChannel
from utils.sync_config import SyncConfig
from utils.sync_errors import CountProbeFailure, FetchFailed, PermanentPageFailure, RunAborted
from utils.sync_state import (
    Backoff,
    Cancelled,
    EmitProgress,
    Event,
    FetchPage,
    PageFailed,
    PageLoaded,
    RecordFailure,
    RunState,
    Sized,
    initial_state,
    transition,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one run: a best-effort snapshot, not a guaranteed-complete one."""

    records: List[InventoryRecord]
    progress: SyncProgress
    failures: List[PermanentPageFailure] = field(default_factory=list)
    aborted: Optional[RunAborted] = None

    @property
    def status(self) -> RunStatus:
        return self.progress.status

    @property
    def is_complete(self) -> bool:
        return self.status == RunStatus.COMPLETE and not self.failures

    @property
    def failed_offsets(self) -> List[int]:
        return [failure.offset for failure in self.failures]

    def summary(self) -> str:
        """Human-readable one-liner for the console"""
        text = f"Loaded {len(self.records):,} of ~{self.progress.estimated_total:,} records"
        if self.failures:
            text += f"; {len(self.failures)} page{'s' if len(self.failures) != 1 else ''} failed"
        if self.aborted:
            text += f" (aborted: {self.aborted.reason})"
        return text

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise self.aborted


class ResilientPageDriver:
    def __init__(
        self,
        fetcher: PageFetcher,
        config: Optional[SyncConfig] = None,
        channel: Optional[ProgressChannel] = None,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        """
        Args:
            fetcher: Page Fetcher bound to a record source
            config: Retry, backoff and abort policy (defaults to the fetcher's config)
            channel: Where progress snapshots are published
            sleep: Backoff sleep; defaults to a wait that ``cancel()`` interrupts
        """
        self.fetcher = fetcher
        self.config = config or fetcher.config
        self.channel = channel or ProgressChannel()
        self._cancelled = threading.Event()
        self._sleep = sleep or self._cancelled.wait

    def cancel(self) -> None:
        """Stop the run at the next page boundary (or the current backoff)"""
        self._cancelled.set()

    def _estimate(self, filters: FiltersLike, probe_count: bool) -> Sized:
        fallback = Sized(self.config.fallback_estimate, is_fallback=True)
        if not probe_count:
            return fallback
        try:
            estimate = self.fetcher.count(filters)
            logger.info(f"Total estimated rows: {estimate}")
            return Sized(estimate)
        except CountProbeFailure as e:
            logger.warning(f"Count probe failed ({e}), using fallback estimate of {self.config.fallback_estimate}")
            return fallback

    def run(self, filters: FiltersLike = None, probe_count: bool = True) -> SyncResult:
        """
        Synchronize the whole dataset matching ``filters``.

        Returns:
            SyncResult: Accumulated records, final progress and failure tally.
            Page errors never escape this method.
        """
        self._cancelled.clear()
        config = self.config
        records: List[InventoryRecord] = []
        seen_ids = set()
        failures: List[PermanentPageFailure] = []

        state: RunState = initial_state(config)
        logger.info(f"🚀 Starting inventory sync (page size {config.page_size})")
        state, effects = transition(state, self._estimate(filters, probe_count), config)
        logger.info(f"Will fetch data in ~{state.total_pages} pages of {config.page_size} records each")

        pending: Deque = deque(effects)
        while pending:
            effect = pending.popleft()

            if isinstance(effect, EmitProgress):
                self.channel.publish(effect.progress)

            elif isinstance(effect, Backoff):
                logger.info(f"Retrying offset {state.offset} after {effect.delay:g}s (attempt {effect.attempt + 1})")
                self._sleep(effect.delay)

            elif isinstance(effect, RecordFailure):
                failure = PermanentPageFailure(effect.offset, effect.attempts, effect.cause)
                failures.append(failure)
                logger.error(f"❌ {failure}; continuing with the next page")

            elif isinstance(effect, FetchPage):
                event = self._fetch(effect, filters, records, seen_ids)
                state, effects = transition(state, event, config)
                pending.extend(effects)

        aborted = None
        if state.abort_reason:
            aborted = RunAborted(state.abort_reason, failures)
            logger.error(f"❌ Inventory sync aborted: {state.abort_reason}")

        result = SyncResult(records=records, progress=state.progress(), failures=failures, aborted=aborted)
        logger.info(f"✅ {result.summary()}")
        return result

    def _fetch(self, effect: FetchPage, filters: FiltersLike, records: List[InventoryRecord], seen_ids: set) -> Event:
        if self._cancelled.is_set():
            return Cancelled()

        try:
            page = self.fetcher.fetch_page(effect.offset, effect.limit, filters)
        except FetchFailed as e:
            logger.warning(f"Error fetching offset {effect.offset}: {e.cause}")
            return PageFailed(e.cause)
        except Exception as e:
            logger.exception(f"Unexpected error fetching offset {effect.offset}")
            return PageFailed(f"{type(e).__name__}: {e}")

        appended = 0
        for record in page.records:
            if record.id in seen_ids:
                logger.warning(f"Skipping duplicate record {record.id} at offset {effect.offset}")
                continue
            seen_ids.add(record.id)
            records.append(record)
            appended += 1

        logger.info(f"Received {len(page.records)} rows at offset {effect.offset} (total so far: {len(records)})")
        return PageLoaded(received=len(page.records), appended=appended, total_hint=page.total_count)
