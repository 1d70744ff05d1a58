"""
Sync run state machine.

A run moves Sizing -> Fetching(page i) -> Done | Aborted. ``transition`` is a
pure function: it takes the current state and one event and returns the next
state plus the effects the driver must perform, in order. It never touches the
network or the clock.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple, Union

from constants.schemas import RunStatus, SyncProgress
from utils.sync_config import SyncConfig


class Phase(str, Enum):
    SIZING = "sizing"
    FETCHING = "fetching"
    DONE = "done"
    ABORTED = "aborted"


@dataclass(frozen=True)
class RunState:
    page_size: int
    phase: Phase = Phase.SIZING
    page_index: int = 0
    total_pages: int = 0
    estimated_total: int = 0
    estimate_is_fallback: bool = False
    attempts: int = 0
    accumulated: int = 0
    pages_succeeded: int = 0
    consecutive_failures: int = 0
    failed_offsets: Tuple[int, ...] = ()
    percentage: int = 0
    abort_reason: Optional[str] = None

    @property
    def offset(self) -> int:
        return self.page_index * self.page_size

    @property
    def is_terminal(self) -> bool:
        return self.phase in (Phase.DONE, Phase.ABORTED)

    def progress(self) -> SyncProgress:
        if self.phase == Phase.DONE:
            status = RunStatus.COMPLETE
        elif self.phase == Phase.ABORTED:
            status = RunStatus.ABORTED
        else:
            status = RunStatus.IN_PROGRESS
        return SyncProgress(
            accumulated=self.accumulated,
            estimated_total=self.estimated_total,
            percentage=self.percentage,
            status=status,
            pages_fetched=self.pages_succeeded,
            pages_failed=len(self.failed_offsets),
        )


# --- Events ---


@dataclass(frozen=True)
class Sized:
    estimate: int
    is_fallback: bool = False


@dataclass(frozen=True)
class PageLoaded:
    received: int
    appended: Optional[int] = None
    total_hint: Optional[int] = None

    @property
    def added(self) -> int:
        return self.received if self.appended is None else self.appended


@dataclass(frozen=True)
class PageFailed:
    cause: str


@dataclass(frozen=True)
class Cancelled:
    reason: str = "cancelled"


Event = Union[Sized, PageLoaded, PageFailed, Cancelled]


# --- Effects ---


@dataclass(frozen=True)
class FetchPage:
    offset: int
    limit: int


@dataclass(frozen=True)
class Backoff:
    delay: float
    attempt: int


@dataclass(frozen=True)
class RecordFailure:
    offset: int
    attempts: int
    cause: str


@dataclass(frozen=True)
class EmitProgress:
    progress: SyncProgress = field(compare=False)


Effect = Union[FetchPage, Backoff, RecordFailure, EmitProgress]


def in_progress_percentage(accumulated: int, estimated_total: int) -> int:
    """Percentage shown while a run is still going; never reaches 100"""
    if estimated_total <= 0:
        return 0
    # Half-up rounding; round() would round half to even.
    return min(99, int(math.floor(accumulated * 100 / estimated_total + 0.5)))


def _with_percentage(state: RunState) -> RunState:
    if state.phase == Phase.DONE:
        return replace(state, percentage=100)
    if state.phase == Phase.ABORTED:
        return state
    computed = in_progress_percentage(state.accumulated, state.estimated_total)
    return replace(state, percentage=max(state.percentage, computed))


def _emit(state: RunState) -> EmitProgress:
    return EmitProgress(state.progress())


def initial_state(config: SyncConfig) -> RunState:
    return RunState(page_size=config.page_size)


def transition(state: RunState, event: Event, config: SyncConfig) -> Tuple[RunState, List[Effect]]:
    """
    Advance a run by one event.

    Args:
        state: Current run state
        event: What just happened
        config: Retry and abort policy

    Returns:
        Tuple of the next state and the effects to perform, in order
    """
    if state.is_terminal:
        raise ValueError(f"Run already finished ({state.phase.value}); cannot handle {event!r}")

    if isinstance(event, Cancelled):
        aborted = replace(state, phase=Phase.ABORTED, abort_reason=event.reason)
        return aborted, [_emit(aborted)]

    if state.phase == Phase.SIZING:
        if not isinstance(event, Sized):
            raise ValueError(f"Run is sizing; expected Sized, got {event!r}")
        return _on_sized(state, event)

    if isinstance(event, PageLoaded):
        return _on_page_loaded(state, event)
    if isinstance(event, PageFailed):
        return _on_page_failed(state, event, config)
    raise ValueError(f"Run is fetching; unexpected event {event!r}")


def _on_sized(state: RunState, event: Sized) -> Tuple[RunState, List[Effect]]:
    estimate = max(0, event.estimate)
    # Always look at the first page: an estimate of zero may be wrong too.
    total_pages = max(1, math.ceil(estimate / state.page_size))
    fetching = replace(
        state,
        phase=Phase.FETCHING,
        estimated_total=estimate,
        estimate_is_fallback=event.is_fallback,
        total_pages=total_pages,
    )
    return fetching, [_emit(fetching), FetchPage(fetching.offset, fetching.page_size)]


def _on_page_loaded(state: RunState, event: PageLoaded) -> Tuple[RunState, List[Effect]]:
    if event.received == 0:
        done = _with_percentage(replace(state, phase=Phase.DONE, attempts=0))
        return done, [_emit(done)]

    accumulated = state.accumulated + event.added
    estimated_total = max(state.estimated_total, accumulated)
    total_pages = state.total_pages

    # Only a fallback estimate gives way to the first page's total-count hint.
    if event.total_hint is not None and state.page_index == 0 and state.estimate_is_fallback:
        estimated_total = max(event.total_hint, accumulated)
        total_pages = max(1, math.ceil(estimated_total / state.page_size))

    next_state = replace(
        state,
        page_index=state.page_index + 1,
        attempts=0,
        accumulated=accumulated,
        estimated_total=estimated_total,
        total_pages=total_pages,
        pages_succeeded=state.pages_succeeded + 1,
        consecutive_failures=0,
    )

    if event.received < state.page_size:
        done = _with_percentage(replace(next_state, phase=Phase.DONE))
        return done, [_emit(done)]

    if next_state.page_index >= next_state.total_pages:
        # A full page at the end of the estimate means the estimate was low.
        next_state = replace(
            next_state,
            total_pages=next_state.page_index + 1,
            estimated_total=max(next_state.estimated_total, accumulated + state.page_size),
        )

    next_state = _with_percentage(next_state)
    return next_state, [_emit(next_state), FetchPage(next_state.offset, next_state.page_size)]


def _on_page_failed(state: RunState, event: PageFailed, config: SyncConfig) -> Tuple[RunState, List[Effect]]:
    attempts = state.attempts + 1
    if attempts < config.max_retries:
        retrying = replace(state, attempts=attempts)
        return retrying, [
            Backoff(config.backoff_delay(attempts), attempts),
            FetchPage(state.offset, state.page_size),
        ]

    failure = RecordFailure(state.offset, attempts, event.cause)
    failed = replace(
        state,
        attempts=0,
        consecutive_failures=state.consecutive_failures + 1,
        failed_offsets=state.failed_offsets + (state.offset,),
    )

    if failed.pages_succeeded == 0 and failed.consecutive_failures >= config.abort_threshold:
        aborted = replace(
            failed,
            phase=Phase.ABORTED,
            abort_reason=f"{failed.consecutive_failures} consecutive pages failed before any page succeeded",
        )
        return aborted, [failure, _emit(aborted)]

    if state.page_index + 1 >= state.total_pages:
        done = _with_percentage(replace(failed, phase=Phase.DONE))
        return done, [failure, _emit(done)]

    advanced = _with_percentage(replace(failed, page_index=state.page_index + 1))
    return advanced, [failure, _emit(advanced), FetchPage(advanced.offset, advanced.page_size)]
