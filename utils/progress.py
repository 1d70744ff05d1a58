import logging
import threading
from typing import Callable, List, Optional

from constants.schemas import SyncProgress

logger = logging.getLogger(__name__)

ProgressListener = Callable[[SyncProgress], None]


class ProgressChannel:
    """
    Typed channel the sync driver publishes ``SyncProgress`` snapshots on.

    Listeners are called synchronously, in subscription order. A listener that
    raises is logged and skipped; it never interrupts the run.
    """

    def __init__(self):
        self._listeners: List[ProgressListener] = []
        self._lock = threading.Lock()
        self._latest: Optional[SyncProgress] = None

    @property
    def latest(self) -> Optional[SyncProgress]:
        return self._latest

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a listener and return a function that removes it"""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, progress: SyncProgress) -> None:
        self._latest = progress
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(progress)
            except Exception:
                logger.exception("Progress listener failed")
