"""
Refresh Worker Module

Background thread that runs reconciliation passes and publishes whole
session lists. It never touches UI state: the frame loop polls for the
latest outcome and installs it itself.
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional

from ..core.errors import DeckError
from ..core.reconciler import SessionReconciler
from ..core.session_model import Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefreshRequest:
    """Full pass when ``names`` is empty, targeted pass otherwise."""
    names: FrozenSet[str] = frozenset()

    @property
    def is_full(self) -> bool:
        return not self.names


@dataclass
class RefreshOutcome:
    """Result of one pass: a new list, or the error that prevented it."""
    sessions: Optional[List[Session]] = None
    error: Optional[str] = None
    full: bool = True
    names: FrozenSet[str] = field(default_factory=frozenset)


class RefreshWorker:
    """
    Runs reconciliation off the input thread.

    Features:
    - Startup, manual, timer and targeted passes
    - Queued requests coalesced into a single pass
    - Lock-protected publication of the newest outcome only
    - Previous list kept when a pass fails
    """

    def __init__(self, reconciler: SessionReconciler, interval: float = 2.0):
        """
        Initialize refresh worker.

        Args:
            reconciler: Reconciler used for every pass
            interval: Seconds between timer-driven full passes
        """
        self.reconciler = reconciler
        self.interval = interval
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

        self._requests: "queue.Queue[RefreshRequest]" = queue.Queue()
        self._lock = threading.Lock()
        self._published: Optional[RefreshOutcome] = None
        self._latest: List[Session] = []

    def start(self) -> None:
        """Start the worker thread; the first pass runs immediately."""
        if self.thread and self.thread.is_alive():
            return

        self.stop_event.clear()
        self.request_full()
        self.thread = threading.Thread(target=self._refresh_loop, name="tmux-deck-refresh", daemon=True)
        self.thread.start()
        logger.info("Refresh worker started")

    def stop(self) -> None:
        """Stop the worker thread."""
        self.stop_event.set()
        self._requests.put(RefreshRequest())
        if self.thread:
            self.thread.join(timeout=5)
        logger.info("Refresh worker stopped")

    def request_full(self) -> None:
        self._requests.put(RefreshRequest())

    def request_sessions(self, names: Iterable[str]) -> None:
        names = frozenset(names)
        if names:
            self._requests.put(RefreshRequest(names))

    def poll(self) -> Optional[RefreshOutcome]:
        """Take the newest unread outcome, if any."""
        with self._lock:
            outcome, self._published = self._published, None
        return outcome

    def run_once(self, request: Optional[RefreshRequest] = None) -> RefreshOutcome:
        """
        Perform one pass synchronously and publish it.

        Args:
            request: Pass to run; a full pass when omitted

        Returns:
            RefreshOutcome
        """
        request = request or RefreshRequest()
        try:
            if request.is_full:
                sessions = self.reconciler.reconcile()
            else:
                sessions = self.reconciler.reconcile_sessions(self._latest, request.names)
        except DeckError as e:
            logger.warning(f"Reconciliation failed: {e}")
            outcome = RefreshOutcome(error=str(e), full=request.is_full, names=request.names)
        else:
            self._latest = sessions
            outcome = RefreshOutcome(sessions=sessions, full=request.is_full, names=request.names)

        with self._lock:
            self._published = outcome
        return outcome

    def _next_request(self) -> RefreshRequest:
        """Wait up to one interval for requests and merge all queued ones."""
        try:
            pending = [self._requests.get(timeout=self.interval)]
        except queue.Empty:
            return RefreshRequest()

        while True:
            try:
                pending.append(self._requests.get_nowait())
            except queue.Empty:
                break

        if any(request.is_full for request in pending):
            return RefreshRequest()
        return RefreshRequest(frozenset().union(*(request.names for request in pending)))

    def _refresh_loop(self) -> None:
        while not self.stop_event.is_set():
            request = self._next_request()
            if self.stop_event.is_set():
                break
            self.run_once(request)
