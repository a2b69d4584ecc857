"""
Idempotency Guard

Suppresses rapid re-delivery of the same inbound event from a flaky
transport. Best-effort and single-process: a hash of submitter + normalized
content is remembered for a short window, and a repeat inside that window
is reported as a duplicate.

Storage sits behind DedupStore so a multi-instance deployment can swap the
in-memory map for a shared external cache without touching callers.
"""
import hashlib
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from ...config import DEDUP_WINDOW_SECONDS, DEDUP_SWEEP_INTERVAL_SECONDS, DEDUP_MAX_ENTRIES


logger = logging.getLogger(__name__)


# =============================================================================
# STORES
# =============================================================================

class DedupStore:
    """put-if-absent with TTL."""

    def put_if_absent(self, key: str, ttl_seconds: float) -> bool:
        """Insert key unless a live entry exists. Returns True if inserted."""
        raise NotImplementedError

    def sweep(self) -> int:
        """Drop expired entries. Returns the number removed."""
        raise NotImplementedError

    def __len__(self) -> int:
        raise NotImplementedError


class InMemoryDedupStore(DedupStore):
    """
    Process-local bounded map of hash -> first-seen timestamp.

    Readers and the writer path share one lock. When full, the oldest entry
    is evicted.
    """

    def __init__(self, max_entries: int = DEDUP_MAX_ENTRIES, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self.clock = clock
        self._entries: "OrderedDict[str, float]" = OrderedDict()
        self._ttl: float = DEDUP_WINDOW_SECONDS
        self._lock = threading.Lock()

    def put_if_absent(self, key: str, ttl_seconds: float) -> bool:
        now = self.clock()
        with self._lock:
            self._ttl = ttl_seconds
            first_seen = self._entries.get(key)
            if first_seen is not None and now - first_seen <= ttl_seconds:
                return False

            # Expired or new: (re)insert at the young end
            self._entries.pop(key, None)
            self._entries[key] = now
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
            return True

    def sweep(self) -> int:
        now = self.clock()
        removed = 0
        with self._lock:
            # Insertion order == timestamp order, so stop at the first live entry
            while self._entries:
                key, first_seen = next(iter(self._entries.items()))
                if now - first_seen <= self._ttl:
                    break
                self._entries.popitem(last=False)
                removed += 1
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# GUARD
# =============================================================================

def normalize_content(content: str) -> str:
    """Collapse whitespace and lowercase so trivially different re-sends match."""
    return " ".join((content or "").split()).lower()


def location_content(latitude: float, longitude: float) -> str:
    """Content string used when the inbound event is a bare location share."""
    return f"location:{latitude}:{longitude}"


class IdempotencyGuard:
    """
    Usage:
        guard = IdempotencyGuard()
        if not guard.should_process(phone, message):
            return {"status": "duplicate"}
    """

    def __init__(
        self,
        store: Optional[DedupStore] = None,
        window_seconds: float = DEDUP_WINDOW_SECONDS,
        sweep_interval_seconds: float = DEDUP_SWEEP_INTERVAL_SECONDS,
    ):
        self.store = store or InMemoryDedupStore()
        self.window_seconds = window_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @staticmethod
    def fingerprint(submitter_identity: str, content: str) -> str:
        raw = f"{submitter_identity}:{normalize_content(content)}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def should_process(self, submitter_identity: str, content: str) -> bool:
        """True the first time an event is seen inside the window, False for repeats."""
        key = self.fingerprint(submitter_identity, content)
        fresh = self.store.put_if_absent(key, self.window_seconds)
        if not fresh:
            logger.info(f"Duplicate inbound event from {submitter_identity} suppressed ({key[:12]})")
        return fresh

    def sweep(self) -> int:
        removed = self.store.sweep()
        if removed:
            logger.debug(f"Dedup sweep removed {removed} expired entries")
        return removed

    # -------------------------------------------------------------------------
    # Background sweep
    # -------------------------------------------------------------------------

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="dedup-sweeper", daemon=True)
        self._thread.start()
        logger.info(f"Dedup sweeper started (window={self.window_seconds}s, interval={self.sweep_interval_seconds}s)")

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.sweep_interval_seconds):
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Dedup sweep failed: {e}", exc_info=True)
