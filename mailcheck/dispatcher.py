"""Fan the address catalog out over the credential pool and a thread pool.

Each address moves through PENDING -> IN_FLIGHT -> RETRYING(n) -> TERMINAL.
Workers share one heap of ready work ordered by (not_before, catalog index);
transient failures are pushed back with a backoff delay instead of sleeping
inside the worker, so one slow address never holds up the others.
"""

import heapq
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .models import (
    Address,
    AddressResult,
    DispatchResult,
    Failed,
    FailureCause,
    ValidationOutcome,
)
from .pool import EXHAUSTED, CredentialPool

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 1.0
DEFAULT_BACKOFF_MAX = 5.0
DEFAULT_EXHAUSTED_POLL = 0.5
DEFAULT_ERROR_BUDGET = 50

STOP_EXHAUSTED = "credentials exhausted"
STOP_ERROR_BUDGET = "error budget exceeded"


class State(Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    TERMINAL = "terminal"


@dataclass
class WorkItem:
    index: int
    address: Address
    state: State = State.PENDING
    attempts: int = 0  # transient (protocol/network) failures so far
    calls: int = 0  # provider calls made
    quota_retries: int = 0
    tried: Set[str] = field(default_factory=set)  # credentials that refused this address
    not_before: float = 0.0
    outcome: Optional[ValidationOutcome] = None

    def sort_key(self) -> Tuple[float, int]:
        return (self.not_before, self.index)


class OutcomeCollector:
    """Append-only, keyed by address identity."""

    def __init__(self):
        self._lock = threading.Lock()
        self._results: Dict[str, AddressResult] = {}

    def record(self, result: AddressResult) -> None:
        key = result.address.key()
        with self._lock:
            if key in self._results:
                raise ValueError(f"outcome already recorded for [{result.address.one_line()}]")
            self._results[key] = result

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def results(self) -> List[AddressResult]:
        with self._lock:
            return sorted(self._results.values(), key=lambda r: r.index)


def deduplicate(catalog: Iterable[Address]) -> Tuple[List[WorkItem], int]:
    """Keep the first occurrence of each address key, remembering its catalog index."""
    seen: Set[str] = set()
    items: List[WorkItem] = []
    duplicates = 0
    for index, address in enumerate(catalog):
        key = address.key()
        if key in seen:
            duplicates += 1
            logger.debug("skipping duplicate catalog entry #%d [%s]", index, address.one_line())
            continue
        seen.add(key)
        items.append(WorkItem(index=index, address=address))
    return items, duplicates


class Dispatcher:
    def __init__(
        self,
        pool: CredentialPool,
        client,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        max_quota_retries: Optional[int] = None,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        backoff_max: float = DEFAULT_BACKOFF_MAX,
        exhausted_poll: float = DEFAULT_EXHAUSTED_POLL,
        error_budget: Optional[int] = DEFAULT_ERROR_BUDGET,
        clock: Callable[[], float] = time.monotonic,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.pool = pool
        self.client = client
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        # one retry per alternate credential
        self.max_quota_retries = (
            max_quota_retries if max_quota_retries is not None else max(len(pool) - 1, 0)
        )
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.exhausted_poll = exhausted_poll
        self.error_budget = error_budget
        self.clock = clock

        self._cond = threading.Condition()
        self._heap: List[Tuple[Tuple[float, int], WorkItem]] = []
        self._in_flight = 0
        self._stop_reason: Optional[str] = None
        self._protocol_errors = 0
        self._collector = OutcomeCollector()
        self._total = 0

    def run(self, catalog: Iterable[Address]) -> DispatchResult:
        """Verify every catalog address; returns partial results if the run stops early."""
        items, duplicates = deduplicate(catalog)
        if duplicates:
            logger.info("dropped %d duplicate catalog entries", duplicates)

        with self._cond:
            self._heap = [(item.sort_key(), item) for item in items]
            heapq.heapify(self._heap)
            self._in_flight = 0
            self._stop_reason = None
            self._protocol_errors = 0
            self._collector = OutcomeCollector()
            self._total = len(items)

        workers = min(self.concurrency, len(items)) or 1
        logger.info("verifying %d addresses with %d workers", len(items), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mailcheck") as executor:
            futures = [executor.submit(self._worker) for _ in range(workers)]
        for future in futures:
            future.result()

        with self._cond:
            unprocessed = sorted(
                ((item.index, item.address) for _, item in self._heap), key=lambda t: t[0]
            )
            stop_reason = self._stop_reason

        if unprocessed:
            logger.warning(
                "run stopped early (%s): %d addresses not processed", stop_reason, len(unprocessed)
            )
        return DispatchResult(
            results=self._collector.results(),
            unprocessed=unprocessed,
            duplicates=duplicates,
            exhausted_credentials=self.pool.exhausted_count(),
            stop_reason=stop_reason,
        )

    def stop(self, reason: str) -> None:
        """Stop dispatching new work; in-flight lookups still complete."""
        with self._cond:
            if self._stop_reason is None:
                self._stop_reason = reason
                logger.warning("stopping run: %s", reason)
            self._cond.notify_all()

    def _worker(self) -> None:
        while True:
            item = self._next_item()
            if item is None:
                return
            try:
                requeue = self._step(item)
            except Exception:
                # put the address back so it is reported, then let the error surface
                self._finish(item, item)
                self.stop(f"worker error on catalog entry #{item.index}")
                raise
            self._finish(item, requeue)

    def _next_item(self) -> Optional[WorkItem]:
        with self._cond:
            while True:
                if self._stop_reason is not None:
                    return None
                if not self._heap:
                    if self._in_flight == 0:
                        self._cond.notify_all()
                        return None
                    self._cond.wait()
                    continue
                wait = self._heap[0][1].not_before - self.clock()
                if wait <= 0:
                    _, item = heapq.heappop(self._heap)
                    self._in_flight += 1
                    return item
                self._cond.wait(timeout=wait)

    def _finish(self, item: WorkItem, requeue: Optional[WorkItem]) -> None:
        with self._cond:
            self._in_flight -= 1
            if requeue is not None:
                heapq.heappush(self._heap, (requeue.sort_key(), requeue))
            self._cond.notify_all()

    def _step(self, item: WorkItem) -> Optional[WorkItem]:
        """Advance one item by one provider call. Returns the item if it must be requeued."""
        credential = self.pool.checkout(exclude=item.tried)
        if credential is EXHAUSTED:
            return self._on_exhausted(item)

        item.state = State.IN_FLIGHT
        item.calls += 1
        outcome = self.client.verify(item.address, credential)

        if outcome.consumed:
            self.pool.commit(credential)
        else:
            self.pool.release_without_use(credential)

        if not isinstance(outcome, Failed):
            return self._terminal(item, outcome)

        if outcome.retire:
            self.pool.retire(credential)

        if outcome.cause is FailureCause.QUOTA_EXCEEDED:
            item.tried.add(credential.auth_id)
            item.quota_retries += 1
            if item.quota_retries > self.max_quota_retries:
                return self._terminal(item, outcome)
            logger.info(
                "credential [%s] refused [%s] (%s), trying another",
                credential.auth_id, item.address.one_line(), outcome.detail,
            )
            item.state = State.RETRYING
            item.not_before = 0.0
            return item

        if outcome.cause is FailureCause.PROTOCOL_ERROR:
            self._count_protocol_error()

        item.attempts += 1
        if item.attempts >= self.max_attempts:
            return self._terminal(item, outcome)
        delay = min(self.backoff_base * 2 ** (item.attempts - 1), self.backoff_max)
        logger.warning(
            "attempt %d for [%s] failed (%s), retrying in %.1fs",
            item.attempts, item.address.one_line(), outcome.detail, delay,
        )
        item.state = State.RETRYING
        item.not_before = self.clock() + delay
        return item

    def _on_exhausted(self, item: WorkItem) -> Optional[WorkItem]:
        seen = self.pool.availability(exclude=item.tried)
        if seen.remaining_untried > 0:
            # another worker handed a unit back since our checkout
            return item
        if seen.reserved_untried > 0:
            # in-flight lookups may still hand their units back
            item.not_before = self.clock() + self.exhausted_poll
            return item
        if seen.remaining_all == 0 and seen.reserved_all == 0:
            self.stop(STOP_EXHAUSTED)
            return item
        return self._terminal(
            item, Failed(FailureCause.QUOTA_EXCEEDED, "No untried credential left")
        )

    def _terminal(self, item: WorkItem, outcome: ValidationOutcome) -> Optional[WorkItem]:
        item.state = State.TERMINAL
        item.outcome = outcome
        self._collector.record(
            AddressResult(index=item.index, address=item.address, outcome=outcome, attempts=item.calls)
        )
        done = len(self._collector)
        logger.info(
            "[%d/%d] %s -> %s", done, self._total, item.address.name or item.address.one_line(),
            type(outcome).__name__,
        )
        return None

    def _count_protocol_error(self) -> None:
        with self._cond:
            self._protocol_errors += 1
            over = self.error_budget is not None and self._protocol_errors > self.error_budget
        if over:
            self.stop(STOP_ERROR_BUDGET)
