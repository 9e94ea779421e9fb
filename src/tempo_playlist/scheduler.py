"""
Concurrent Scan Scheduler - Rolling-Window Tempo Resolution

A fixed pool of worker tasks pulls items from a shared queue and runs one
async operation per item. A worker starts the next queued item the moment
its previous one settles, so the number of operations in flight stays at the
cap until the input runs out.

Items may be submitted while earlier ones are still running; results are
delivered in the order they settle, not the order they were submitted.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Iterable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 10

T = TypeVar("T")
R = TypeVar("R")

_STOP = object()
_DONE = object()


class CancellationToken:
    """Shared cooperative cancellation flag.

    Operations check ``cancelled`` at their suspension points and stop
    extending their own work; nothing is forcibly interrupted.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.info(f"Cancellation requested: {reason}")

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class ScanOutcome(Generic[T, R]):
    """Settled state of one submitted item.

    Attributes:
        item: The submitted item
        result: Operation return value (None if it raised or never started)
        error: Exception raised by the operation, if any
        started: False when the item was dropped after a halt or cancellation
    """

    item: T
    result: Optional[R] = None
    error: Optional[BaseException] = None
    started: bool = True

    @property
    def ok(self) -> bool:
        return self.started and self.error is None


class ConcurrentScanScheduler(Generic[T, R]):
    """Bounded worker pool with streaming submission.

    Example:
        >>> async with ConcurrentScanScheduler(resolve, max_concurrency=10) as scheduler:
        ...     for track in tracks:
        ...         scheduler.submit(track)
        ...     scheduler.close()
        ...     async for outcome in scheduler.results():
        ...         print(outcome.item, outcome.result)
    """

    def __init__(
        self,
        operation: Callable[[T, CancellationToken], Awaitable[R]],
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        cancel_token: Optional[CancellationToken] = None,
    ):
        """Initialize the scheduler.

        Args:
            operation: Async callable invoked as ``operation(item, cancel_token)``
            max_concurrency: Number of workers, i.e. the in-flight cap
            cancel_token: Shared token; a fresh one is created if omitted

        Raises:
            ValueError: If max_concurrency is less than 1
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self._operation = operation
        self.max_concurrency = max_concurrency
        self.cancel_token = cancel_token or CancellationToken()

        self._pending: "asyncio.Queue[Any]" = asyncio.Queue()
        self._results: "asyncio.Queue[Any]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._active_workers = 0
        self._closed = False
        self._halted = False
        self._idle = asyncio.Condition()

        self.in_flight = 0
        self.peak_in_flight = 0
        self.submitted_count = 0
        self.started_count = 0
        self.settled_count = 0
        self.skipped_count = 0

    @property
    def halted(self) -> bool:
        return self._halted or self.cancel_token.cancelled

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "ConcurrentScanScheduler[T, R]":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.halt()
        self.close()
        await self.wait_closed()

    def start(self) -> None:
        """Spawn the worker tasks. Must be called from a running event loop."""
        if self._workers:
            return
        self._active_workers = self.max_concurrency
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"scan-worker-{index}")
            for index in range(self.max_concurrency)
        ]
        logger.debug(f"Started {self.max_concurrency} scan workers")

    def submit(self, item: T) -> None:
        """Queue an item. Raises RuntimeError once the scheduler is closed."""
        if self._closed:
            raise RuntimeError("Cannot submit to a closed scheduler")
        self.submitted_count += 1
        self._pending.put_nowait(item)

    def close(self) -> None:
        """Signal that no more items will be submitted."""
        if self._closed:
            return
        self._closed = True
        for _ in range(self.max_concurrency):
            self._pending.put_nowait(_STOP)

    def halt(self) -> None:
        """Stop starting queued items. In-flight operations still settle."""
        if not self._halted:
            self._halted = True
            logger.debug(f"Scheduler halted with {self.in_flight} items in flight")

    async def wait_closed(self) -> None:
        """Wait until every worker has exited, i.e. every started item settled."""
        if self._workers:
            await asyncio.gather(*self._workers)

    async def wait_idle(self) -> None:
        """Wait until every item submitted so far has settled."""
        async with self._idle:
            await self._idle.wait_for(lambda: self.settled_count + self.skipped_count >= self.submitted_count)

    async def results(self) -> AsyncIterator[ScanOutcome[T, R]]:
        """Yield outcomes as they settle until all workers have exited."""
        while True:
            outcome = await self._results.get()
            if outcome is _DONE:
                return
            yield outcome

    async def run(self, items: Iterable[T]) -> AsyncIterator[ScanOutcome[T, R]]:
        """Submit ``items``, close, and yield every outcome."""
        async with self:
            for item in items:
                self.submit(item)
            self.close()
            async for outcome in self.results():
                yield outcome

    async def _notify_idle(self) -> None:
        async with self._idle:
            self._idle.notify_all()

    async def _worker(self, index: int) -> None:
        try:
            while True:
                item = await self._pending.get()
                if item is _STOP:
                    break

                if self.halted:
                    self.skipped_count += 1
                    await self._results.put(ScanOutcome(item=item, started=False))
                    await self._notify_idle()
                    continue

                self.in_flight += 1
                self.started_count += 1
                self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
                try:
                    result = await self._operation(item, self.cancel_token)
                    outcome = ScanOutcome(item=item, result=result)
                except Exception as e:
                    logger.error(f"Worker {index}: operation failed for {item!r}: {e}", exc_info=e)
                    outcome = ScanOutcome(item=item, error=e)
                finally:
                    self.in_flight -= 1

                self.settled_count += 1
                await self._results.put(outcome)
                await self._notify_idle()
        finally:
            self._active_workers -= 1
            if self._active_workers == 0:
                self._results.put_nowait(_DONE)
