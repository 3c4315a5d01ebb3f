# src/r2sync/scheduler.py
"""
Bounded-concurrency scheduler for transfer work items.

Items are admitted strictly in order. A slot on the scheduler's own
semaphore must be held for the whole duration of an execution, so the
number of in-flight executions never exceeds the configured bound.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Set

from r2sync.models import TransferOutcome, WorkItem

logger: logging.Logger = logging.getLogger(__name__)

ExecuteFn = Callable[[WorkItem], Awaitable[TransferOutcome]]
OutcomeCallback = Callable[[TransferOutcome], None]

SHUTDOWN_REASON: str = "not started: shutdown requested"


class BoundedScheduler:
    """Runs work items through an executor with at most N in flight."""

    def __init__(
        self,
        max_concurrent: int,
        shutdown_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Initializes the scheduler.

        Args:
            max_concurrent (int): Maximum number of concurrent executions.
            shutdown_event (asyncio.Event, optional): Once set, no further
                items are admitted.
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self._limit: int = max_concurrent
        self._semaphore: asyncio.Semaphore = asyncio.Semaphore(max_concurrent)
        self._shutdown_event: Optional[asyncio.Event] = shutdown_event
        self._in_flight: int = 0
        self._peak_in_flight: int = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_flight(self) -> int:
        """Number of executions currently running."""
        return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        """Highest number of simultaneous executions seen so far."""
        return self._peak_in_flight

    def _stopping(self) -> bool:
        return self._shutdown_event is not None and self._shutdown_event.is_set()

    async def run_all(
        self,
        items: Iterable[WorkItem],
        execute: ExecuteFn,
        on_outcome: Optional[OutcomeCallback] = None,
    ) -> List[TransferOutcome]:
        """
        Executes every item and collects one outcome per item.

        A failing item never stops the others. If a shutdown is requested,
        items not yet started are reported as failed without being executed
        while in-flight items run to completion.

        Args:
            items (Iterable[WorkItem]): Items in admission order.
            execute (ExecuteFn): Coroutine function performing one item.
            on_outcome (OutcomeCallback, optional): Called with each outcome
                as it arrives.

        Returns:
            List[TransferOutcome]: Outcomes in completion order.
        """
        outcomes: List[TransferOutcome] = []
        running: Set[asyncio.Task[None]] = set()

        def _collect(outcome: TransferOutcome) -> None:
            outcomes.append(outcome)
            if on_outcome is not None:
                on_outcome(outcome)

        async def _run_one(item: WorkItem) -> None:
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
            try:
                outcome: TransferOutcome = await execute(item)
            except Exception as e:
                logger.exception(f"Executor raised for '{item.source}'")
                outcome = TransferOutcome.failed(item, f"{type(e).__name__}: {e}")
            finally:
                self._in_flight -= 1
                self._semaphore.release()
            _collect(outcome)

        try:
            for item in items:
                if self._stopping():
                    _collect(TransferOutcome.failed(item, SHUTDOWN_REASON))
                    continue
                await self._semaphore.acquire()
                if self._stopping():
                    self._semaphore.release()
                    _collect(TransferOutcome.failed(item, SHUTDOWN_REASON))
                    continue
                task: asyncio.Task[None] = asyncio.create_task(_run_one(item))
                running.add(task)
                task.add_done_callback(running.discard)

            if running:
                await asyncio.gather(*running)
        except asyncio.CancelledError:
            for task in running:
                task.cancel()
            await asyncio.gather(*running, return_exceptions=True)
            raise

        return outcomes
