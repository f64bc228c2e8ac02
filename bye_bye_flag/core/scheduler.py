"""Budget- and concurrency-bounded scheduling of flag tasks."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence

from ..exceptions import RunAbortError
from ..models.summary import FlagStatus
from ..models.task import FlagTask, RemovalResult
from .constants import MAX_CONSECUTIVE_FAILURES

logger = logging.getLogger(__name__)


class OutputBudget:
    """Shared cap on pull requests produced in a run.

    Admission reserves the task's worst case; completion refunds what the
    task did not use, except in dry run where reservations are kept.
    """

    def __init__(self, limit: int):
        self.limit = limit
        self.used = 0

    @property
    def remaining(self) -> int:
        return self.limit - self.used

    def fits(self, amount: int) -> bool:
        return amount <= self.remaining

    def reserve(self, amount: int) -> None:
        if not self.fits(amount):
            raise ValueError(f"Reservation of {amount} exceeds remaining budget {self.remaining}")
        self.used += amount

    def settle(self, reserved: int, produced: int, refund: bool = True) -> int:
        """Return the unused part of a reservation. Returns the amount refunded."""
        if not refund:
            return 0
        unused = max(0, reserved - produced)
        self.used -= unused
        return unused


class CircuitBreaker:
    """Stops admission after consecutive failures."""

    def __init__(self, threshold: int = MAX_CONSECUTIVE_FAILURES):
        self.threshold = threshold
        self.consecutive_failures = 0

    @property
    def tripped(self) -> bool:
        return self.consecutive_failures >= self.threshold

    def record(self, status: FlagStatus) -> None:
        if status is FlagStatus.FAILED:
            self.consecutive_failures += 1
        else:
            self.consecutive_failures = 0


@dataclass
class TaskOutcome:
    """What an executor reports back for one task."""
    task: FlagTask
    status: FlagStatus
    produced: int = 0
    result: Optional[RemovalResult] = None
    error: Optional[str] = None
    skipped_reason: Optional[str] = None
    duration_ms: Optional[int] = None


@dataclass
class ScheduleReport:
    outcomes: List[TaskOutcome] = field(default_factory=list)
    remaining: List[FlagTask] = field(default_factory=list)
    breaker_tripped: bool = False


# Called with the task and its artifact limit (the reservation)
Executor = Callable[[FlagTask, int], Awaitable[TaskOutcome]]


class Scheduler:
    """Admits queued tasks while a slot is free and the budget allows.

    When the head of the queue does not fit the remaining budget, the first
    later task that fits is admitted instead. Budget and breaker state are
    only changed here in the admission loop.
    """

    def __init__(
        self,
        executor: Executor,
        concurrency: int,
        budget: OutputBudget,
        breaker: Optional[CircuitBreaker] = None,
        dry_run: bool = False,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.executor = executor
        self.concurrency = concurrency
        self.budget = budget
        self.breaker = breaker or CircuitBreaker()
        self.dry_run = dry_run

    def _next_admissible(self, queue: List[FlagTask]) -> Optional[int]:
        for index, task in enumerate(queue):
            if self.budget.fits(task.reservation):
                return index
        return None

    async def _execute(self, task: FlagTask, reservation: int) -> TaskOutcome:
        started = time.monotonic()
        try:
            outcome = await self.executor(task, reservation)
        except RunAbortError:
            raise
        except Exception as e:
            logger.exception(f"Executor crashed on {task.key}")
            outcome = TaskOutcome(task=task, status=FlagStatus.FAILED, error=str(e))
        if outcome.duration_ms is None:
            outcome.duration_ms = int((time.monotonic() - started) * 1000)
        return outcome

    async def run(self, tasks: Sequence[FlagTask]) -> ScheduleReport:
        """Run tasks to completion, budget exhaustion or breaker trip.

        Raises:
            RunAbortError: If an executor raises one; in-flight tasks are cancelled
        """
        queue = list(tasks)
        report = ScheduleReport()
        running = {}

        while True:
            while queue and len(running) < self.concurrency and not self.breaker.tripped:
                index = self._next_admissible(queue)
                if index is None:
                    break
                task = queue.pop(index)
                reservation = task.reservation
                self.budget.reserve(reservation)
                logger.debug(f"Admitted {task.key} (reserved {reservation}, {self.budget.remaining} left)")
                running[asyncio.ensure_future(self._execute(task, reservation))] = reservation

            if not running:
                break

            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            for future in done:
                reservation = running.pop(future)
                try:
                    outcome = future.result()
                except RunAbortError:
                    await _cancel_all(running)
                    raise
                self.budget.settle(reservation, outcome.produced, refund=not self.dry_run)
                self.breaker.record(outcome.status)
                report.outcomes.append(outcome)

        if self.breaker.tripped:
            report.breaker_tripped = True
            logger.warning(
                f"Stopping: {self.breaker.threshold} consecutive failures (likely systemic issue)"
            )
        report.remaining = queue
        return report


async def _cancel_all(running) -> None:
    for future in running:
        future.cancel()
    if running:
        await asyncio.gather(*running, return_exceptions=True)
    running.clear()
