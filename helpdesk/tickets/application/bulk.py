"""
Bulk Classification
===================

Selects tickets that need classification and queues one classification job
per ticket, in batches, under the OpenAI rate limiter.

The service owns selection, planning and pacing; printing and confirmation
belong to the CLI command.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterator, List, Optional, Sequence

from helpdesk.config import CLASSIFICATION_TASK, settings
from helpdesk.infrastructure.ratelimit import RateLimiter
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.tickets.application.services import ITaskQueue, ITicketRepository
from helpdesk.tickets.domain import Ticket

logger = get_logger(__name__)

SAMPLE_SIZE = 5


def _coerce_int(value: Any, minimum: int) -> int:
    """Integer option value; junk and too-small values become ``minimum``."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return minimum
    return max(minimum, number)


def format_duration(seconds: int) -> str:
    """Human readable duration: ``11s``, ``2m 5s``, ``1h 3m``."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"

    minutes, remaining_seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {remaining_seconds}s" if remaining_seconds else f"{minutes}m"

    hours, remaining_minutes = divmod(minutes, 60)
    return f"{hours}h {remaining_minutes}m" if remaining_minutes else f"{hours}h"


def chunked(items: Sequence[Ticket], size: int) -> Iterator[Sequence[Ticket]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


@dataclass(frozen=True)
class BulkClassifyOptions:
    """Options of one bulk run, already clamped to their minimums."""
    batch_size: int = 10
    rate_limit: int = 30
    delay: int = 1
    force: bool = False
    dry_run: bool = False

    @classmethod
    def from_raw(
        cls,
        batch_size: Any = None,
        rate_limit: Any = None,
        delay: Any = None,
        force: bool = False,
        dry_run: bool = False,
    ) -> "BulkClassifyOptions":
        """Build options from untrusted CLI values, falling back to settings when omitted."""
        return cls(
            batch_size=_coerce_int(settings.bulk_batch_size if batch_size is None else batch_size, 1),
            rate_limit=_coerce_int(settings.rate_limit_per_minute if rate_limit is None else rate_limit, 1),
            delay=_coerce_int(settings.bulk_delay_seconds if delay is None else delay, 0),
            force=bool(force),
            dry_run=bool(dry_run),
        )


@dataclass(frozen=True)
class BulkClassificationPlan:
    """What a run would do, shown by dry runs and before confirmation."""
    total: int
    batch_size: int
    batches: int
    rate_limit: int
    delay: int
    estimated_seconds: int
    samples: List[Ticket] = field(default_factory=list)

    @classmethod
    def build(cls, tickets: Sequence[Ticket], options: BulkClassifyOptions) -> "BulkClassificationPlan":
        total = len(tickets)
        batches = -(-total // options.batch_size)
        # ceil(total / rate * 60), kept in integers to avoid float rounding
        estimated = batches * options.delay + -(-total * 60 // options.rate_limit)
        return cls(
            total=total,
            batch_size=options.batch_size,
            batches=batches,
            rate_limit=options.rate_limit,
            delay=options.delay,
            estimated_seconds=estimated,
            samples=list(tickets[:SAMPLE_SIZE]),
        )

    @property
    def estimated_time(self) -> str:
        return format_duration(self.estimated_seconds)

    @property
    def remaining_after_samples(self) -> int:
        return max(0, self.total - len(self.samples))


@dataclass
class BulkClassificationReport:
    """Outcome of a live run."""
    processed: int = 0
    errors: int = 0
    waits: int = 0
    failed_ticket_ids: List[str] = field(default_factory=list)


ProgressCallback = Callable[[Ticket], None]
WaitCallback = Callable[[int], None]


class BulkClassificationService:
    """
    Queues classification jobs for many tickets without exceeding the rate limit.

    Runs are sequential: one ticket is enqueued at a time, and the only
    suspension points are the rate-limit wait and the pause between batches.
    """

    def __init__(
        self,
        repository: ITicketRepository,
        task_queue: Optional[ITaskQueue],
        rate_limiter: RateLimiter,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._repository = repository
        self._task_queue = task_queue
        self._rate_limiter = rate_limiter
        self._sleep = sleep

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def use_task_queue(self, task_queue: Optional[ITaskQueue]) -> None:
        self._task_queue = task_queue

    async def find_tickets(self, force: bool = False) -> List[Ticket]:
        """Unclassified or low-confidence tickets, or all of them when forced."""
        return await self._repository.list_for_classification(force=force)

    async def dispatch(
        self,
        tickets: Sequence[Ticket],
        options: BulkClassifyOptions,
        on_progress: Optional[ProgressCallback] = None,
        on_wait: Optional[WaitCallback] = None,
    ) -> BulkClassificationReport:
        """
        Enqueue one classification job per ticket.

        Before each ticket the limiter is checked; while it is blocked the run
        sleeps for ``available_in`` seconds (at least one) and tries again.
        A failed enqueue is logged and counted; the run goes on.
        Without a task queue every ticket is counted as an error.
        """
        report = BulkClassificationReport()

        if self._task_queue is None:
            report.errors = len(tickets)
            report.failed_ticket_ids = [str(ticket.id) for ticket in tickets]
            logger.error("No task queue available, nothing was queued", extra={"tickets": len(tickets)})
            return report

        batches = list(chunked(tickets, options.batch_size))

        logger.info(
            "Bulk classification started",
            extra={
                "tickets": len(tickets),
                "batches": len(batches),
                "rate_limit": self._rate_limiter.rate_limit,
                "force": options.force,
            },
        )

        for index, batch in enumerate(batches):
            for ticket in batch:
                await self._dispatch_one(ticket, report, on_wait)
                if on_progress is not None:
                    on_progress(ticket)

            if index < len(batches) - 1 and options.delay > 0:
                await self._sleep(options.delay)

        logger.info(
            "Bulk classification finished",
            extra={"processed": report.processed, "errors": report.errors, "waits": report.waits},
        )
        return report

    async def _dispatch_one(
        self,
        ticket: Ticket,
        report: BulkClassificationReport,
        on_wait: Optional[WaitCallback],
    ) -> None:
        ticket_id = str(ticket.id)
        try:
            while True:
                if not await self._rate_limiter.can_make_request():
                    await self._wait_for_window(report, on_wait)
                    continue

                queued = await self._rate_limiter.attempt(
                    lambda: self._task_queue.enqueue(CLASSIFICATION_TASK, ticket_id=ticket_id)
                )
                if queued is not False:
                    break
                # Another run took the last slot between the check and the attempt
                await self._wait_for_window(report, on_wait)
        except Exception as e:
            report.errors += 1
            report.failed_ticket_ids.append(ticket_id)
            logger.error(
                "Failed to dispatch classification job",
                extra={"ticket_id": ticket_id, "error": str(e)},
            )
            return

        report.processed += 1

    async def _wait_for_window(
        self,
        report: BulkClassificationReport,
        on_wait: Optional[WaitCallback],
    ) -> None:
        wait_seconds = max(await self._rate_limiter.available_in(), 1)
        report.waits += 1
        logger.info(
            "Rate limit reached, waiting",
            extra={"wait_seconds": wait_seconds, **await self._rate_limiter.get_status()},
        )
        if on_wait is not None:
            on_wait(wait_seconds)
        await self._sleep(wait_seconds)
