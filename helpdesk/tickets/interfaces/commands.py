"""
Tickets Commands (CLI)
======================

Command line entry point.

    helpdesk bulk-classify [--batch-size N] [--rate-limit N] [--delay N]
                           [--force] [--dry-run] [--yes]
    helpdesk worker

``bulk-classify`` queues one classification job per ticket that needs one,
paced by the OpenAI rate limiter. ``worker`` runs the arq worker that
executes those jobs.
"""

import argparse
import asyncio
from typing import Awaitable, Callable, List, Optional

from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table
from tqdm import tqdm

from helpdesk.config import settings
from helpdesk.core import ApplicationException, TaskQueueException
from helpdesk.infrastructure.database import close_database, get_session_context, init_database
from helpdesk.infrastructure.ratelimit import RateLimiter, build_rate_limit_store
from helpdesk.shared.infrastructure.logging import get_logger, setup_logging
from helpdesk.tickets.application import (
    BulkClassificationPlan,
    BulkClassificationService,
    BulkClassifyOptions,
    ITaskQueue,
)
from helpdesk.tickets.infrastructure import SQLAlchemyTicketRepository, TaskQueueAdapter

logger = get_logger(__name__)

SUBJECT_PREVIEW_LENGTH = 50


class BulkClassifyCommand:
    """
    Bulk classify tickets with rate limiting to prevent API quota exhaustion.

    Output goes through a rich console; the confirmation prompt is injectable
    so the command can run unattended. When ``connect_queue`` is given the
    task queue is opened only once the operator has confirmed a live run.
    """

    def __init__(
        self,
        service: BulkClassificationService,
        console: Optional[Console] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        show_progress: bool = True,
        connect_queue: Optional[Callable[[], Awaitable[ITaskQueue]]] = None,
    ):
        self._service = service
        self._console = console or Console()
        self._confirm = confirm or (lambda question: Confirm.ask(question, console=self._console))
        self._show_progress = show_progress
        self._connect_queue = connect_queue

    async def handle(self, options: BulkClassifyOptions, assume_yes: bool = False) -> int:
        """Run the command; returns the process exit code."""
        tickets = await self._service.find_tickets(force=options.force)

        if not tickets:
            self._console.print("No tickets found that need classification.", style="green")
            return 0

        plan = BulkClassificationPlan.build(tickets, options)

        if options.dry_run:
            self._print_dry_run(plan)
            return 0

        self._console.print(f"Found {plan.total} tickets to classify.")
        self._console.print(f"Rate limit: {self._service.rate_limiter.rate_limit} calls/minute")
        self._console.print(f"Batch size: {plan.batch_size}")
        self._console.print(f"Delay between batches: {plan.delay} seconds")

        if not assume_yes and not self._confirm("Do you want to proceed?"):
            self._console.print("Operation cancelled.")
            return 0

        if self._connect_queue is not None:
            await self._open_task_queue()

        with tqdm(total=plan.total, desc="Classifying", unit="ticket", disable=not self._show_progress) as bar:
            report = await self._service.dispatch(
                tickets,
                options,
                on_progress=lambda _ticket: bar.update(1),
                on_wait=self._announce_wait,
            )

        self._console.print()
        self._console.print("Bulk classification completed!", style="green")
        self._console.print(f"Processed: {report.processed} tickets")
        if report.errors:
            self._console.print(f"Errors: {report.errors} tickets failed to queue", style="yellow")

        return 0

    def _print_dry_run(self, plan: BulkClassificationPlan) -> None:
        self._console.print("DRY RUN MODE - No tickets will be actually classified", style="bold yellow")
        self._console.print(f"Found {plan.total} tickets that would be processed:")

        table = Table("Metric", "Value")
        table.add_row("Total tickets", str(plan.total))
        table.add_row("Batch size", str(plan.batch_size))
        table.add_row("Number of batches", str(plan.batches))
        table.add_row("Rate limit", f"{plan.rate_limit}/minute")
        table.add_row("Delay between batches", f"{plan.delay}s")
        table.add_row("Estimated time", plan.estimated_time)
        self._console.print(table)

        self._console.print()
        self._console.print("Sample tickets to be classified:")
        for ticket in plan.samples:
            self._console.print(f"- {ticket.id}: {ticket.subject[:SUBJECT_PREVIEW_LENGTH]}...", markup=False)
        if plan.remaining_after_samples:
            self._console.print(f"... and {plan.remaining_after_samples} more tickets")

    async def _open_task_queue(self) -> None:
        try:
            self._service.use_task_queue(await self._connect_queue())
        except TaskQueueException as e:
            logger.error("Task queue unavailable", extra={"error": e.message})
            self._console.print(f"Error: {e.message}", style="red", markup=False)
            self._service.use_task_queue(None)

    def _announce_wait(self, seconds: int) -> None:
        self._console.print(f"Rate limit exceeded. Waiting {seconds} seconds before continuing...", style="yellow")


async def run_bulk_classify(
    options: BulkClassifyOptions,
    assume_yes: bool = False,
    console: Optional[Console] = None,
) -> int:
    """
    Wire the bulk command against the configured database, queue and rate limit store.

    Redis is only contacted for a confirmed live run with tickets to queue.
    """
    console = console or Console()
    init_database()
    opened: List[TaskQueueAdapter] = []

    async def connect_queue() -> TaskQueueAdapter:
        task_queue = await TaskQueueAdapter.connect()
        opened.append(task_queue)
        return task_queue

    try:
        limiter = RateLimiter.with_limits(
            build_rate_limit_store(),
            options.rate_limit,
            settings.rate_limit_decay_minutes,
        )

        async with get_session_context() as session:
            service = BulkClassificationService(SQLAlchemyTicketRepository(session), None, limiter)
            command = BulkClassifyCommand(service, console, connect_queue=connect_queue)
            return await command.handle(options, assume_yes=assume_yes)
    except ApplicationException as e:
        logger.error("Bulk classification aborted", extra={"error": e.message})
        console.print(f"Error: {e.message}", style="red", markup=False)
        return 1
    finally:
        for task_queue in opened:
            await task_queue.close()
        await close_database()


def run_worker() -> None:
    """Run the arq classification worker in the foreground."""
    from arq.worker import run_worker as arq_run_worker

    from helpdesk.tickets.interfaces.worker import WorkerSettings

    arq_run_worker(WorkerSettings)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="helpdesk")
    subparsers = parser.add_subparsers(dest="command")

    bulk = subparsers.add_parser(
        "bulk-classify",
        help="Bulk classify tickets with rate limiting to prevent API quota exhaustion",
    )
    # Raw strings: junk values are clamped to the minimum instead of rejected
    bulk.add_argument("--batch-size", default=None, help="Number of tickets to process in each batch")
    bulk.add_argument("--rate-limit", default=None, help="Maximum API calls per minute")
    bulk.add_argument("--delay", default=None, help="Delay between batches in seconds")
    bulk.add_argument("--force", action="store_true", help="Force classification of already classified tickets")
    bulk.add_argument("--dry-run", action="store_true", help="Show what would be processed without actually doing it")
    bulk.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    subparsers.add_parser("worker", help="Run the classification worker")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "bulk-classify":
        setup_logging(settings.log_level, settings.environment)
        options = BulkClassifyOptions.from_raw(
            batch_size=args.batch_size,
            rate_limit=args.rate_limit,
            delay=args.delay,
            force=args.force,
            dry_run=args.dry_run,
        )
        return asyncio.run(run_bulk_classify(options, assume_yes=args.yes))

    if args.command == "worker":
        run_worker()
        return 0

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
