"""
Classification Worker
=====================

arq worker that runs classification jobs queued by the API and by the
bulk-classify command.

Start with:
    helpdesk worker
or:
    arq helpdesk.tickets.interfaces.worker.WorkerSettings

Jobs are delivered at least once; ``classify_ticket`` only overwrites the
classification fields, so running it twice is harmless.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from arq import Retry
from arq.worker import func
from sqlalchemy.exc import SQLAlchemyError

from helpdesk.config import CLASSIFICATION_TASK, settings
from helpdesk.core import RepositoryException
from helpdesk.infrastructure.database import close_database, get_session_context, init_database
from helpdesk.infrastructure.queue import redis_settings
from helpdesk.shared.infrastructure.logging import get_logger, setup_logging
from helpdesk.tickets.application import (
    ClassificationDispatcher,
    ClassifierConfig,
    ITicketRepository,
    JobRetryPolicy,
    TicketClassifier,
)
from helpdesk.tickets.infrastructure import LLMClientAdapter, SQLAlchemyTicketRepository

logger = get_logger(__name__)

# Failures worth another attempt; anything else is a bug and fails the job
TRANSIENT_ERRORS = (RepositoryException, SQLAlchemyError, asyncio.TimeoutError)


@asynccontextmanager
async def sqlalchemy_repository_scope() -> AsyncGenerator[ITicketRepository, None]:
    """One session (and transaction) per job attempt."""
    async with get_session_context() as session:
        yield SQLAlchemyTicketRepository(session)


# ========== Lifecycle ==========

async def startup(ctx: Dict[str, Any]) -> None:
    """Called once when the worker process starts."""
    setup_logging(settings.log_level, settings.environment)
    init_database()

    llm_client = LLMClientAdapter.from_settings()
    ctx["llm_client"] = llm_client
    ctx["classifier"] = TicketClassifier(llm_client, ClassifierConfig.from_settings(settings))
    ctx["repository_scope"] = sqlalchemy_repository_scope
    ctx["retry_policy"] = JobRetryPolicy.from_settings(settings)

    logger.info(
        "Classification worker started",
        extra={"classification_mode": ctx["classifier"].mode.value, "model": settings.llm_model},
    )


async def shutdown(ctx: Dict[str, Any]) -> None:
    llm_client = ctx.get("llm_client")
    if llm_client is not None:
        await llm_client.close()
    await close_database()
    logger.info("Classification worker shut down")


# ========== Jobs ==========

async def classify_ticket(ctx: Dict[str, Any], ticket_id: str) -> Dict[str, Any]:
    """
    arq job: classify one ticket and store the result.

    Transient failures are retried with the configured backoff. After the
    last attempt the failure is logged and the job completes with status
    ``failed`` instead of raising.
    """
    policy: JobRetryPolicy = ctx.get("retry_policy") or JobRetryPolicy.from_settings(settings)
    attempt = ctx.get("job_try", 1)

    try:
        async with ctx["repository_scope"]() as repository:
            dispatcher = ClassificationDispatcher(repository, ctx["classifier"])
            result = await asyncio.wait_for(dispatcher.run(ticket_id), timeout=policy.timeout)
    except TRANSIENT_ERRORS as e:
        error = str(e) or type(e).__name__
        if policy.should_retry(attempt):
            delay = policy.delay_for(attempt)
            logger.warning(
                "Classification attempt failed, retrying",
                extra={"ticket_id": ticket_id, "attempt": attempt, "retry_in_seconds": delay, "error": error},
            )
            raise Retry(defer=delay) from e

        logger.error(
            "Ticket classification job failed",
            extra={"ticket_id": ticket_id, "attempts": attempt, "error": error},
        )
        return {"status": "failed", "ticket_id": ticket_id, "error": error}

    if result is None:
        return {"status": "skipped", "ticket_id": ticket_id}

    return {
        "status": "classified",
        "ticket_id": ticket_id,
        "category": result.category.value,
        "confidence": result.confidence,
    }


class WorkerSettings:
    """arq worker configuration."""

    functions = [
        func(
            classify_ticket,
            name=CLASSIFICATION_TASK,
            max_tries=settings.classification_job_tries,
            # Slightly above the per-attempt budget enforced inside the job
            timeout=settings.classification_job_timeout + 5,
        )
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = redis_settings()
    max_tries = settings.classification_job_tries
