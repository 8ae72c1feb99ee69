"""Shared fixtures and in-memory fakes for the helpdesk tests."""

import random
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from helpdesk.config import LOW_CONFIDENCE_THRESHOLD, TicketCategory, TicketStatus
from helpdesk.core import RepositoryException, TaskQueueException
from helpdesk.infrastructure.database import Base
from helpdesk.infrastructure.llm import ChatCompletionResult
from helpdesk.infrastructure.ratelimit import MemoryRateLimitStore
from helpdesk.tickets.application import ILLMClient, ITaskQueue, ITicketRepository, TicketListQuery
from helpdesk.tickets.domain import ClassificationResult, Ticket

BASE_TIME = datetime(2025, 9, 4, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock that only moves when told to; ``sleep`` advances it."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


class FakeTicketRepository(ITicketRepository):
    """Dict-backed repository with the same selection rules as the SQL one."""

    def __init__(self):
        self.tickets: Dict[str, Ticket] = {}
        self.fail_apply_times = 0
        self._next_id = 1

    def add(self, ticket: Ticket) -> Ticket:
        if ticket.id is None:
            ticket = replace(ticket, id=f"ticket-{self._next_id}")
            self._next_id += 1
        self.tickets[ticket.id] = replace(ticket)
        return replace(ticket)

    async def create(self, ticket: Ticket) -> Ticket:
        return self.add(ticket)

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        ticket = self.tickets.get(ticket_id)
        return replace(ticket) if ticket else None

    async def list(self, query: TicketListQuery) -> Tuple[List[Ticket], int]:
        items = list(self.tickets.values())
        if query.search:
            needle = query.search.lower()
            items = [t for t in items if needle in t.subject.lower() or needle in t.body.lower()]
        if query.status:
            items = [t for t in items if t.status == query.status]
        if query.category:
            items = [t for t in items if t.category == query.category]
        items.sort(key=lambda t: t.created_at, reverse=True)
        page = items[query.offset:query.offset + query.per_page]
        return [replace(t) for t in page], len(items)

    async def save(self, ticket: Ticket) -> Ticket:
        if ticket.id not in self.tickets:
            raise RepositoryException(f"Ticket {ticket.id} not found")
        self.tickets[ticket.id] = replace(ticket)
        return replace(ticket)

    async def list_for_classification(self, force: bool = False) -> List[Ticket]:
        items = list(self.tickets.values())
        if not force:
            items = [
                t for t in items
                if t.category is None or (t.confidence is not None and t.confidence < LOW_CONFIDENCE_THRESHOLD)
            ]
        return [replace(t) for t in sorted(items, key=lambda t: t.created_at)]

    async def apply_classification(self, ticket_id: str, result: ClassificationResult) -> bool:
        if self.fail_apply_times > 0:
            self.fail_apply_times -= 1
            raise RepositoryException("database is locked")
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            return False
        # Mirrors the CASE in the SQL UPDATE: a manual category is kept
        if not ticket.manually_categorized:
            ticket.category = result.category
        ticket.confidence = round(result.confidence, 2)
        ticket.explanation = result.explanation
        ticket.updated_at = datetime.now(timezone.utc)
        return True

    async def stats(self) -> Dict[str, Any]:
        tickets = list(self.tickets.values())
        classified = [t for t in tickets if t.category is not None]
        by_status: Dict[str, int] = {}
        by_category: Dict[str, int] = {}
        for t in tickets:
            by_status[t.status.value] = by_status.get(t.status.value, 0) + 1
        for t in classified:
            by_category[t.category.value] = by_category.get(t.category.value, 0) + 1
        confidences = [t.confidence for t in tickets if t.confidence is not None]
        return {
            "total_tickets": len(tickets),
            "by_status": by_status,
            "by_category": by_category,
            "classified_tickets": len(classified),
            "average_confidence": round(sum(confidences) / len(confidences), 2) if confidences else None,
        }


class FakeTaskQueue(ITaskQueue):
    """Records enqueued jobs; raises for ticket ids listed in ``fail_for``."""

    def __init__(self, fail_for: Optional[set] = None):
        self.jobs: List[Tuple[str, Dict[str, Any]]] = []
        self.fail_for = fail_for or set()

    async def enqueue(self, task_name: str, **payload: Any) -> str:
        if payload.get("ticket_id") in self.fail_for:
            raise TaskQueueException("Redis connection refused")
        self.jobs.append((task_name, payload))
        return f"job-{len(self.jobs)}"

    @property
    def ticket_ids(self) -> List[str]:
        return [payload["ticket_id"] for _, payload in self.jobs]


class FakeLLMClient(ILLMClient):
    """Returns a canned answer (or raises) and records every call."""

    def __init__(self, content: Optional[str] = None, error: Optional[Exception] = None, model: str = "gpt-test"):
        self.content = content
        self.error = error
        self.model = model
        self.calls: List[Dict[str, Any]] = []

    async def chat_completion(self, messages: List[dict], temperature: float, max_tokens: int) -> Any:
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return ChatCompletionResult(
            content=self.content,
            model=self.model,
            prompt_tokens=50,
            completion_tokens=20,
            latency_ms=5,
        )


def make_ticket(
    index: int = 0,
    category: Optional[TicketCategory] = None,
    confidence: Optional[float] = None,
    manually_categorized: bool = False,
    status: TicketStatus = TicketStatus.OPEN,
    subject: Optional[str] = None,
    body: str = "The dashboard shows a blank page after login.",
) -> Ticket:
    return Ticket(
        id=None,
        subject=subject or f"Ticket number {index}",
        body=body,
        status=status,
        category=category,
        confidence=confidence,
        manually_categorized=manually_categorized,
        created_at=BASE_TIME + timedelta(minutes=index),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryRateLimitStore(clock=clock)


@pytest.fixture
def repository():
    return FakeTicketRepository()


@pytest.fixture
def task_queue():
    return FakeTaskQueue()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest_asyncio.fixture
async def db_session():
    """In-memory SQLite session with the tickets table created."""
    import helpdesk.tickets.infrastructure.models  # noqa: F401

    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session

    await engine.dispose()
