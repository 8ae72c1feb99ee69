"""Tests for the SQLAlchemy ticket repository on an in-memory SQLite database."""

import pytest

from helpdesk.config import TicketCategory, TicketStatus
from helpdesk.tickets.application import TicketListQuery
from helpdesk.tickets.domain import ClassificationResult
from helpdesk.tickets.infrastructure import SQLAlchemyTicketRepository

from tests.conftest import make_ticket


@pytest.fixture
def sql_repository(db_session):
    return SQLAlchemyTicketRepository(db_session)


def classification(category=TicketCategory.TECHNICAL, confidence=0.876, explanation="Server error on login"):
    return ClassificationResult(
        category=category,
        explanation=explanation,
        confidence=confidence,
        model_used="gpt-test",
    )


@pytest.mark.asyncio
async def test_create_and_get(sql_repository):
    created = await sql_repository.create(make_ticket(subject="Cannot log in"))

    fetched = await sql_repository.get_by_id(created.id)

    assert fetched.id == created.id
    assert fetched.subject == "Cannot log in"
    assert fetched.status is TicketStatus.OPEN
    assert fetched.category is None
    assert fetched.manually_categorized is False


@pytest.mark.asyncio
async def test_get_with_invalid_id_returns_none(sql_repository):
    assert await sql_repository.get_by_id("not-a-uuid") is None
    assert await sql_repository.get_by_id("123e4567-e89b-12d3-a456-426614174000") is None


@pytest.mark.asyncio
async def test_list_filters_and_orders_newest_first(sql_repository):
    await sql_repository.create(make_ticket(0, subject="Invoice missing"))
    await sql_repository.create(make_ticket(1, subject="App crash", category=TicketCategory.TECHNICAL))
    await sql_repository.create(make_ticket(2, subject="Refund", body="Second invoice looks wrong"))
    await sql_repository.create(make_ticket(3, subject="Closed one", status=TicketStatus.CLOSED))

    items, total = await sql_repository.list(TicketListQuery())
    assert total == 4
    assert [t.subject for t in items] == ["Closed one", "Refund", "App crash", "Invoice missing"]

    items, total = await sql_repository.list(TicketListQuery(search="INVOICE"))
    assert total == 2
    assert {t.subject for t in items} == {"Invoice missing", "Refund"}

    items, _ = await sql_repository.list(TicketListQuery(status=TicketStatus.CLOSED))
    assert [t.subject for t in items] == ["Closed one"]

    items, _ = await sql_repository.list(TicketListQuery(category=TicketCategory.TECHNICAL))
    assert [t.subject for t in items] == ["App crash"]


@pytest.mark.asyncio
async def test_list_paginates(sql_repository):
    for i in range(5):
        await sql_repository.create(make_ticket(i))

    items, total = await sql_repository.list(TicketListQuery(page=2, per_page=2))

    assert total == 5
    assert [t.subject for t in items] == ["Ticket number 2", "Ticket number 1"]


@pytest.mark.asyncio
async def test_list_for_classification(sql_repository):
    unclassified = await sql_repository.create(make_ticket(2))
    low = await sql_repository.create(make_ticket(1, category=TicketCategory.BILLING, confidence=0.49))
    await sql_repository.create(make_ticket(0, category=TicketCategory.BILLING, confidence=0.5))

    selected = await sql_repository.list_for_classification()
    assert [t.id for t in selected] == [low.id, unclassified.id]

    forced = await sql_repository.list_for_classification(force=True)
    assert len(forced) == 3


@pytest.mark.asyncio
async def test_apply_classification_sets_category(sql_repository):
    ticket = await sql_repository.create(make_ticket())

    assert await sql_repository.apply_classification(ticket.id, classification()) is True

    stored = await sql_repository.get_by_id(ticket.id)
    assert stored.category is TicketCategory.TECHNICAL
    assert stored.confidence == 0.88
    assert stored.explanation == "Server error on login"


@pytest.mark.asyncio
async def test_apply_classification_keeps_manual_category(sql_repository):
    ticket = await sql_repository.create(
        make_ticket(category=TicketCategory.BILLING, manually_categorized=True)
    )

    await sql_repository.apply_classification(ticket.id, classification(confidence=0.42))

    stored = await sql_repository.get_by_id(ticket.id)
    assert stored.category is TicketCategory.BILLING
    assert stored.manually_categorized is True
    assert stored.confidence == 0.42
    assert stored.explanation == "Server error on login"


@pytest.mark.asyncio
async def test_apply_classification_to_missing_ticket(sql_repository):
    missing = "123e4567-e89b-12d3-a456-426614174000"

    assert await sql_repository.apply_classification(missing, classification()) is False
    assert await sql_repository.apply_classification("junk", classification()) is False


@pytest.mark.asyncio
async def test_save_persists_manual_changes(sql_repository):
    ticket = await sql_repository.create(make_ticket())
    ticket.status = TicketStatus.IN_PROGRESS
    ticket.note = "Waiting for logs"
    ticket.change_category(TicketCategory.ACCOUNT)

    await sql_repository.save(ticket)

    stored = await sql_repository.get_by_id(ticket.id)
    assert stored.status is TicketStatus.IN_PROGRESS
    assert stored.note == "Waiting for logs"
    assert stored.category is TicketCategory.ACCOUNT
    assert stored.manually_categorized is True
    assert stored.updated_at is not None


@pytest.mark.asyncio
async def test_stats(sql_repository):
    await sql_repository.create(make_ticket(0, category=TicketCategory.BILLING, confidence=0.8))
    await sql_repository.create(make_ticket(1, category=TicketCategory.BILLING, confidence=0.6))
    await sql_repository.create(make_ticket(2, status=TicketStatus.RESOLVED))

    stats = await sql_repository.stats()

    assert stats["total_tickets"] == 3
    assert stats["by_status"] == {"open": 2, "resolved": 1}
    assert stats["by_category"] == {"billing": 2}
    assert stats["classified_tickets"] == 2
    assert stats["average_confidence"] == 0.7


@pytest.mark.asyncio
async def test_stats_average_includes_tickets_with_cleared_category(sql_repository):
    await sql_repository.create(make_ticket(0, category=TicketCategory.BILLING, confidence=0.8))
    cleared = await sql_repository.create(make_ticket(1, category=TicketCategory.TECHNICAL, confidence=0.4))
    cleared.change_category(None)
    await sql_repository.save(cleared)

    stats = await sql_repository.stats()

    assert stats["classified_tickets"] == 1
    assert stats["by_category"] == {"billing": 1}
    assert stats["average_confidence"] == 0.6
