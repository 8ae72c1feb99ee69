"""Tests for the tickets HTTP API."""

import pytest
from fastapi.testclient import TestClient

from helpdesk.config import TicketCategory
from helpdesk.main import app
from helpdesk.tickets.interfaces.controllers import get_task_queue, get_ticket_repository

from tests.conftest import FakeTaskQueue, FakeTicketRepository, make_ticket


@pytest.fixture
def repository():
    return FakeTicketRepository()


@pytest.fixture
def task_queue():
    return FakeTaskQueue()


@pytest.fixture
def client(repository, task_queue):
    app.dependency_overrides[get_ticket_repository] = lambda: repository
    app.dependency_overrides[get_task_queue] = lambda: task_queue
    # No context manager: lifespan (database, Redis) is not started
    yield TestClient(app)
    app.dependency_overrides.clear()


# ── Create ───────────────────────────────────────────────────────────────

def test_create_ticket(client, repository):
    resp = client.post("/tickets", json={"subject": "  Cannot log in ", "body": "Password reset loops"})

    assert resp.status_code == 201
    data = resp.json()
    assert data["subject"] == "Cannot log in"
    assert data["status"] == "open"
    assert data["category"] is None
    assert data["manually_categorized"] is False
    assert data["id"] in repository.tickets


@pytest.mark.parametrize("payload", [
    {"subject": "hello"},
    {"subject": "", "body": "some body"},
    {"subject": "   ", "body": "some body"},
    {"subject": "x" * 256, "body": "some body"},
])
def test_create_ticket_validation(client, payload):
    assert client.post("/tickets", json=payload).status_code == 422


# ── List / show ──────────────────────────────────────────────────────────

def test_list_tickets_newest_first(client, repository):
    for i in range(3):
        repository.add(make_ticket(i))

    resp = client.get("/tickets")

    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 3
    assert [t["subject"] for t in data["items"]] == ["Ticket number 2", "Ticket number 1", "Ticket number 0"]


def test_list_tickets_filters(client, repository):
    repository.add(make_ticket(0, subject="Invoice missing"))
    repository.add(make_ticket(1, category=TicketCategory.TECHNICAL, confidence=0.9))

    resp = client.get("/tickets", params={"search": "invoice"})
    assert [t["subject"] for t in resp.json()["items"]] == ["Invoice missing"]

    resp = client.get("/tickets", params={"category": "technical"})
    assert resp.json()["total"] == 1

    assert client.get("/tickets", params={"status": "archived"}).status_code == 422


def test_per_page_is_capped(client):
    resp = client.get("/tickets", params={"per_page": 500})

    assert resp.status_code == 200
    assert resp.json()["per_page"] == 50


def test_get_ticket(client, repository):
    ticket = repository.add(make_ticket(category=TicketCategory.BILLING, confidence=0.8))

    resp = client.get(f"/tickets/{ticket.id}")

    assert resp.status_code == 200
    assert resp.json()["category_label"] == "Billing & Payment"


def test_get_missing_ticket(client):
    assert client.get("/tickets/missing").status_code == 404


# ── Update ───────────────────────────────────────────────────────────────

def test_category_change_marks_manual(client, repository):
    ticket = repository.add(make_ticket(category=TicketCategory.GENERAL, confidence=0.7))

    resp = client.patch(f"/tickets/{ticket.id}", json={"category": "billing", "note": "Checked by agent"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["category"] == "billing"
    assert data["note"] == "Checked by agent"
    assert data["manually_categorized"] is True
    assert repository.tickets[ticket.id].manually_categorized is True


def test_status_change_does_not_mark_manual(client, repository):
    ticket = repository.add(make_ticket())

    resp = client.patch(f"/tickets/{ticket.id}", json={"status": "resolved"})

    assert resp.status_code == 200
    assert resp.json()["status"] == "resolved"
    assert resp.json()["manually_categorized"] is False


def test_update_missing_ticket(client):
    assert client.patch("/tickets/missing", json={"status": "closed"}).status_code == 404


# ── Classify ─────────────────────────────────────────────────────────────

def test_classify_queues_job(client, repository, task_queue):
    ticket = repository.add(make_ticket())

    resp = client.post(f"/tickets/{ticket.id}/classify")

    assert resp.status_code == 200
    assert resp.json()["message"] == "Classification job queued successfully"
    assert task_queue.jobs == [("classify_ticket", {"ticket_id": ticket.id})]


def test_classify_missing_ticket(client, task_queue):
    assert client.post("/tickets/missing/classify").status_code == 404
    assert task_queue.jobs == []


def test_classify_when_queue_fails(client, repository, task_queue):
    ticket = repository.add(make_ticket())
    task_queue.fail_for.add(ticket.id)

    assert client.post(f"/tickets/{ticket.id}/classify").status_code == 503


def test_classify_without_queue(repository):
    app.dependency_overrides[get_ticket_repository] = lambda: repository
    app.dependency_overrides[get_task_queue] = lambda: None
    try:
        ticket = repository.add(make_ticket())
        resp = TestClient(app).post(f"/tickets/{ticket.id}/classify")
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 503


# ── Stats / health ───────────────────────────────────────────────────────

def test_stats(client, repository):
    repository.add(make_ticket(0, category=TicketCategory.BILLING, confidence=0.8))
    repository.add(make_ticket(1))

    resp = client.get("/stats")

    assert resp.status_code == 200
    data = resp.json()
    assert data["total_tickets"] == 2
    assert data["by_category"] == {"billing": 1}
    assert data["classified_tickets"] == 1
    assert data["average_confidence"] == 0.8


def test_health_reports_checks(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert set(resp.json()["checks"]) == {"database", "task_queue", "classification"}


def test_correlation_id_is_echoed(client):
    resp = client.get("/health", headers={"X-Correlation-ID": "abc-123"})

    assert resp.headers["X-Correlation-ID"] == "abc-123"
