"""
Tickets Infrastructure Layer
============================

Infrastructure implementations for the tickets module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: Data access implementations
- External: External service adapters (LLM, task queue)
"""

from helpdesk.tickets.infrastructure.models import TicketModel
from helpdesk.tickets.infrastructure.repositories import SQLAlchemyTicketRepository
from helpdesk.tickets.infrastructure.external import LLMClientAdapter, TaskQueueAdapter

__all__ = [
    "TicketModel",
    "SQLAlchemyTicketRepository",
    "LLMClientAdapter",
    "TaskQueueAdapter",
]
