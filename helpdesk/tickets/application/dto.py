"""
Tickets Application DTOs
========================

Data Transfer Objects for the tickets API layer.

Pydantic models for request/response validation.
"""

import math
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from helpdesk.config import TicketCategory, TicketStatus
from helpdesk.tickets.domain import Ticket

MAX_PER_PAGE = 50


# ========== Request DTOs ==========

class TicketCreateRequest(BaseModel):
    """Request model for ticket creation."""
    subject: str = Field(..., min_length=1, max_length=255, description="Ticket subject")
    body: str = Field(..., min_length=1, description="Ticket description")
    status: TicketStatus = Field(default=TicketStatus.OPEN, description="Initial status")

    @field_validator("subject", "body")
    @classmethod
    def strip_text(cls, v: str) -> str:
        """Reject whitespace-only text."""
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class TicketUpdateRequest(BaseModel):
    """
    Request model for ticket updates.

    Only fields present in the payload are applied; an explicit null category
    clears it.
    """
    status: Optional[TicketStatus] = None
    category: Optional[TicketCategory] = None
    note: Optional[str] = None


class TicketListQuery(BaseModel):
    """Filters and pagination for listing tickets."""
    search: Optional[str] = Field(None, description="Matches subject or body")
    status: Optional[TicketStatus] = None
    category: Optional[TicketCategory] = None
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=10, ge=1)

    @field_validator("per_page")
    @classmethod
    def cap_per_page(cls, v: int) -> int:
        """Large pages are capped rather than rejected."""
        return min(v, MAX_PER_PAGE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


# ========== Response DTOs ==========

class TicketResponse(BaseModel):
    """Single ticket as returned by the API."""
    id: str
    subject: str
    body: str
    status: TicketStatus
    category: Optional[TicketCategory]
    category_label: Optional[str]
    confidence: Optional[float]
    explanation: Optional[str]
    note: Optional[str]
    manually_categorized: bool
    created_at: datetime
    updated_at: Optional[datetime]

    @classmethod
    def from_domain(cls, ticket: Ticket) -> "TicketResponse":
        """Create from domain entity."""
        return cls(
            id=str(ticket.id),
            subject=ticket.subject,
            body=ticket.body,
            status=ticket.status,
            category=ticket.category,
            category_label=ticket.category_label,
            confidence=ticket.confidence,
            explanation=ticket.explanation,
            note=ticket.note,
            manually_categorized=ticket.manually_categorized,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )


class TicketListResponse(BaseModel):
    """Paginated ticket list."""
    items: List[TicketResponse]
    total: int
    page: int
    per_page: int
    pages: int

    @classmethod
    def build(cls, tickets: List[Ticket], total: int, query: TicketListQuery) -> "TicketListResponse":
        return cls(
            items=[TicketResponse.from_domain(t) for t in tickets],
            total=total,
            page=query.page,
            per_page=query.per_page,
            pages=math.ceil(total / query.per_page) if total else 0,
        )


class ClassificationQueuedResponse(BaseModel):
    """Response for a queued classification job."""
    message: str = "Classification job queued successfully"
    ticket_id: str
    job_id: Optional[str] = None


class StatsResponse(BaseModel):
    """Dashboard statistics."""
    total_tickets: int
    by_status: Dict[str, int]
    by_category: Dict[str, int]
    classified_tickets: int
    average_confidence: Optional[float]
