"""
Tickets Controllers (API Routes)
================================

FastAPI routes for ticket endpoints.

Controllers delegate to application services.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.config import TicketCategory, TicketStatus
from helpdesk.core import ResourceNotFoundException, TaskQueueException
from helpdesk.infrastructure.database import get_session
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.tickets.application import (
    ClassificationQueuedResponse,
    ITaskQueue,
    ITicketRepository,
    StatsResponse,
    TicketCreateRequest,
    TicketListQuery,
    TicketListResponse,
    TicketResponse,
    TicketService,
    TicketUpdateRequest,
)
from helpdesk.tickets.application.dto import MAX_PER_PAGE
from helpdesk.tickets.infrastructure import SQLAlchemyTicketRepository

logger = get_logger(__name__)
router = APIRouter(prefix="/tickets", tags=["Tickets"])
stats_router = APIRouter(tags=["Dashboard"])


# ========== Example payloads for Swagger ==========

TICKET_RESPONSE_EXAMPLE = {
    "id": "123e4567-e89b-12d3-a456-426614174000",
    "subject": "Cannot log in after password reset",
    "body": "I reset my password this morning and the login page now says my account is locked.",
    "status": "open",
    "category": "account",
    "category_label": "Account Management",
    "confidence": 0.87,
    "explanation": "Login failure after password reset points to an account issue",
    "note": None,
    "manually_categorized": False,
    "created_at": "2025-09-04T10:15:00Z",
    "updated_at": "2025-09-04T10:15:04Z"
}


# ========== Dependencies ==========

async def get_ticket_repository(db: AsyncSession = Depends(get_session)) -> ITicketRepository:
    return SQLAlchemyTicketRepository(db)


async def get_task_queue(request: Request) -> Optional[ITaskQueue]:
    return getattr(request.app.state, "task_queue", None)


async def get_ticket_service(
    repository: ITicketRepository = Depends(get_ticket_repository),
    task_queue: Optional[ITaskQueue] = Depends(get_task_queue),
) -> TicketService:
    return TicketService(repository, task_queue)


def _not_found(e: ResourceNotFoundException) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


# ========== Route Handlers ==========

@router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a ticket",
)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketService = Depends(get_ticket_service)
):
    ticket = await service.create(payload)
    return TicketResponse.from_domain(ticket)


@router.get(
    "",
    response_model=TicketListResponse,
    summary="List tickets",
    description=f"""
    Newest tickets first.

    - **search**: matches subject or body
    - **status** / **category**: exact filters
    - **per_page**: capped at {MAX_PER_PAGE}
    """,
)
async def list_tickets(
    search: Optional[str] = Query(None, description="Text to look for in subject or body"),
    ticket_status: Optional[TicketStatus] = Query(None, alias="status"),
    category: Optional[TicketCategory] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1),
    service: TicketService = Depends(get_ticket_service)
):
    query = TicketListQuery(
        search=search or None,
        status=ticket_status,
        category=category,
        page=page,
        per_page=per_page,
    )
    tickets, total = await service.list(query)
    return TicketListResponse.build(tickets, total, query)


@router.get(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Get a ticket",
    responses={
        200: {"content": {"application/json": {"example": TICKET_RESPONSE_EXAMPLE}}},
        404: {"description": "Ticket not found"},
    },
)
async def get_ticket(ticket_id: str, service: TicketService = Depends(get_ticket_service)):
    try:
        ticket = await service.get(ticket_id)
    except ResourceNotFoundException as e:
        raise _not_found(e)
    return TicketResponse.from_domain(ticket)


@router.patch(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Update a ticket",
    description="""
    Update status, category and note.

    Setting a category marks the ticket as manually categorized: later
    classification runs refresh explanation and confidence but keep the category.
    """,
)
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    service: TicketService = Depends(get_ticket_service)
):
    try:
        ticket = await service.update(ticket_id, payload)
    except ResourceNotFoundException as e:
        raise _not_found(e)
    return TicketResponse.from_domain(ticket)


@router.post(
    "/{ticket_id}/classify",
    response_model=ClassificationQueuedResponse,
    summary="Queue AI classification for a ticket",
    responses={
        404: {"description": "Ticket not found"},
        503: {"description": "Task queue unavailable"},
    },
)
async def classify_ticket(
    request: Request,
    ticket_id: str,
    service: TicketService = Depends(get_ticket_service)
):
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    try:
        job_id = await service.request_classification(ticket_id)
    except ResourceNotFoundException as e:
        raise _not_found(e)
    except TaskQueueException as e:
        logger.error(
            "Classification request failed",
            extra={"correlation_id": correlation_id, "ticket_id": ticket_id, "error": e.message},
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Classification queue unavailable"
        )

    return ClassificationQueuedResponse(ticket_id=ticket_id, job_id=job_id)


@stats_router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Ticket statistics",
)
async def get_stats(service: TicketService = Depends(get_ticket_service)):
    return StatsResponse(**await service.stats())
