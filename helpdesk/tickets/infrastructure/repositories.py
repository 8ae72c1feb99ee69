"""
Tickets Infrastructure Repositories
===================================

SQLAlchemy implementation of the ticket repository.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.config import LOW_CONFIDENCE_THRESHOLD, TicketCategory, TicketStatus
from helpdesk.core import RepositoryException
from helpdesk.tickets.application.dto import TicketListQuery
from helpdesk.tickets.application.services import ITicketRepository
from helpdesk.tickets.domain import ClassificationResult, Ticket
from helpdesk.tickets.infrastructure.models import TicketModel


def _parse_id(ticket_id: str) -> Optional[UUID]:
    try:
        return UUID(str(ticket_id))
    except ValueError:
        return None


def _to_entity(model: TicketModel) -> Ticket:
    return Ticket(
        id=str(model.id),
        subject=model.subject,
        body=model.body,
        status=TicketStatus(model.status),
        category=TicketCategory(model.category) if model.category else None,
        confidence=model.confidence,
        explanation=model.explanation,
        note=model.note,
        manually_categorized=model.manually_categorized,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    The session is owned by the caller; this class only flushes.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get_model(self, ticket_id: str) -> Optional[TicketModel]:
        ticket_uuid = _parse_id(ticket_id)
        if ticket_uuid is None:
            return None

        stmt = (
            select(TicketModel)
            .where(TicketModel.id == ticket_uuid)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, ticket: Ticket) -> Ticket:
        """Create new ticket."""
        model = TicketModel(
            id=uuid4(),
            subject=ticket.subject,
            body=ticket.body,
            status=ticket.status.value,
            category=ticket.category.value if ticket.category else None,
            confidence=ticket.confidence,
            explanation=ticket.explanation,
            note=ticket.note,
            manually_categorized=ticket.manually_categorized,
            created_at=ticket.created_at,
        )

        try:
            self._session.add(model)
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to create ticket: {e}") from e

        return _to_entity(model)

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by ID."""
        model = await self._get_model(ticket_id)
        return _to_entity(model) if model else None

    async def list(self, query: TicketListQuery) -> Tuple[List[Ticket], int]:
        """List tickets with filters, newest first."""
        stmt = select(TicketModel)

        if query.search:
            pattern = f"%{query.search}%"
            stmt = stmt.where(or_(TicketModel.subject.ilike(pattern), TicketModel.body.ilike(pattern)))
        if query.status:
            stmt = stmt.where(TicketModel.status == query.status.value)
        if query.category:
            stmt = stmt.where(TicketModel.category == query.category.value)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self._session.execute(count_stmt)).scalar_one()

        stmt = stmt.order_by(TicketModel.created_at.desc()).limit(query.per_page).offset(query.offset)
        result = await self._session.execute(stmt)
        return [_to_entity(m) for m in result.scalars().all()], total

    async def save(self, ticket: Ticket) -> Ticket:
        """Update the fields a person can edit."""
        model = await self._get_model(ticket.id)
        if not model:
            raise RepositoryException(f"Ticket {ticket.id} not found")

        model.status = ticket.status.value
        model.category = ticket.category.value if ticket.category else None
        model.note = ticket.note
        model.manually_categorized = ticket.manually_categorized
        model.updated_at = datetime.now(timezone.utc)

        try:
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to update ticket {ticket.id}: {e}") from e

        return _to_entity(model)

    async def list_for_classification(self, force: bool = False) -> List[Ticket]:
        """Unclassified or low-confidence tickets (every ticket when forced), oldest first."""
        stmt = select(TicketModel)
        if not force:
            stmt = stmt.where(
                or_(
                    TicketModel.category.is_(None),
                    TicketModel.confidence < LOW_CONFIDENCE_THRESHOLD,
                )
            )
        stmt = stmt.order_by(TicketModel.created_at.asc())

        result = await self._session.execute(stmt)
        return [_to_entity(m) for m in result.scalars().all()]

    async def apply_classification(self, ticket_id: str, result: ClassificationResult) -> bool:
        """
        Store a classification with a single UPDATE.

        The manual flag is read by the database inside the same statement, so
        a category chosen by a person between load and write is never
        overwritten.
        """
        ticket_uuid = _parse_id(ticket_id)
        if ticket_uuid is None:
            return False

        stmt = (
            update(TicketModel)
            .where(TicketModel.id == ticket_uuid)
            .values(
                category=case(
                    (TicketModel.manually_categorized, TicketModel.category),
                    else_=result.category.value,
                ),
                confidence=round(result.confidence, 2),
                explanation=result.explanation,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )

        try:
            outcome = await self._session.execute(stmt)
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to store classification for ticket {ticket_id}: {e}") from e

        return outcome.rowcount > 0

    async def stats(self) -> Dict[str, Any]:
        """Counts per status and category, plus classification coverage."""
        total = (await self._session.execute(select(func.count(TicketModel.id)))).scalar_one()

        status_rows = await self._session.execute(
            select(TicketModel.status, func.count(TicketModel.id)).group_by(TicketModel.status)
        )
        category_rows = await self._session.execute(
            select(TicketModel.category, func.count(TicketModel.id))
            .where(TicketModel.category.is_not(None))
            .group_by(TicketModel.category)
        )
        classified = (
            await self._session.execute(
                select(func.count(TicketModel.id)).where(TicketModel.category.is_not(None))
            )
        ).scalar_one()
        # A cleared category keeps its confidence, so it still counts here
        average = (
            await self._session.execute(
                select(func.avg(TicketModel.confidence)).where(TicketModel.confidence.is_not(None))
            )
        ).scalar_one()

        return {
            "total_tickets": total,
            "by_status": {status: count for status, count in status_rows.all()},
            "by_category": {category: count for category, count in category_rows.all()},
            "classified_tickets": classified,
            "average_confidence": round(float(average), 2) if average is not None else None,
        }
