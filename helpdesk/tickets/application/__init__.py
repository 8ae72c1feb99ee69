"""
Tickets Application Layer
=========================

Application layer for the tickets module.

Contains:
- Services: ticket CRUD, classification, the classification job
- Bulk: rate-limited batch dispatch of classification jobs
- DTOs: Data transfer objects for API serialization
"""

from helpdesk.tickets.application.dto import (
    ClassificationQueuedResponse,
    StatsResponse,
    TicketCreateRequest,
    TicketListQuery,
    TicketListResponse,
    TicketResponse,
    TicketUpdateRequest,
)
from helpdesk.tickets.application.services import (
    ClassificationDispatcher,
    ClassificationMode,
    ClassifierConfig,
    ILLMClient,
    ITaskQueue,
    ITicketRepository,
    JobRetryPolicy,
    TicketClassifier,
    TicketService,
)
from helpdesk.tickets.application.bulk import (
    BulkClassificationPlan,
    BulkClassificationReport,
    BulkClassificationService,
    BulkClassifyOptions,
    format_duration,
)

__all__ = [
    # DTOs
    "ClassificationQueuedResponse",
    "StatsResponse",
    "TicketCreateRequest",
    "TicketListQuery",
    "TicketListResponse",
    "TicketResponse",
    "TicketUpdateRequest",
    # Services
    "ClassificationDispatcher",
    "ClassificationMode",
    "ClassifierConfig",
    "JobRetryPolicy",
    "TicketClassifier",
    "TicketService",
    "BulkClassificationPlan",
    "BulkClassificationReport",
    "BulkClassificationService",
    "BulkClassifyOptions",
    "format_duration",
    # Interfaces
    "ILLMClient",
    "ITaskQueue",
    "ITicketRepository",
]
