"""
Tickets Application Services
============================

Application services for ticket management and classification.

Orchestrates business logic between domain entities, repositories, the
LLM and the task queue.
"""

import json
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from helpdesk.config import (
    CLASSIFICATION_TASK,
    VALID_CATEGORIES,
    Settings,
    TicketCategory,
)
from helpdesk.core import ResourceNotFoundException, TaskQueueException
from helpdesk.shared.infrastructure.logging import get_logger, log_latency
from helpdesk.tickets.application.dto import (
    TicketCreateRequest,
    TicketListQuery,
    TicketUpdateRequest,
)
from helpdesk.tickets.domain import (
    MAX_EXPLANATION_LENGTH,
    ClassificationPromptBuilder,
    ClassificationResult,
    Ticket,
)

logger = get_logger(__name__)

FALLBACK_EXPLANATION = "Auto-classified (AI disabled)"
REQUIRED_KEYS = ("category", "explanation", "confidence")


# ========== Repository Interfaces ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def create(self, ticket: Ticket) -> Ticket:
        """Persist a new ticket and return it with its id."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by id."""

    @abstractmethod
    async def list(self, query: TicketListQuery) -> Tuple[List[Ticket], int]:
        """Filtered page of tickets, newest first, plus the total count."""

    @abstractmethod
    async def save(self, ticket: Ticket) -> Ticket:
        """Persist status, category, note and the manual flag."""

    @abstractmethod
    async def list_for_classification(self, force: bool = False) -> List[Ticket]:
        """Tickets eligible for bulk classification, oldest first."""

    @abstractmethod
    async def apply_classification(self, ticket_id: str, result: ClassificationResult) -> bool:
        """
        Store a classification in one atomic update.

        Explanation and confidence are always written; category only when the
        ticket is not manually categorized. Returns False if the ticket is gone.
        """

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        """Aggregates for the dashboard."""


class ILLMClient(ABC):
    """Interface for LLM operations."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float,
        max_tokens: int,
    ) -> Any:
        """Generate chat completion."""


class ITaskQueue(ABC):
    """Interface for handing jobs to the background worker."""

    @abstractmethod
    async def enqueue(self, task_name: str, **payload: Any) -> str:
        """Enqueue a job; returns its id."""


# ========== Ticket Service ==========

class TicketService:
    """
    Service for ticket CRUD and on-demand classification.
    """

    def __init__(self, repository: ITicketRepository, task_queue: Optional[ITaskQueue] = None):
        self._repository = repository
        self._task_queue = task_queue

    async def create(self, request: TicketCreateRequest) -> Ticket:
        ticket = Ticket(id=None, subject=request.subject, body=request.body, status=request.status)
        ticket = await self._repository.create(ticket)
        logger.info("Ticket created", extra={"ticket_id": ticket.id})
        return ticket

    async def get(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    async def list(self, query: TicketListQuery) -> Tuple[List[Ticket], int]:
        return await self._repository.list(query)

    async def update(self, ticket_id: str, request: TicketUpdateRequest) -> Ticket:
        """
        Apply the fields present in ``request``.

        Choosing a different category marks the ticket as manually categorized.
        """
        ticket = await self.get(ticket_id)
        changes = request.model_dump(exclude_unset=True)

        if changes.get("status") is not None:
            ticket.status = changes["status"]
        if "note" in changes:
            ticket.note = changes["note"]
        if "category" in changes:
            ticket.change_category(changes["category"])

        return await self._repository.save(ticket)

    async def request_classification(self, ticket_id: str) -> str:
        """Queue a classification job for one ticket."""
        ticket = await self.get(ticket_id)
        if self._task_queue is None:
            raise TaskQueueException("Task queue not configured")

        try:
            job_id = await self._task_queue.enqueue(CLASSIFICATION_TASK, ticket_id=str(ticket.id))
        except TaskQueueException as e:
            logger.error(
                "Failed to queue classification job",
                extra={"ticket_id": ticket.id, "error": str(e)},
            )
            raise

        logger.info("Classification job queued", extra={"ticket_id": ticket.id, "job_id": job_id})
        return job_id

    async def stats(self) -> Dict[str, Any]:
        return await self._repository.stats()


# ========== Classification ==========

class ClassificationMode(str, Enum):
    """Which path the classifier takes."""
    LIVE = "live"
    DISABLED = "disabled"


@dataclass(frozen=True)
class ClassifierConfig:
    """Classifier configuration, fixed at construction."""
    mode: ClassificationMode = ClassificationMode.LIVE
    temperature: float = 0.1
    max_tokens: int = 200

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClassifierConfig":
        return cls(
            mode=ClassificationMode.LIVE if settings.openai_classify_enabled else ClassificationMode.DISABLED,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )


class TicketClassifier:
    """
    Service for ticket classification using LLM.

    ``classify`` never raises: when classification is disabled, the LLM call
    fails, or the answer is malformed, it returns a placeholder result so that
    ticket workflows are never blocked by the AI service.
    """

    def __init__(
        self,
        llm_client: Optional[ILLMClient],
        config: Optional[ClassifierConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self._llm = llm_client
        self._config = config or ClassifierConfig()
        self._rng = rng or random.Random()

        self._mode = self._config.mode
        if self._mode is ClassificationMode.LIVE and self._llm is None:
            logger.warning("No LLM client configured - classification runs in placeholder mode")
            self._mode = ClassificationMode.DISABLED

    @property
    def mode(self) -> ClassificationMode:
        return self._mode

    async def classify(
        self,
        subject: str,
        body: str,
        ticket_id: Optional[str] = None
    ) -> ClassificationResult:
        """
        Classify a ticket by category.

        Args:
            subject: Ticket subject
            body: Ticket body
            ticket_id: Optional ticket ID for logging

        Returns:
            ClassificationResult with category, explanation, confidence
        """
        if self._mode is ClassificationMode.DISABLED:
            return self.fallback()

        messages = [
            {"role": "system", "content": ClassificationPromptBuilder.get_system_prompt()},
            {"role": "user", "content": ClassificationPromptBuilder.build_prompt(subject, body)},
        ]

        try:
            with log_latency(logger, "llm_classification", ticket_id=ticket_id):
                response = await self._llm.chat_completion(
                    messages=messages,
                    temperature=self._config.temperature,
                    max_tokens=self._config.max_tokens,
                )
            data = self._parse(response.content)
            return self._normalize(data, response.model)
        except Exception as e:
            logger.error(
                "OpenAI classification failed",
                extra={"ticket_id": ticket_id, "error": str(e), "error_type": type(e).__name__},
            )
            return self.fallback()

    def fallback(self) -> ClassificationResult:
        """Random placeholder classification."""
        return ClassificationResult(
            category=self._rng.choice(list(TicketCategory)),
            explanation=FALLBACK_EXPLANATION,
            confidence=round(self._rng.randint(60, 95) / 100, 2),
        )

    @staticmethod
    def _parse(content: Optional[str]) -> Dict[str, Any]:
        """Decode the JSON answer, tolerating markdown code fences."""
        text = (content or "").strip()
        if not text:
            raise ValueError("Empty response from OpenAI")

        if "```json" in text:
            text = text.split("```json")[1].split("```")[0].strip()
        elif "```" in text:
            text = text.split("```")[1].split("```")[0].strip()

        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("Classification response is not a JSON object")

        missing = [key for key in REQUIRED_KEYS if data.get(key) is None]
        if missing:
            raise ValueError(f"Classification result missing required fields: {', '.join(missing)}")
        return data

    @staticmethod
    def _normalize(data: Dict[str, Any], model: str) -> ClassificationResult:
        category = str(data["category"]).strip().lower()
        if category not in VALID_CATEGORIES:
            category = TicketCategory.GENERAL.value

        confidence = max(0.0, min(1.0, float(data["confidence"])))
        explanation = str(data["explanation"]).strip()[:MAX_EXPLANATION_LENGTH]

        return ClassificationResult(
            category=TicketCategory(category),
            explanation=explanation,
            confidence=confidence,
            model_used=model,
        )


# ========== Classification Job ==========

@dataclass(frozen=True)
class JobRetryPolicy:
    """Attempts, delays between attempts, and the per-attempt time budget."""
    max_tries: int = 3
    backoff: Tuple[int, ...] = (1, 5, 10)
    timeout: int = 120

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobRetryPolicy":
        return cls(
            max_tries=settings.classification_job_tries,
            backoff=tuple(settings.classification_job_backoff),
            timeout=settings.classification_job_timeout,
        )

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_tries

    def delay_for(self, attempt: int) -> int:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if not self.backoff:
            return 0
        index = min(max(attempt, 1) - 1, len(self.backoff) - 1)
        return self.backoff[index]


class ClassificationDispatcher:
    """
    Classifies one ticket and writes the result back.

    Safe to run more than once for the same ticket: it only overwrites the
    classification fields.
    """

    def __init__(self, repository: ITicketRepository, classifier: TicketClassifier):
        self._repository = repository
        self._classifier = classifier

    async def run(self, ticket_id: str) -> Optional[ClassificationResult]:
        ticket = await self._repository.get_by_id(ticket_id)
        if ticket is None:
            logger.warning("Ticket not found, skipping classification", extra={"ticket_id": ticket_id})
            return None

        result = await self._classifier.classify(ticket.subject, ticket.body, ticket_id=ticket_id)

        if not await self._repository.apply_classification(ticket_id, result):
            logger.warning("Ticket removed before classification was stored", extra={"ticket_id": ticket_id})
            return None

        logger.info(
            "Ticket classified",
            extra={
                "ticket_id": ticket_id,
                "category": result.category.value,
                "confidence": result.confidence,
                "model_used": result.model_used,
                "category_kept": ticket.manually_categorized,
            },
        )
        return result
