"""
Tickets Domain Entities
=======================

Domain entities for the tickets module.

Contains pure Python business objects for tickets and their AI
classification.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from helpdesk.config import (
    CATEGORY_LABELS,
    TicketCategory,
    TicketStatus,
)

MAX_EXPLANATION_LENGTH = 100


@dataclass(frozen=True)
class ClassificationResult:
    """
    Result of ticket classification.

    Transient value produced per classification call; only its fields are
    persisted, on the ticket itself.
    """
    category: TicketCategory
    explanation: str
    confidence: float  # 0.0 to 1.0
    model_used: str = "fallback"

    def __post_init__(self):
        """Validate classification result."""
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")
        if len(self.explanation) > MAX_EXPLANATION_LENGTH:
            raise ValueError(f"Explanation must be at most {MAX_EXPLANATION_LENGTH} characters")

    @property
    def is_fallback(self) -> bool:
        return self.model_used == "fallback"


@dataclass
class Ticket:
    """
    Support ticket entity.

    ``manually_categorized`` is set when a person picks the category; from then
    on classification runs refresh explanation and confidence only.
    """
    id: Optional[str]  # UUID, None for new tickets
    subject: str
    body: str
    status: TicketStatus = TicketStatus.OPEN
    category: Optional[TicketCategory] = None
    confidence: Optional[float] = None
    explanation: Optional[str] = None
    note: Optional[str] = None
    manually_categorized: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    @property
    def category_label(self) -> Optional[str]:
        return CATEGORY_LABELS[self.category] if self.category else None

    def change_category(self, category: Optional[TicketCategory]) -> None:
        """Category set by a person. Clearing it leaves the manual flag as is."""
        if category == self.category:
            return
        self.category = category
        if category is not None:
            self.manually_categorized = True
        self.updated_at = datetime.now(timezone.utc)


class ClassificationPromptBuilder:
    """
    Builds prompts for ticket classification.

    All prompt logic in one place.
    """

    @classmethod
    def get_system_prompt(cls) -> str:
        """Get the system prompt for classification."""
        categories = "\n".join(
            f"- {category.value}: {label}" for category, label in CATEGORY_LABELS.items()
        )
        return f"""You are a support ticket classifier. Analyze the given ticket and respond with a JSON object containing exactly these keys:

- category: one of these categories:
{categories}
- explanation: a brief explanation (max {MAX_EXPLANATION_LENGTH} chars) of why you chose this category
- confidence: a decimal between 0.0 and 1.0 representing your confidence in the classification

Example response:
{{"category": "technical", "explanation": "User reporting login issues with specific error message", "confidence": 0.85}}

Respond only with valid JSON, no additional text."""

    @classmethod
    def build_prompt(cls, subject: str, body: str) -> str:
        """Build classification prompt from ticket content."""
        return f"Subject: {subject}\n\nBody: {body}"
