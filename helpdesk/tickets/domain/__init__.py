"""
Tickets Domain Layer
====================

Domain layer for the tickets module.

Contains:
- Entities: Core business objects (Ticket, ClassificationResult)
- ClassificationPromptBuilder: prompt text for the classifier

This layer is framework-agnostic and contains pure business logic.
"""

from helpdesk.tickets.domain.entities import (
    MAX_EXPLANATION_LENGTH,
    ClassificationPromptBuilder,
    ClassificationResult,
    Ticket,
)

__all__ = [
    "MAX_EXPLANATION_LENGTH",
    "ClassificationPromptBuilder",
    "ClassificationResult",
    "Ticket",
]
