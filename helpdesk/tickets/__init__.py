"""
Tickets Module
==============

Bounded Context for support tickets and their AI classification.

Responsibilities:
- Create, list, inspect and update tickets
- Classify a ticket's category with OpenAI, keeping manual overrides
- Dispatch classification jobs in rate-limited batches
"""

__version__ = "1.0.0"
