"""
Tickets Interfaces Layer
========================

Interface adapters for the tickets module.

Contains:
- Controllers: FastAPI route handlers
- Worker: arq classification job
- Commands: bulk-classify and worker CLI
"""

from helpdesk.tickets.interfaces.controllers import router as tickets_router
from helpdesk.tickets.interfaces.controllers import stats_router

__all__ = ["tickets_router", "stats_router"]
