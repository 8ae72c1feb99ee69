"""
Helpdesk - Main Application
===========================

Support ticket service with AI classification.

Modules:
- Tickets: create, list, update and classify support tickets

Clean Architecture Layers:
- Interfaces: FastAPI controllers, arq worker, CLI commands
- Application: Services and DTOs
- Domain: Entities and prompt building
- Infrastructure: Database, LLM, task queue, rate limiting
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

# Configuration and Core
from helpdesk.config import settings
from helpdesk.core import TaskQueueException

# Infrastructure
from helpdesk.infrastructure.database import close_database, create_tables, get_engine, init_database
from helpdesk.tickets.infrastructure import TaskQueueAdapter

# Module Routers
from helpdesk.tickets.interfaces import stats_router, tickets_router

# Middleware
from helpdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    global_exception_handler
)

# Logging
from helpdesk.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Connect the classification task queue

    SHUTDOWN:
    1. Close the task queue
    2. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk API", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()

    # Create tables (for development - use Alembic in production)
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    # Without a queue the API still serves tickets; classify returns 503
    try:
        app.state.task_queue = await TaskQueueAdapter.connect()
    except TaskQueueException as e:
        logger.warning("Task queue not available", extra={"error": e.message})
        app.state.task_queue = None

    logger.info("Helpdesk API started")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Helpdesk API")

    if app.state.task_queue is not None:
        await app.state.task_queue.close()

    await close_database()

    logger.info("Helpdesk API shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk API",
    description="""
    ## Support Ticket Service

    Tickets are classified into categories by OpenAI in a background worker.

    **Endpoints:**
    - `POST /tickets` - Create a ticket
    - `GET /tickets` - List tickets (search, status, category, pagination)
    - `GET /tickets/{id}` - Get a ticket
    - `PATCH /tickets/{id}` - Update status, category or note
    - `POST /tickets/{id}/classify` - Queue AI classification
    - `GET /stats` - Dashboard statistics

    A category set through `PATCH` is kept by later classification runs.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Added last so it runs first and the logging middleware sees the ID
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(tickets_router)
app.include_router(stats_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "task_queue": "connected",
                        "classification": "enabled"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports database connectivity, task queue availability and whether
    OpenAI classification is enabled.
    """
    checks = {
        "database": "connected",
        "task_queue": "connected" if getattr(request.app.state, "task_queue", None) else "unavailable",
        "classification": "enabled" if settings.openai_classify_enabled else "disabled",
    }

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = f"error: {e}"

    return {
        "status": "healthy" if checks["database"] == "connected" else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
