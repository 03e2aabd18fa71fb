"""QueueUp Workflow API -- Main Application Entry Point

Creates the FastAPI application, builds the workflow orchestrator with its
collaborators (event bus, notification sender, payment gateway, per-job
locks) and registers all API route modules under the /api/v1 prefix.

Run with::

    uvicorn queueup.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from queueup.core.config import Settings, settings
from queueup.events.jobEvents import EventBus
from queueup.integrations.stripe import StripePaymentGateway
from queueup.services.jobLocks import JobLockRegistry
from queueup.services.notificationService import register_notifications
from queueup.services.workflowOrchestrator import WorkflowOrchestrator

logger = logging.getLogger(__name__)


def build_orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    config: Settings = settings,
) -> WorkflowOrchestrator:
    """Wire the orchestrator with the production collaborators."""
    bus = EventBus()
    register_notifications(bus)

    gateway = None
    if config.stripe_secret_key:
        gateway = StripePaymentGateway(config.stripe_secret_key, config.stripe_currency)
    else:
        logger.warning("STRIPE_SECRET_KEY not set; payments are disabled")

    return WorkflowOrchestrator(
        session_factory,
        event_bus=bus,
        payment_gateway=gateway,
        lock_registry=JobLockRegistry(timeout=config.job_lock_timeout_seconds),
        settings=config,
    )


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the orchestrator on startup (unless one was injected) and
    dispose of the database engine on shutdown."""
    from queueup.api.deps import async_session_factory, engine

    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = build_orchestrator(async_session_factory)

    yield

    await engine.dispose()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(orchestrator: Optional[WorkflowOrchestrator] = None) -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["Health"])
    async def health():
        """Lightweight health check for load balancers and readiness checks."""
        return {"status": "ok", "version": settings.app_version}

    from queueup.api.routes import bids, change_orders, jobs, payments, schedule

    _prefix = settings.api_v1_prefix

    app.include_router(jobs.router, prefix=_prefix)
    app.include_router(bids.router, prefix=_prefix)
    app.include_router(schedule.router, prefix=_prefix)
    app.include_router(change_orders.router, prefix=_prefix)
    app.include_router(payments.router, prefix=_prefix)

    return app


app = create_app()
