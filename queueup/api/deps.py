"""
Shared FastAPI dependencies for the QueueUp workflow API.

Provides the database engine and session factory the orchestrator runs on,
the orchestrator dependency itself, and authentication dependencies that
turn a JWT Bearer token into a workflow ``Actor``.
"""

from __future__ import annotations

import logging
import uuid
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from queueup.core.config import settings
from queueup.core.security import decode_token
from queueup.services.jobStateManager import Actor, ActorType
from queueup.services.workflowOrchestrator import WorkflowOrchestrator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------
# Sessions are opened by the orchestrator, one per unit of work. Objects
# must stay readable after commit, hence ``expire_on_commit=False``.
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

def get_orchestrator(request: Request) -> WorkflowOrchestrator:
    """Return the orchestrator built at startup and kept on ``app.state``."""
    return request.app.state.orchestrator


Orchestrator = Annotated[WorkflowOrchestrator, Depends(get_orchestrator)]


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

_bearer_scheme = HTTPBearer(auto_error=True)

# Roles a caller may hold; ``system`` is reserved for in-process callers
_TOKEN_ROLES = {ActorType.CUSTOMER, ActorType.MECHANIC, ActorType.ADMIN}


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
) -> Actor:
    """Extract and validate a Bearer token from the Authorization header.

    Raises 401 if the token is expired, malformed, or names an unknown role.
    """
    try:
        payload = decode_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Access token has expired.")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid access token.")

    try:
        actor_id = uuid.UUID(str(payload.get("sub")))
        role = ActorType(payload.get("role"))
    except ValueError:
        raise _unauthorized("Token does not identify a user and role.")

    if role not in _TOKEN_ROLES:
        raise _unauthorized(f"Role '{role.value}' cannot call this API.")
    return Actor(role=role, id=actor_id)


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
