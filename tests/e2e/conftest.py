"""
E2E test fixtures for the QueueUp workflow API.

Provides:
- An in-process FastAPI app built by ``create_app`` with the test
  orchestrator injected (SQLite database, recording notifier, fake payment
  gateway from the shared fixtures)
- httpx AsyncClient wired via ASGI transport (no network needed)
- Bearer headers for each test actor
- Helpers that drive a job through the API
"""

from __future__ import annotations

import uuid
from typing import Any, AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from queueup.core.security import create_access_token
from queueup.main import create_app
from tests.conftest import (
    ADMIN_ID,
    CUSTOMER_ID,
    MECHANIC_ID,
    OTHER_CUSTOMER_ID,
    OTHER_MECHANIC_ID,
)

API = "/api/v1"


def auth_headers(user_id: uuid.UUID, role: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


CUSTOMER_HEADERS = auth_headers(CUSTOMER_ID, "customer")
MECHANIC_HEADERS = auth_headers(MECHANIC_ID, "mechanic")
OTHER_MECHANIC_HEADERS = auth_headers(OTHER_MECHANIC_ID, "mechanic")
OTHER_CUSTOMER_HEADERS = auth_headers(OTHER_CUSTOMER_ID, "customer")
ADMIN_HEADERS = auth_headers(ADMIN_ID, "admin")


# ---------------------------------------------------------------------------
# FastAPI test application
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(orchestrator) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient connected to the test app via ASGI transport."""
    app = create_app(orchestrator)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Helpers: drive a job via the API
# ---------------------------------------------------------------------------

async def create_job_via_api(
    client: AsyncClient,
    *,
    estimated_cost: str = "100.00",
    category: str = "Repair",
    headers: dict[str, str] = CUSTOMER_HEADERS,
) -> Any:
    """POST to /api/v1/jobs and return the response."""
    payload = {
        "category": category,
        "description": "Brakes squeal when stopping",
        "vehicle_info": "2015 Honda Civic",
        "urgency": "high",
        "service_type": "mobile",
        "location": "123 Main St, Springfield",
        "estimated_cost": estimated_cost,
    }
    return await client.post(f"{API}/jobs", json=payload, headers=headers)


async def book_job_via_api(client: AsyncClient) -> dict[str, Any]:
    """Create a job, accept a bid and agree a schedule; returns the job JSON."""
    job = (await create_job_via_api(client)).json()
    bid = (
        await client.post(
            f"{API}/jobs/{job['id']}/bids",
            json={"amount": "90.00", "message": "Tomorrow morning"},
            headers=MECHANIC_HEADERS,
        )
    ).json()
    await client.post(f"{API}/bids/{bid['id']}/accept", headers=CUSTOMER_HEADERS)
    await client.post(
        f"{API}/jobs/{job['id']}/schedule/proposals",
        json={"proposed_date": "2024-06-01", "proposed_time": "10:00:00"},
        headers=CUSTOMER_HEADERS,
    )
    resp = await client.post(
        f"{API}/jobs/{job['id']}/schedule/accept", headers=MECHANIC_HEADERS
    )
    return resp.json()["job"]
