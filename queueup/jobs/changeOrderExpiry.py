"""
Change Order Expiry -- Scheduled Job.

Sweeps pending change orders whose response window
(``change_order_ttl_hours``) has passed and marks them ``expired``, one job
at a time under that job's lock. The mechanic is notified through the
regular event bus.

Intended to run every few minutes from cron, Kubernetes CronJob or a
similar scheduler.

Usage with a simple cron runner::

    python -m queueup.jobs.changeOrderExpiry
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from queueup.services.workflowOrchestrator import WorkflowOrchestrator

logger = logging.getLogger(__name__)


async def run_change_order_expiry(
    orchestrator: WorkflowOrchestrator,
    now: Optional[datetime] = None,
) -> int:
    """Expire lapsed change orders and return how many were expired.

    Args:
        orchestrator: The application's workflow orchestrator.
        now: Optional clock override (for testing).
    """
    logger.info("Starting change order expiry sweep")
    expired = await orchestrator.expire_stale_change_orders(now=now)
    jobs = {order.job_id for order in expired}
    logger.info(
        "Change order expiry sweep completed. Expired: %d across %d job(s).",
        len(expired),
        len(jobs),
    )
    return len(expired)


# ---------------------------------------------------------------------------
# CLI entry point (for manual runs / simple cron)
# ---------------------------------------------------------------------------

async def _cli_main() -> None:
    """Entry point for running the sweep from the command line.

    Builds its own orchestrator on the application session factory.
    """
    from queueup.api.deps import async_session_factory, engine
    from queueup.main import build_orchestrator

    orchestrator = build_orchestrator(async_session_factory)
    try:
        count = await run_change_order_expiry(orchestrator)
        print(f"Change order expiry completed: {count} expired")  # noqa: T201
    except Exception:
        logger.exception("Change order expiry failed")
        raise
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(_cli_main())
