"""
Scheduled tasks for periodic execution via Celery Beat.

Workers only share state with the API when STORE_BACKEND is "sql"; the
in-memory store is process-local.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from celery.utils.log import get_task_logger

from openrelief.core.celery_app import celery_app
from openrelief.core.config import settings
from openrelief.services.factory import build_lifecycle, build_store
from openrelief.services.lifecycle.event_lifecycle import EventLifecycleController

logger = get_task_logger(__name__)


def _controller() -> EventLifecycleController:
    return build_lifecycle(build_store(settings), config=settings)


@celery_app.task(name="scheduled.expire_pending_events")
def expire_pending_events():
    """
    Close pending events nobody confirmed within the expiration window.
    Runs every 15 minutes by default.
    """
    logger.info("Running scheduled event expiration")

    try:
        result = asyncio.run(_async_expire_pending_events(_controller()))
        logger.info(f"Expiration completed: {result}")
        return result
    except Exception:
        logger.exception("Event expiration failed")
        raise


async def _async_expire_pending_events(
    controller: EventLifecycleController, now: datetime | None = None
):
    """Async helper for event expiration."""
    now = now or datetime.now(timezone.utc)
    expired = await controller.expire_pending_events(now)
    return {
        "expired_events": len(expired),
        "event_ids": expired,
        "timestamp": now.isoformat(),
    }


@celery_app.task(name="scheduled.archival_sweep")
def archival_sweep():
    """
    Report resolved and closed events past their retention window.
    Runs daily at 3 AM by default; moving them to cold storage happens elsewhere.
    """
    logger.info("Running scheduled archival sweep")

    try:
        result = asyncio.run(_async_archival_sweep(_controller()))
        logger.info(f"Archival sweep completed: {result}")
        return result
    except Exception:
        logger.exception("Archival sweep failed")
        raise


async def _async_archival_sweep(
    controller: EventLifecycleController, now: datetime | None = None
):
    """Async helper for the archival sweep."""
    now = now or datetime.now(timezone.utc)
    eligible = await controller.archival_candidates(now)
    return {
        "eligible_events": len(eligible),
        "event_ids": eligible,
        "timestamp": now.isoformat(),
    }
