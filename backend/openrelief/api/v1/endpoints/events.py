"""
Emergency Event API Endpoints

Reporting, community voting, lifecycle transitions and retention queries
for emergency events.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from openrelief.api.deps import get_lifecycle_controller
from openrelief.core.exceptions import EventNotFound, InvalidStatusTransition
from openrelief.schemas.consensus import ConsensusResult, VoteOutcome
from openrelief.schemas.event import (
    ArchivalStatus,
    EmergencyEvent,
    EventCloseRequest,
    EventReportRequest,
    EventResolveRequest,
    EventUpdateRequest,
    ExpirationResult,
    Location,
)
from openrelief.schemas.vote import VoteRequest
from openrelief.services.lifecycle.event_lifecycle import EventLifecycleController

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


@router.post("", response_model=EmergencyEvent, status_code=201)
async def report_event(
    request: EventReportRequest,
    controller: EventLifecycleController = Depends(get_lifecycle_controller),
):
    """
    Report a new emergency.

    The event starts pending, weighted by the reporter's trust. Invalid
    details are flagged for review instead of rejected.
    """
    try:
        return await controller.report_event(request)

    except Exception as e:
        logger.exception(f"Error reporting event: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/expire", response_model=ExpirationResult)
async def expire_pending_events(
    controller: EventLifecycleController = Depends(get_lifecycle_controller),
):
    """Close pending events that were never confirmed in time."""
    try:
        expired = await controller.expire_pending_events()
        return ExpirationResult(expired_event_ids=expired)

    except Exception as e:
        logger.exception(f"Error expiring events: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/{event_id}", response_model=EmergencyEvent)
async def get_event(
    event_id: str,
    controller: EventLifecycleController = Depends(get_lifecycle_controller),
):
    try:
        return await controller.get_event(event_id)

    except EventNotFound:
        raise HTTPException(status_code=404, detail="Event not found")
    except Exception as e:
        logger.exception(f"Error getting event: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.patch("/{event_id}", response_model=EmergencyEvent)
async def update_event(
    event_id: str,
    changes: dict[str, Any] = Body(..., description="Fields to change"),
    controller: EventLifecycleController = Depends(get_lifecycle_controller),
):
    """
    Edit event fields.

    Invalid values are skipped and the event is flagged for review; a
    disallowed status change is rejected.
    """
    try:
        return await controller.update_event(event_id, changes)

    except EventNotFound:
        raise HTTPException(status_code=404, detail="Event not found")
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Error updating event: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/{event_id}/votes", response_model=VoteOutcome)
async def cast_vote(
    event_id: str,
    request: VoteRequest,
    controller: EventLifecycleController = Depends(get_lifecycle_controller),
):
    """
    Confirm or dispute an event.

    A later vote by the same user replaces the earlier one. The response
    carries the recomputed consensus and whether it moved the event.
    """
    try:
        location = None
        if request.latitude is not None and request.longitude is not None:
            location = Location(latitude=request.latitude, longitude=request.longitude)

        return await controller.cast_vote(
            event_id, request.user_id, request.vote_type, location
        )

    except EventNotFound:
        raise HTTPException(status_code=404, detail="Event not found")
    except Exception as e:
        logger.exception(f"Error casting vote: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/{event_id}/consensus", response_model=ConsensusResult)
async def get_consensus(
    event_id: str,
    controller: EventLifecycleController = Depends(get_lifecycle_controller),
):
    try:
        return await controller.get_consensus(event_id)

    except EventNotFound:
        raise HTTPException(status_code=404, detail="Event not found")
    except Exception as e:
        logger.exception(f"Error computing consensus: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/{event_id}/updates", response_model=EmergencyEvent)
async def add_event_update(
    event_id: str,
    request: EventUpdateRequest,
    controller: EventLifecycleController = Depends(get_lifecycle_controller),
):
    try:
        return await controller.add_update(event_id, request)

    except EventNotFound:
        raise HTTPException(status_code=404, detail="Event not found")
    except Exception as e:
        logger.exception(f"Error adding event update: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/{event_id}/resolve", response_model=EmergencyEvent)
async def resolve_event(
    event_id: str,
    request: EventResolveRequest,
    controller: EventLifecycleController = Depends(get_lifecycle_controller),
):
    """Resolve an active event with its final report."""
    try:
        return await controller.resolve_event(
            event_id, request.final_report, request.resolver_id
        )

    except EventNotFound:
        raise HTTPException(status_code=404, detail="Event not found")
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Error resolving event: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/{event_id}/close", response_model=EmergencyEvent)
async def close_event(
    event_id: str,
    request: EventCloseRequest,
    controller: EventLifecycleController = Depends(get_lifecycle_controller),
):
    try:
        return await controller.close_event(event_id, request.reason)

    except EventNotFound:
        raise HTTPException(status_code=404, detail="Event not found")
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Error closing event: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/{event_id}/archival", response_model=ArchivalStatus)
async def get_archival_status(
    event_id: str,
    controller: EventLifecycleController = Depends(get_lifecycle_controller),
):
    """Retention window of the event and whether it may be archived now."""
    try:
        return await controller.archival_status(event_id)

    except EventNotFound:
        raise HTTPException(status_code=404, detail="Event not found")
    except Exception as e:
        logger.exception(f"Error getting archival status: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")
