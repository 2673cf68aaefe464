"""
Trust Scoring API Endpoints

Provides REST API for trust score calculation, per-user trust state,
audit history and permission checks.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from openrelief.api.deps import get_trust_engine
from openrelief.core.exceptions import InvalidActionKind
from openrelief.schemas.trust import (
    TrustActionRequest,
    TrustCalculation,
    TrustFactors,
    TrustHistoryEntry,
    TrustPermissions,
    TrustScore,
)
from openrelief.services.scoring.trust_engine import TrustScoreEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["trust-scoring"])


@router.post("/calculate", response_model=TrustCalculation)
async def calculate_trust_score(
    factors: dict[str, Any] = Body(..., description="Raw trust factors"),
    engine: TrustScoreEngine = Depends(get_trust_engine),
):
    """
    Calculate a trust score from raw behavioral factors.

    Malformed factor values are normalized rather than rejected.
    """
    return engine.calculate(TrustFactors.from_untrusted(factors))


@router.get("/users/{user_id}", response_model=TrustScore)
async def get_user_trust(
    user_id: str, engine: TrustScoreEngine = Depends(get_trust_engine)
):
    """Get the current trust state of a user."""
    try:
        score = await engine.get_user_score(user_id)
        if score is None:
            raise HTTPException(status_code=404, detail="User has no trust score")
        return score

    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error getting trust score: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/users/{user_id}/history", response_model=list[TrustHistoryEntry])
async def get_user_history(
    user_id: str, engine: TrustScoreEngine = Depends(get_trust_engine)
):
    """Get the trust audit history of a user, oldest first."""
    try:
        return await engine.get_history(user_id)

    except Exception as e:
        logger.exception(f"Error getting trust history: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/users/{user_id}/permissions", response_model=TrustPermissions)
async def get_user_permissions(
    user_id: str, engine: TrustScoreEngine = Depends(get_trust_engine)
):
    """Which actions the user's current score allows."""
    try:
        return await engine.permissions(user_id)

    except Exception as e:
        logger.exception(f"Error getting trust permissions: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/users/{user_id}/actions", response_model=TrustScore)
async def apply_trust_action(
    user_id: str,
    request: TrustActionRequest,
    engine: TrustScoreEngine = Depends(get_trust_engine),
):
    """
    Apply a report/confirm/dispute action with its outcome to a user.

    Unknown users are initialized with the default score first.
    """
    try:
        updated = await engine.update_trust_for_action(
            user_id,
            request.event_id,
            request.action_type,
            request.outcome,
            request.metadata,
            event_type=request.event_type,
        )
        logger.info(
            "Applied %s/%s to user %s: %.3f",
            request.action_type,
            request.outcome,
            user_id,
            updated.score,
        )
        return updated

    except InvalidActionKind as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Error applying trust action: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.patch("/users/{user_id}/factors", response_model=TrustScore)
async def update_user_factors(
    user_id: str,
    factors: dict[str, Any] = Body(..., description="Partial trust factors"),
    engine: TrustScoreEngine = Depends(get_trust_engine),
):
    """Merge partial factors into a user's and recompute the score."""
    try:
        updated = await engine.update_trust_factors(user_id, factors)
        if updated is None:
            raise HTTPException(status_code=404, detail="User has no trust score")
        return updated

    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Error updating trust factors: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")
