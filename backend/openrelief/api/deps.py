"""
FastAPI dependency providers.

Engines carry per-entity locks, so one instance is shared by all requests.
Tests replace these providers through `app.dependency_overrides`.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from openrelief.core.config import settings
from openrelief.services.factory import build_lifecycle, build_store
from openrelief.services.lifecycle.event_lifecycle import EventLifecycleController
from openrelief.services.scoring.trust_engine import TrustScoreEngine


@lru_cache
def get_lifecycle_controller() -> EventLifecycleController:
    return build_lifecycle(build_store(settings), config=settings)


def get_trust_engine(
    controller: EventLifecycleController = Depends(get_lifecycle_controller),
) -> TrustScoreEngine:
    return controller.trust_engine
