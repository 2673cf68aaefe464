"""
Unit tests for Celery scheduled tasks.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from celery.schedules import crontab

from openrelief.core.celery_app import celery_app
from openrelief.schemas.event import EventReportRequest, EventStatus
from openrelief.tasks.scheduled import (
    _async_archival_sweep,
    _async_expire_pending_events,
    archival_sweep,
    expire_pending_events,
)

REPORT = EventReportRequest(
    reporter_id="reporter",
    type="fire",
    severity="high",
    title="Brush fire",
    latitude=34.05,
    longitude=-118.24,
)


@pytest.mark.unit
class TestBeatSchedule:
    def test_schedule(self):
        schedule = celery_app.conf.beat_schedule

        assert schedule["expire-pending-events"]["task"] == "scheduled.expire_pending_events"
        assert schedule["expire-pending-events"]["schedule"] == crontab(minute="*/15")
        assert schedule["archival-sweep"]["schedule"] == crontab(hour=3, minute=0)

    def test_tasks_registered(self):
        assert "scheduled.expire_pending_events" in celery_app.tasks
        assert "scheduled.archival_sweep" in celery_app.tasks


@pytest.mark.unit
class TestExpirationTask:
    @pytest.mark.asyncio
    async def test_async_expire(self, controller, store, now):
        stale = await controller.report_event(REPORT, now=now - timedelta(hours=48))
        await controller.report_event(REPORT, now=now)

        result = await _async_expire_pending_events(controller, now)

        assert result["expired_events"] == 1
        assert result["event_ids"] == [stale.id]
        assert result["timestamp"] == now.isoformat()
        assert (await store.get_event(stale.id)).status is EventStatus.CLOSED

    def test_task_uses_configured_controller(self, controller):
        with patch("openrelief.tasks.scheduled._controller", return_value=controller):
            result = expire_pending_events()

        assert result["expired_events"] == 0

    def test_task_failure_propagates(self):
        with patch("openrelief.tasks.scheduled._controller", side_effect=RuntimeError("no db")):
            with pytest.raises(RuntimeError):
                expire_pending_events()


@pytest.mark.unit
class TestArchivalTask:
    @pytest.mark.asyncio
    async def test_async_sweep(self, controller, store, now):
        old = await controller.report_event(REPORT, now=now - timedelta(days=120))
        await controller.close_event(old.id, "handled", now=now - timedelta(days=100))
        recent = await controller.report_event(REPORT, now=now - timedelta(days=5))
        await controller.close_event(recent.id, "handled", now=now - timedelta(days=4))

        result = await _async_archival_sweep(controller, now)

        assert result["eligible_events"] == 1
        assert result["event_ids"] == [old.id]

    def test_task_runs(self, controller):
        with patch("openrelief.tasks.scheduled._controller", return_value=controller):
            result = archival_sweep()

        assert result == {"eligible_events": 0, "event_ids": [], "timestamp": result["timestamp"]}
