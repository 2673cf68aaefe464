"""
Wiring of stores, notifiers and engines from settings.

Shared by the API dependency providers and the Celery tasks.
"""

from __future__ import annotations

from openrelief.core.config import Settings, settings as default_settings
from openrelief.services.consensus.consensus_engine import ConsensusEngine
from openrelief.services.consensus.sybil_detector import SybilDetector
from openrelief.services.lifecycle.event_lifecycle import EventLifecycleController
from openrelief.services.notifier import LoggingNotifier, Notifier, NullNotifier
from openrelief.services.scoring.trust_engine import TrustScoreEngine
from openrelief.services.store import EmergencyStore, InMemoryStore


def build_store(config: Settings = default_settings) -> EmergencyStore:
    if config.STORE_BACKEND == "sql":
        # Imported lazily so the in-memory setup never needs a database driver
        from openrelief.services.sql_store import SqlAlchemyStore

        return SqlAlchemyStore()
    if config.STORE_BACKEND != "memory":
        raise ValueError(f"Unknown STORE_BACKEND: {config.STORE_BACKEND!r}")
    return InMemoryStore()


def build_notifier(config: Settings = default_settings) -> Notifier:
    return LoggingNotifier() if config.NOTIFICATIONS_ENABLED else NullNotifier()


def build_lifecycle(
    store: EmergencyStore,
    notifier: Notifier | None = None,
    config: Settings = default_settings,
) -> EventLifecycleController:
    notifier = notifier or build_notifier(config)
    trust_engine = TrustScoreEngine(store, notifier, config)
    consensus_engine = ConsensusEngine(config, SybilDetector(config))
    return EventLifecycleController(
        store, trust_engine, consensus_engine, notifier, config
    )
