"""
Per-session engine registry.

When the engine is served to many users, each session id owns its own
`EncounterEngine`; nothing is shared between entries because visibility and
clustering assume a single viewer's own-post set.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Callable

from nearmatch.config.settings import Settings
from nearmatch.domain.errors import NotFound
from nearmatch.domain.models import GeoPoint, UserProfile
from nearmatch.engine.session import EncounterEngine
from nearmatch.ingestion.factory import build_generator
from nearmatch.ingestion.location import StaticLocationSource

logger = logging.getLogger(__name__)

EngineFactory = Callable[[UserProfile, Settings], EncounterEngine]


def default_engine_factory(profile: UserProfile, settings: Settings) -> EncounterEngine:
    generator = build_generator(settings)
    return EncounterEngine(
        profile,
        settings=settings,
        opener_generator=generator,
        candidate_generator=generator,
    )


class SessionRegistry:
    def __init__(self, settings: Settings, *, factory: EngineFactory = default_engine_factory):
        self._settings = settings
        self._factory = factory
        self._lock = threading.Lock()
        self._engines: dict[str, EncounterEngine] = {}

    def create(self, profile: UserProfile, *, location: GeoPoint | None = None) -> tuple[str, EncounterEngine]:
        """Create and bootstrap a new engine; returns its session id."""
        engine = self._factory(profile, self._settings)
        source = StaticLocationSource(location) if location is not None else None
        engine.bootstrap(source)
        session_id = uuid.uuid4().hex
        with self._lock:
            self._engines[session_id] = engine
        logger.info("Created session %s", session_id)
        return session_id, engine

    def get(self, session_id: str) -> EncounterEngine:
        with self._lock:
            engine = self._engines.get(session_id)
        if engine is None:
            raise NotFound("session", session_id)
        return engine

    def close(self, session_id: str) -> None:
        with self._lock:
            engine = self._engines.pop(session_id, None)
        if engine is None:
            raise NotFound("session", session_id)
        engine.close()
        logger.info("Closed session %s", session_id)

    def close_all(self) -> None:
        with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
        for engine in engines:
            engine.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._engines)
