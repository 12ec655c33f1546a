"""
Generator selection.

`gemini` is used only when it is configured AND an API key is present; anything
else gets the offline mock so a fresh checkout works without credentials.
"""

from __future__ import annotations

import logging

from nearmatch.config.settings import Settings
from nearmatch.ingestion.gemini_client import GeminiEncounterGenerator
from nearmatch.ingestion.mock_generator import MockEncounterGenerator

logger = logging.getLogger(__name__)


def build_generator(settings: Settings) -> GeminiEncounterGenerator | MockEncounterGenerator:
    cfg = settings.generator
    if cfg.provider == "gemini":
        if cfg.gemini.api_key:
            return GeminiEncounterGenerator(settings)
        logger.warning("Gemini provider selected but GEMINI_API_KEY is missing; using the mock generator")
    return MockEncounterGenerator(settings)
