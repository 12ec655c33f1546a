"""
Gemini-backed content generator.

Two calls against the `generateContent` REST endpoint:
- candidate posts: asks for a JSON array of `{title, description, name, bio, gender}`
  and places each one at a random point around the viewer,
- opening lines: free text keyed by the matched post's title.

Failure semantics differ on purpose: `generate_candidates` returns `[]` (an empty
map is a valid state), while `generate_opener` raises `CollaboratorUnavailable`
so the chat orchestrator substitutes its configured fallback line.
"""

from __future__ import annotations

import json
import logging
import random
from datetime import timedelta
from typing import Any

from nearmatch.config.settings import Settings
from nearmatch.core.http import post_json
from nearmatch.core.time import now_in
from nearmatch.domain.errors import CollaboratorUnavailable
from nearmatch.domain.models import AuthorSnapshot, CandidatePost, EncounterStatus, GeoPoint
from nearmatch.ingestion.mock_generator import random_point_near, random_tags

logger = logging.getLogger(__name__)

_CANDIDATE_PROMPT = (
    'Generate {count} fictional "Missed Connection" posts for a dating app. '
    "These should be romantic, fleeting moments where someone saw someone attractive but didn't speak. "
    "The context is a city environment. Return a JSON array of objects with: "
    "title (short catchy title), description (2 sentences), name (first name of the poster), "
    "bio (short bio), gender (male or female)."
)

_CANDIDATE_SCHEMA: dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "title": {"type": "STRING"},
            "description": {"type": "STRING"},
            "name": {"type": "STRING"},
            "bio": {"type": "STRING"},
            "gender": {"type": "STRING"},
        },
    },
}

_OPENER_PROMPT = (
    "Write a short, flirty but polite opening message for a chat in a dating app. "
    'The context is that we matched on a post titled "{title}".'
)


def _response_text(payload: Any) -> str:
    """Extract the first candidate's text parts from a generateContent response."""
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ValueError("Unexpected Gemini response shape") from exc
    return "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))


class GeminiEncounterGenerator:
    """Implements both the candidate and the opener generator interfaces."""

    def __init__(self, settings: Settings, *, rng: random.Random | None = None):
        self._settings = settings
        self._rng = rng or random.Random(settings.generator.seed)

    def _generate(self, prompt: str, *, json_schema: dict[str, Any] | None = None) -> str:
        cfg = self._settings.generator.gemini
        if not cfg.api_key:
            raise CollaboratorUnavailable("Gemini API key is not configured")

        body: dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if json_schema is not None:
            body["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": json_schema,
            }
        url = f"{cfg.base_url.rstrip('/')}/models/{cfg.model}:generateContent"
        try:
            payload = post_json(
                url,
                payload=body,
                headers={"x-goog-api-key": cfg.api_key},
                timeout_seconds=self._settings.app.http_timeout_seconds,
            )
            return _response_text(payload)
        except CollaboratorUnavailable:
            raise
        except Exception as exc:
            raise CollaboratorUnavailable(f"Gemini request failed: {exc}") from exc

    def generate_candidates(self, near: GeoPoint) -> list[CandidatePost]:
        cfg = self._settings.generator
        try:
            text = self._generate(_CANDIDATE_PROMPT.format(count=cfg.candidate_count), json_schema=_CANDIDATE_SCHEMA)
            items = json.loads(text or "[]")
        except (CollaboratorUnavailable, ValueError) as exc:
            logger.warning("Gemini failed to generate encounters: %s", exc)
            return []
        if not isinstance(items, list):
            logger.warning("Gemini returned %s instead of a list of encounters", type(items).__name__)
            return []

        now = now_in(self._settings.app.timezone)
        out: list[CandidatePost] = []
        for index, item in enumerate(items[: cfg.candidate_count]):
            if not isinstance(item, dict):
                continue
            name = str(item.get("name") or f"Stranger {index + 1}")
            title = str(item.get("title") or "").strip()
            if not title:
                continue
            out.append(
                CandidatePost(
                    id=f"encounter-{index}",
                    location=random_point_near(self._rng, near, cfg.spread_m),
                    created_at=now - timedelta(seconds=self._rng.uniform(0, 86_400)),
                    author=AuthorSnapshot(
                        user_id=f"mock-user-{index}",
                        name=name,
                        bio=str(item.get("bio") or ""),
                        images=[
                            f"https://picsum.photos/seed/{name}/400/600",
                            f"https://picsum.photos/seed/{name}2/400/600",
                        ],
                    ),
                    title=title,
                    description=str(item.get("description") or ""),
                    tags=random_tags(self._rng),
                    image=f"https://picsum.photos/seed/location{index}/500/300",
                )
            )
        if out and cfg.simulate_inbound_like:
            out[0].status = EncounterStatus.LIKED_BY_THEM
        return out

    def generate_opener(self, post_title: str) -> str:
        text = self._generate(_OPENER_PROMPT.format(title=post_title)).strip()
        if not text:
            raise CollaboratorUnavailable("Gemini returned an empty opener")
        return text
