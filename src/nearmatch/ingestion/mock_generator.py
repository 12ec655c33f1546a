"""
Offline content generator.

Synthesizes "missed connection" candidate posts scattered uniformly over a disc
around a center point, plus templated opening lines. Used whenever no Gemini key
is configured, and by tests/CLI with a fixed seed for reproducible catalogs.
"""

from __future__ import annotations

import math
import random
from datetime import timedelta

from nearmatch.config.settings import Settings
from nearmatch.core.time import now_in
from nearmatch.domain.models import AVAILABLE_TAGS, AuthorSnapshot, CandidatePost, EncounterStatus, GeoPoint

_METERS_PER_DEG_LAT = 111_320.0

_SAMPLES: list[tuple[str, str, str, str]] = [
    ("Girl with the red scarf", "We shared a table at the corner cafe. You laughed at my spilled coffee.", "Lucia", "Coffee first, then everything else."),
    ("Guy reading on the bench", "You were reading Cortazar by the fountain. I wanted to ask about the ending.", "Mateo", "Bookworm and night owl."),
    ("Blue umbrella on the bus", "You offered to share your umbrella at the stop. I missed my chance to say thanks.", "Sofia", "Rainy days and good playlists."),
    ("Dog walker at the park", "Your beagle tried to steal my sandwich. You apologized with the best smile.", "Diego", "Dogs, tacos and long walks."),
    ("Concert in the plaza", "We sang the same chorus too loud. You looked back twice.", "Valeria", "Live music or nothing."),
    ("Metro line 2 at rush hour", "You held the door for me and we both pretended not to look.", "Andres", "Engineer by day, cook by night."),
]


def random_point_near(rng: random.Random, center: GeoPoint, radius_m: float) -> GeoPoint:
    """Uniform random point within `radius_m` of `center` (longitude scaled by latitude)."""
    w = radius_m * math.sqrt(rng.random())
    t = 2 * math.pi * rng.random()
    dy_m = w * math.sin(t)
    dx_m = w * math.cos(t)
    cos_lat = max(1e-6, math.cos(math.radians(center.lat)))
    lat = center.lat + dy_m / _METERS_PER_DEG_LAT
    lon = center.lon + dx_m / (_METERS_PER_DEG_LAT * cos_lat)
    lat = min(90.0, max(-90.0, lat))
    lon = ((lon + 180.0) % 360.0) - 180.0
    return GeoPoint(lat=lat, lon=lon)


def random_tags(rng: random.Random) -> list[str]:
    return rng.sample(list(AVAILABLE_TAGS), rng.randint(1, 2))


class MockEncounterGenerator:
    """Implements both the candidate and the opener generator interfaces."""

    def __init__(self, settings: Settings, *, seed: int | None = None):
        self._settings = settings
        chosen = seed if seed is not None else settings.generator.seed
        self._rng = random.Random(chosen)

    def generate_candidates(self, near: GeoPoint) -> list[CandidatePost]:
        cfg = self._settings.generator
        now = now_in(self._settings.app.timezone)
        out: list[CandidatePost] = []
        for index in range(cfg.candidate_count):
            title, description, name, bio = _SAMPLES[index % len(_SAMPLES)]
            author = AuthorSnapshot(
                user_id=f"mock-user-{index}",
                name=name,
                bio=bio,
                images=[f"https://picsum.photos/seed/{name}/400/600", f"https://picsum.photos/seed/{name}2/400/600"],
            )
            out.append(
                CandidatePost(
                    id=f"encounter-{index}",
                    location=random_point_near(self._rng, near, cfg.spread_m),
                    created_at=now - timedelta(seconds=self._rng.uniform(0, 86_400)),
                    author=author,
                    title=title,
                    description=description,
                    tags=random_tags(self._rng),
                    image=f"https://picsum.photos/seed/location{index}/500/300",
                    status=EncounterStatus.PENDING,
                )
            )
        if out and cfg.simulate_inbound_like:
            out[0].status = EncounterStatus.LIKED_BY_THEM
        return out

    def generate_opener(self, post_title: str) -> str:
        title = post_title.strip()
        if not title:
            return self._settings.chat.fallback_opener
        return f'Hi! I think I was the one from "{title}". So glad you said yes!'
