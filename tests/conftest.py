from datetime import datetime, timezone

import pytest

from nearmatch.chat.scheduler import ManualReplyScheduler
from nearmatch.config.settings import get_settings
from nearmatch.domain.models import AuthorSnapshot, CandidatePost, EncounterStatus, GeoPoint, OwnPost, UserProfile
from nearmatch.engine.session import EncounterEngine


def make_own(post_id: str, lat: float, lon: float, tags=None) -> OwnPost:
    return OwnPost(
        id=post_id,
        location=GeoPoint(lat=lat, lon=lon),
        created_at=datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc),
        author=AuthorSnapshot(user_id="me", name="Alex"),
        title=f"Own {post_id}",
        description="Blue jacket in the coffee line.",
        tags=tags or [],
    )


def make_candidate(
    post_id: str,
    lat: float,
    lon: float,
    status: EncounterStatus = EncounterStatus.PENDING,
    tags=None,
    name: str = "Lucia",
) -> CandidatePost:
    return CandidatePost(
        id=post_id,
        location=GeoPoint(lat=lat, lon=lon),
        created_at=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc),
        author=AuthorSnapshot(user_id=f"user-{post_id}", name=name, images=[f"https://img.test/{post_id}.jpg"]),
        title=f"Encounter {post_id}",
        description="Red scarf by the fountain.",
        tags=tags or ["eye_contact"],
        status=status,
    )


class StubOpener:
    def __init__(self, text: str = "Hey, it was me with the red scarf!"):
        self.text = text
        self.titles: list[str] = []

    def generate_opener(self, post_title: str) -> str:
        self.titles.append(post_title)
        return self.text


class FailingOpener:
    def generate_opener(self, post_title: str) -> str:
        raise RuntimeError("generator offline")


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def scheduler():
    return ManualReplyScheduler()


@pytest.fixture
def engine(settings, scheduler):
    eng = EncounterEngine(
        UserProfile(name="Alex", images=["https://img.test/me.jpg"]),
        settings=settings,
        scheduler=scheduler,
        opener_generator=StubOpener(),
    )
    yield eng
    eng.close()
