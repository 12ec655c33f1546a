"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- posts (`OwnPost`, `CandidatePost`) and their interaction `EncounterStatus`
- chat state (`ChatSession`, `ChatMessage`)
- read-only projections (`ClusteredMarkers`, `ExploreView`, `ChatSummary`)
- view toggles (`ViewState`, `MapFilters`) and emitted `EngineEvent`s

Keeping these models in one place helps:
- validation (reject bad coordinates, empty titles and unknown tags early),
- typed refactors,
- consistent JSON output across CLI/API.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

EncounterTag = Literal["crush", "eye_contact", "interest", "curiosity", "attraction", "like"]

AVAILABLE_TAGS: tuple[str, ...] = ("crush", "eye_contact", "interest", "curiosity", "attraction", "like")

Sender = Literal["me", "partner", "system"]

ExploreMode = Literal["grouped", "list", "drilldown"]


class EncounterStatus(str, Enum):
    """Interaction status of a candidate post, as seen by the current user."""

    PENDING = "pending"
    LIKED_BY_ME = "liked_by_me"
    LIKED_BY_THEM = "liked_by_them"
    MATCHED = "matched"
    HIDDEN = "hidden"


class GeoPoint(BaseModel):
    """A geographic point in decimal degrees."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


def _normalize_tags(tags: list[str]) -> list[str]:
    return sorted({t.strip().lower() for t in tags if t and t.strip()})


class UserProfile(BaseModel):
    """The current user's profile; posts carry a frozen snapshot of it."""

    id: str = "me"
    name: str = ""
    age: int | None = Field(default=None, ge=0, le=130)
    bio: str = ""
    quick_message: str | None = None
    images: list[str] = Field(default_factory=list)
    cover_image: str | None = None

    @property
    def avatar(self) -> str | None:
        return self.images[0] if self.images else self.cover_image


class AuthorSnapshot(BaseModel):
    """Author details captured at post creation time."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    name: str
    bio: str = ""
    images: list[str] = Field(default_factory=list)

    @property
    def avatar(self) -> str | None:
        return self.images[0] if self.images else None

    @classmethod
    def of(cls, profile: UserProfile) -> "AuthorSnapshot":
        images = list(profile.images) or ([profile.cover_image] if profile.cover_image else [])
        return cls(user_id=profile.id, name=profile.name, bio=profile.bio, images=images)


class PostDraft(BaseModel):
    """User input for the publish action."""

    location: GeoPoint
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    tags: list[EncounterTag] = Field(default_factory=list)
    image: str | None = None

    @field_validator("title", "description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize(cls, tags: list[str]) -> list[str]:
        return _normalize_tags(list(tags or []))


class EncounterPost(BaseModel):
    """Fields shared by own and candidate posts."""

    id: str
    location: GeoPoint
    created_at: datetime
    author: AuthorSnapshot
    title: str
    description: str = ""
    tags: list[EncounterTag] = Field(default_factory=list)
    image: str | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize(cls, tags: list[str]) -> list[str]:
        return _normalize_tags(list(tags or []))

    @property
    def lat(self) -> float:
        return self.location.lat

    @property
    def lon(self) -> float:
        return self.location.lon


class OwnPost(EncounterPost):
    """One of the current user's published encounters (immutable once created)."""

    model_config = ConfigDict(frozen=True)


class CandidatePost(EncounterPost):
    """A post authored by another user; only `status` ever changes."""

    model_config = ConfigDict(validate_assignment=True)

    status: EncounterStatus = EncounterStatus.PENDING


class ChatMessage(BaseModel):
    """One appended chat line; ordering is append order, not `timestamp`."""

    model_config = ConfigDict(frozen=True)

    id: str
    sender: Sender
    text: str
    timestamp: datetime


class ChatSession(BaseModel):
    """Message thread keyed by the candidate post it was created from."""

    post_id: str
    partner_name: str
    partner_image: str | None = None
    messages: list[ChatMessage] = Field(default_factory=list)
    unread_count: int = Field(0, ge=0)
    partner_typing: bool = False


class ChatSummary(BaseModel):
    """List-view row for one chat session."""

    post_id: str
    partner_name: str
    partner_image: str | None = None
    last_message: str | None = None
    unread_count: int = 0
    partner_typing: bool = False


class ChatList(BaseModel):
    chats: list[ChatSummary] = Field(default_factory=list)
    total_unread: int = 0


class MapFilters(BaseModel):
    """Per-category map toggles."""

    mine: bool = True
    possible: bool = True
    liked_me: bool = True
    match: bool = True
    hidden: bool = True


class ViewState(BaseModel):
    """Visibility and explore toggles for one viewer."""

    show_hidden: bool = False
    map_filters: MapFilters = Field(default_factory=MapFilters)
    filter_tags: list[EncounterTag] = Field(default_factory=list)
    explore_mode: ExploreMode = "grouped"
    explore_own_post_id: str | None = None


class Marker(BaseModel):
    """A single (unclustered) map marker."""

    post_id: str
    kind: Literal["own", "candidate"]
    location: GeoPoint
    status: EncounterStatus | None = None


class Cluster(BaseModel):
    """An aggregate marker at the mean coordinate of its members."""

    id: str
    location: GeoPoint
    count: int = Field(..., ge=2)
    member_ids: list[str] = Field(default_factory=list)


class ClusteredMarkers(BaseModel):
    zoom: float
    threshold_m: float
    singles: list[Marker] = Field(default_factory=list)
    clusters: list[Cluster] = Field(default_factory=list)


class NearbyCount(BaseModel):
    """Visible candidates within the match radius of one specific own post."""

    own_post: OwnPost
    count: int = Field(..., ge=0)


class ExploreView(BaseModel):
    """The explore tab: grouped summary, tag-filtered list or drill-down."""

    mode: ExploreMode
    own_posts: list[NearbyCount] = Field(default_factory=list)
    candidates: list[CandidatePost] = Field(default_factory=list)
    selected_own_post_id: str | None = None


EventKind = Literal[
    "post_published",
    "post_deleted",
    "like_sent",
    "match_formed",
    "encounter_hidden",
    "match_cancelled",
    "message_received",
    "drilldown_results",
]


class EngineEvent(BaseModel):
    """A notification emitted by an engine action (or the delayed reply)."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    message: str
    post_id: str | None = None
    at: datetime


class ActionResult(BaseModel):
    """What an interaction action did: the new status plus the events it emitted."""

    post_id: str
    status: EncounterStatus
    events: list[EngineEvent] = Field(default_factory=list)
