"""
API routes.

Endpoints (all engine state is per session id):
- POST   `/api/sessions`: create + bootstrap an engine for one viewer.
- POST   `/api/sessions/{sid}/posts`: publish (5-post cap), `/posts/quick`, DELETE `/posts/{id}`.
- POST   `/api/sessions/{sid}/candidates/{id}/{connect|reject|unmatch}`: lifecycle actions.
- GET    `/api/sessions/{sid}/candidates/visible`, `/explore`, `/nearby-counts`, `/markers`: projections.
- POST   `/api/sessions/{sid}/chats/{id}/open|messages`, `/chats/close`; GET `/chats`.
- GET    `/api/settings`: public settings; GET `/api/distance`: geodistance utility.
"""

from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, Literal

from fastapi import APIRouter, HTTPException, Query, Response
from pydantic import BaseModel, Field

from nearmatch.config.settings import get_settings
from nearmatch.core.geo import GeoPoint as CoreGeoPoint, haversine_m
from nearmatch.domain.errors import CapacityExceeded, EngineError, InvalidTransition, NotFound
from nearmatch.domain.models import (
    ActionResult,
    CandidatePost,
    ChatList,
    ChatMessage,
    ChatSession,
    ClusteredMarkers,
    EncounterTag,
    EngineEvent,
    ExploreMode,
    ExploreView,
    GeoPoint,
    MapFilters,
    NearbyCount,
    OwnPost,
    PostDraft,
    UserProfile,
    ViewState,
)
from nearmatch.engine.registry import SessionRegistry
from nearmatch.engine.session import EncounterEngine
from nearmatch.features.lifecycle import allowed_actions

router = APIRouter()


@lru_cache
def _registry() -> SessionRegistry:
    return SessionRegistry(get_settings())


@contextmanager
def _engine_errors() -> Iterator[None]:
    """Translate engine errors into HTTP errors with stable codes."""
    try:
        yield
    except NotFound as e:
        raise HTTPException(status_code=404, detail={"code": e.code, "message": e.message}) from e
    except (CapacityExceeded, InvalidTransition) as e:
        raise HTTPException(status_code=409, detail={"code": e.code, "message": e.message}) from e
    except EngineError as e:
        raise HTTPException(status_code=500, detail={"code": e.code, "message": e.message}) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail={"code": "VALIDATION_ERROR", "message": str(e)}) from e


def _engine(session_id: str) -> EncounterEngine:
    with _engine_errors():
        return _registry().get(session_id)


class CreateSessionRequest(BaseModel):
    profile: UserProfile = Field(default_factory=UserProfile)
    location: GeoPoint | None = None


class CreateSessionResponse(BaseModel):
    session_id: str
    location: GeoPoint
    candidate_count: int


class ProfileUpdate(BaseModel):
    name: str | None = None
    bio: str | None = None
    age: int | None = Field(default=None, ge=0, le=130)
    quick_message: str | None = None
    images: list[str] | None = None
    cover_image: str | None = None


class ViewUpdate(BaseModel):
    show_hidden: bool | None = None
    map_filters: MapFilters | None = None
    filter_tags: list[EncounterTag] | None = None
    explore_mode: ExploreMode | None = None
    explore_own_post_id: str | None = None


class SendMessageRequest(BaseModel):
    text: str = Field(..., min_length=1)


class VisibleCandidate(BaseModel):
    candidate: CandidatePost
    distance_m: float | None = None
    allowed_actions: list[str] = Field(default_factory=list)


@router.post("/api/sessions", response_model=CreateSessionResponse, status_code=201)
def create_session(req: CreateSessionRequest) -> CreateSessionResponse:
    """Create an isolated engine for one viewer and load candidates around them."""
    session_id, engine = _registry().create(req.profile, location=req.location)
    return CreateSessionResponse(
        session_id=session_id,
        location=engine.location,
        candidate_count=len(engine.candidates()),
    )


@router.delete("/api/sessions/{session_id}", status_code=204)
def close_session(session_id: str) -> Response:
    with _engine_errors():
        _registry().close(session_id)
    return Response(status_code=204)


@router.get("/api/sessions/{session_id}/profile", response_model=UserProfile)
def get_profile(session_id: str) -> UserProfile:
    return _engine(session_id).profile


@router.patch("/api/sessions/{session_id}/profile", response_model=UserProfile)
def update_profile(session_id: str, update: ProfileUpdate) -> UserProfile:
    engine = _engine(session_id)
    with _engine_errors():
        return engine.update_profile(**update.model_dump(exclude_unset=True))


@router.get("/api/sessions/{session_id}/posts", response_model=list[OwnPost])
def list_own_posts(session_id: str) -> list[OwnPost]:
    return _engine(session_id).own_posts()


@router.post("/api/sessions/{session_id}/posts", response_model=OwnPost, status_code=201)
def publish_post(session_id: str, draft: PostDraft) -> OwnPost:
    engine = _engine(session_id)
    with _engine_errors():
        return engine.publish(draft)


@router.post("/api/sessions/{session_id}/posts/quick", response_model=OwnPost, status_code=201)
def quick_publish_post(session_id: str, location: GeoPoint) -> OwnPost:
    engine = _engine(session_id)
    with _engine_errors():
        return engine.quick_publish(location)


@router.delete("/api/sessions/{session_id}/posts/{post_id}", status_code=204)
def delete_post(session_id: str, post_id: str) -> Response:
    engine = _engine(session_id)
    with _engine_errors():
        engine.delete_post(post_id)
    return Response(status_code=204)


@router.get("/api/sessions/{session_id}/view", response_model=ViewState)
def get_view(session_id: str) -> ViewState:
    return _engine(session_id).view


@router.patch("/api/sessions/{session_id}/view", response_model=ViewState)
def update_view(session_id: str, update: ViewUpdate) -> ViewState:
    engine = _engine(session_id)
    with _engine_errors():
        return engine.set_view(**update.model_dump(exclude_unset=True))


@router.get("/api/sessions/{session_id}/candidates/visible", response_model=list[VisibleCandidate])
def get_visible_candidates(session_id: str, show_hidden: bool | None = None) -> list[VisibleCandidate]:
    engine = _engine(session_id)
    out: list[VisibleCandidate] = []
    for candidate in engine.visible_candidates(show_hidden=show_hidden):
        out.append(
            VisibleCandidate(
                candidate=candidate,
                distance_m=engine.distance_to_nearest_own(candidate.id),
                allowed_actions=[a.value for a in allowed_actions(candidate.status)],
            )
        )
    return out


@router.get("/api/sessions/{session_id}/explore", response_model=ExploreView)
def get_explore(session_id: str) -> ExploreView:
    return _engine(session_id).explore()


@router.get("/api/sessions/{session_id}/nearby-counts", response_model=list[NearbyCount])
def get_nearby_counts(session_id: str) -> list[NearbyCount]:
    return _engine(session_id).nearby_counts()


@router.get("/api/sessions/{session_id}/markers", response_model=ClusteredMarkers)
def get_markers(session_id: str, zoom: float = Query(16, ge=0, le=24)) -> ClusteredMarkers:
    return _engine(session_id).markers(zoom)


@router.post("/api/sessions/{session_id}/candidates/{post_id}/{action}", response_model=ActionResult)
def apply_action(session_id: str, post_id: str, action: Literal["connect", "reject", "unmatch"]) -> ActionResult:
    """Run a lifecycle action; undefined transitions answer 409 INVALID_TRANSITION."""
    engine = _engine(session_id)
    with _engine_errors():
        if action == "connect":
            return engine.connect(post_id)
        if action == "reject":
            return engine.reject(post_id)
        return engine.unmatch(post_id)


@router.get("/api/sessions/{session_id}/chats", response_model=ChatList)
def list_chats(session_id: str) -> ChatList:
    return _engine(session_id).chat_list()


@router.post("/api/sessions/{session_id}/chats/close", status_code=204)
def close_chat(session_id: str) -> Response:
    _engine(session_id).close_chat()
    return Response(status_code=204)


@router.post("/api/sessions/{session_id}/chats/{post_id}/open", response_model=ChatSession)
def open_chat(session_id: str, post_id: str) -> ChatSession:
    engine = _engine(session_id)
    with _engine_errors():
        return engine.open_chat(post_id)


@router.get("/api/sessions/{session_id}/chats/{post_id}", response_model=ChatSession)
def get_chat(session_id: str, post_id: str) -> ChatSession:
    session = _engine(session_id).chat(post_id)
    if session is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": f"chat '{post_id}' not found"})
    return session


@router.post("/api/sessions/{session_id}/chats/{post_id}/messages", response_model=ChatMessage, status_code=201)
def send_message(session_id: str, post_id: str, req: SendMessageRequest) -> ChatMessage:
    engine = _engine(session_id)
    with _engine_errors():
        return engine.send_message(post_id, req.text)


@router.get("/api/sessions/{session_id}/events", response_model=list[EngineEvent])
def drain_events(session_id: str) -> list[EngineEvent]:
    """Return and clear the session's buffered notifications."""
    return _engine(session_id).drain_events()


@router.get("/api/settings")
def get_public_settings() -> dict:
    """Return safe-to-expose settings for UI defaults (credentials removed)."""
    settings = get_settings()
    data = settings.model_dump(mode="json")
    data.get("generator", {}).get("gemini", {}).pop("api_key", None)
    return {
        "app": {"name": data["app"]["name"], "timezone": data["app"]["timezone"]},
        "posts": data["posts"],
        "visibility": data["visibility"],
        "clustering": data["clustering"],
        "chat": {"reply_delay_seconds": data["chat"]["reply_delay_seconds"]},
        "generator": {"provider": data["generator"]["provider"]},
    }


@router.get("/api/distance")
def get_distance(
    lat1: float = Query(..., ge=-90, le=90),
    lon1: float = Query(..., ge=-180, le=180),
    lat2: float = Query(..., ge=-90, le=90),
    lon2: float = Query(..., ge=-180, le=180),
) -> dict:
    meters = haversine_m(CoreGeoPoint(lat=lat1, lon=lon1), CoreGeoPoint(lat=lat2, lon=lon2))
    return {"distance_m": meters}
