from __future__ import annotations

# This module is the per-user engine: one coherent in-memory state (own posts,
# candidate posts, chat sessions, view toggles) mutated by user actions plus the
# delayed partner reply.
#
# Concurrency model:
# - Every mutating action and every projection runs under one re-entrant lock, so
#   a reader never observes a half-applied transition (e.g. "matched" without
#   its chat session).
# - The only slow call (opener generation) runs outside the lock; the transition
#   is re-validated once the lock is re-acquired.
# - Delayed replies re-enter through `_on_reply`, which takes the same lock and
#   drops the reply unless the post is still matched to the same session.

import logging
import threading
import uuid
from collections import deque

from nearmatch.chat.orchestrator import ChatOrchestrator
from nearmatch.chat.scheduler import ReplyScheduler, ThreadingReplyScheduler
from nearmatch.config.settings import Settings, get_settings
from nearmatch.core.time import ensure_tz, now_in
from nearmatch.domain.errors import CapacityExceeded, InvalidTransition, NotFound
from nearmatch.domain.models import (
    ActionResult,
    AuthorSnapshot,
    CandidatePost,
    ChatList,
    ChatMessage,
    ChatSession,
    ClusteredMarkers,
    EncounterStatus,
    EngineEvent,
    EventKind,
    ExploreView,
    GeoPoint,
    MapFilters,
    NearbyCount,
    OwnPost,
    PostDraft,
    UserProfile,
    ViewState,
)
from nearmatch.features import clustering, visibility
from nearmatch.features.lifecycle import Action, Effect, plan_transition
from nearmatch.ingestion.base import CandidateGenerator, LocationSource, OpenerGenerator
from nearmatch.ingestion.location import resolve_location

logger = logging.getLogger(__name__)

_EFFECT_MESSAGES: dict[Effect, tuple[EventKind, str]] = {
    Effect.LIKE_SENT: ("like_sent", "Like sent"),
    Effect.MATCH_FORMED: ("match_formed", "It's a match with {name}!"),
    Effect.HIDDEN: ("encounter_hidden", "Encounter hidden"),
    Effect.MATCH_CANCELLED: ("match_cancelled", "Match cancelled"),
}



def _detached(counts: list[NearbyCount]) -> list[NearbyCount]:
    return [NearbyCount(own_post=n.own_post.model_copy(deep=True), count=n.count) for n in counts]

class EncounterEngine:
    """Proximity visibility & matching engine for a single viewer."""

    def __init__(
        self,
        profile: UserProfile | None = None,
        *,
        settings: Settings | None = None,
        scheduler: ReplyScheduler | None = None,
        opener_generator: OpenerGenerator | None = None,
        candidate_generator: CandidateGenerator | None = None,
    ):
        self._settings = settings or get_settings()
        self._lock = threading.RLock()
        self._profile = profile or UserProfile()
        self._own_posts: list[OwnPost] = []
        self._candidates: dict[str, CandidatePost] = {}
        self._view = ViewState()
        self._focused_chat: str | None = None
        self._events: deque[EngineEvent] = deque(maxlen=self._settings.events.max_buffered)
        self._candidate_generator = candidate_generator
        self._scheduler = scheduler or ThreadingReplyScheduler()
        self._chats = ChatOrchestrator(
            self._settings, scheduler=self._scheduler, opener_generator=opener_generator
        )
        self.location: GeoPoint | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def radius_m(self) -> float:
        return float(self._settings.visibility.match_radius_m)

    # --- events ------------------------------------------------------------

    def _emit(self, kind: EventKind, message: str, post_id: str | None = None) -> EngineEvent:
        event = EngineEvent(kind=kind, message=message, post_id=post_id, at=now_in(self._settings.app.timezone))
        self._events.append(event)
        return event

    def drain_events(self) -> list[EngineEvent]:
        """Return and clear buffered notifications (oldest first)."""
        with self._lock:
            out = list(self._events)
            self._events.clear()
            return out

    # --- profile & candidate catalog ---------------------------------------

    @property
    def profile(self) -> UserProfile:
        with self._lock:
            return self._profile.model_copy(deep=True)

    def update_profile(self, **changes) -> UserProfile:
        """Edit the profile; existing posts keep the snapshot taken when they were published."""
        with self._lock:
            allowed = {"name", "bio", "age", "quick_message", "images", "cover_image"}
            unknown = set(changes) - allowed
            if unknown:
                raise ValueError(f"Unknown profile fields: {sorted(unknown)}")
            payload = {**self._profile.model_dump(), **changes}
            self._profile = UserProfile.model_validate(payload)
            return self._profile.model_copy(deep=True)

    def load_candidates(self, candidates: list[CandidatePost]) -> int:
        """Add generator output to the catalog; ids already present are left untouched."""
        added = 0
        with self._lock:
            for candidate in candidates:
                if candidate.id in self._candidates:
                    continue
                created = ensure_tz(candidate.created_at, self._settings.app.timezone)
                self._candidates[candidate.id] = candidate.model_copy(update={"created_at": created}, deep=True)
                added += 1
        return added

    def bootstrap(self, location_source: LocationSource | None = None, *, fallback: GeoPoint | None = None) -> GeoPoint:
        """Resolve the viewer's position and load generated candidates around it."""
        if fallback is None:
            fallback = GeoPoint(
                lat=self._settings.location.fallback_lat, lon=self._settings.location.fallback_lon
            )
        location = resolve_location(location_source, fallback)

        generated: list[CandidatePost] = []
        if self._candidate_generator is not None:
            try:
                generated = list(self._candidate_generator.generate_candidates(location))
            except Exception as exc:
                logger.warning("Candidate generator unavailable (%s); starting with no candidates", exc)

        with self._lock:
            self.location = location
        added = self.load_candidates(generated)
        logger.info("Bootstrapped engine at %.5f,%.5f with %d candidates", location.lat, location.lon, added)
        return location

    def candidate(self, post_id: str) -> CandidatePost:
        with self._lock:
            return self._require_candidate(post_id).model_copy(deep=True)

    def candidates(self) -> list[CandidatePost]:
        """Whole catalog, hidden posts included."""
        with self._lock:
            return [c.model_copy(deep=True) for c in self._candidates.values()]

    def _require_candidate(self, post_id: str) -> CandidatePost:
        candidate = self._candidates.get(post_id)
        if candidate is None:
            raise NotFound("candidate", post_id)
        return candidate

    # --- own posts ---------------------------------------------------------

    def own_posts(self) -> list[OwnPost]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._own_posts]

    def publish(self, draft: PostDraft, *, id_prefix: str = "mine") -> OwnPost:
        """Publish an own post (newest first); fails once the cap is reached."""
        with self._lock:
            limit = self._settings.posts.max_own_posts
            if len(self._own_posts) >= limit:
                raise CapacityExceeded(limit)
            post = OwnPost(
                id=f"{id_prefix}-{uuid.uuid4().hex[:10]}",
                location=draft.location,
                created_at=now_in(self._settings.app.timezone),
                author=AuthorSnapshot.of(self._profile),
                title=draft.title,
                description=draft.description,
                tags=list(draft.tags),
                image=draft.image,
            )
            self._own_posts.insert(0, post)
            self._emit("post_published", "Encounter published", post.id)
            logger.info("Published own post %s (%d/%d)", post.id, len(self._own_posts), limit)
            return post.model_copy(deep=True)

    def quick_publish(self, location: GeoPoint) -> OwnPost:
        """Publish with the profile's quick message and the preset title/tags."""
        template = self._settings.posts.quick_publish
        with self._lock:
            description = (self._profile.quick_message or "").strip() or template.description
            draft = PostDraft(
                location=location,
                title=template.title,
                description=description,
                tags=list(template.tags),
                image=self._profile.avatar,
            )
            return self.publish(draft, id_prefix="mine-quick")

    def delete_post(self, post_id: str) -> None:
        with self._lock:
            for i, post in enumerate(self._own_posts):
                if post.id == post_id:
                    del self._own_posts[i]
                    break
            else:
                raise NotFound("own post", post_id)
            if self._view.explore_own_post_id == post_id:
                self._view = self._view.model_copy(update={"explore_own_post_id": None})
            self._emit("post_deleted", "Encounter deleted", post_id)
            logger.info("Deleted own post %s", post_id)

    # --- lifecycle actions -------------------------------------------------

    def connect(self, post_id: str) -> ActionResult:
        """Like a candidate; liking an inbound like forms a match and opens a chat."""
        with self._lock:
            candidate = self._require_candidate(post_id)
            transition = plan_transition(Action.CONNECT, candidate.status, post_id=post_id)
            if transition.effect is not Effect.MATCH_FORMED:
                return self._apply(candidate, transition.target, transition.effect)
            title = candidate.title

        opener = self._chats.fetch_opener(title)

        with self._lock:
            candidate = self._require_candidate(post_id)
            transition = plan_transition(Action.CONNECT, candidate.status, post_id=post_id)
            if transition.effect is not Effect.MATCH_FORMED:
                # Status moved while the opener was being generated.
                raise InvalidTransition(Action.CONNECT.value, candidate.status.value, post_id)
            self._chats.create_for_match(candidate, opener)
            logger.info("Match formed with %s", post_id)
            return self._apply(candidate, transition.target, transition.effect)

    def reject(self, post_id: str) -> ActionResult:
        with self._lock:
            candidate = self._require_candidate(post_id)
            transition = plan_transition(Action.REJECT, candidate.status, post_id=post_id)
            return self._apply(candidate, transition.target, transition.effect)

    def unmatch(self, post_id: str) -> ActionResult:
        with self._lock:
            candidate = self._require_candidate(post_id)
            transition = plan_transition(Action.UNMATCH, candidate.status, post_id=post_id)
            self._chats.destroy(post_id)
            if self._focused_chat == post_id:
                self._focused_chat = None
            logger.info("Match with %s cancelled", post_id)
            return self._apply(candidate, transition.target, transition.effect)

    def _apply(self, candidate: CandidatePost, target: EncounterStatus, effect: Effect) -> ActionResult:
        candidate.status = target
        kind, template = _EFFECT_MESSAGES[effect]
        event = self._emit(kind, template.format(name=candidate.author.name), candidate.id)
        return ActionResult(post_id=candidate.id, status=target, events=[event])

    # --- chat --------------------------------------------------------------

    def open_chat(self, post_id: str) -> ChatSession:
        """Focus a chat and mark it read, recreating a lost session for a matched post."""
        with self._lock:
            session = self._chats.get(post_id)
            if session is None:
                candidate = self._require_candidate(post_id)
                if candidate.status != EncounterStatus.MATCHED:
                    raise InvalidTransition("open chat", candidate.status.value, post_id)
                session = self._chats.recover(candidate)
            self._chats.mark_read(post_id)
            self._focused_chat = post_id
            return session.model_copy(deep=True)

    def close_chat(self) -> None:
        with self._lock:
            self._focused_chat = None

    @property
    def focused_chat(self) -> str | None:
        with self._lock:
            return self._focused_chat

    def chat(self, post_id: str) -> ChatSession | None:
        with self._lock:
            session = self._chats.get(post_id)
            return session.model_copy(deep=True) if session is not None else None

    def send_message(self, post_id: str, text: str) -> ChatMessage:
        with self._lock:
            return self._chats.send(post_id, text, on_reply=self._on_reply)

    def _on_reply(self, post_id: str, token: str) -> None:
        with self._lock:
            candidate = self._candidates.get(post_id)
            if candidate is None or candidate.status != EncounterStatus.MATCHED:
                logger.debug("Discarding reply for %s: no longer matched", post_id)
                return
            focused = self._focused_chat == post_id
            reply = self._chats.deliver_reply(post_id, token, focused=focused)
            if reply is not None and not focused:
                session = self._chats.require(post_id)
                self._emit("message_received", f"New message from {session.partner_name}", post_id)

    def chat_list(self) -> ChatList:
        with self._lock:
            return self._chats.summaries()

    def total_unread(self) -> int:
        return self.chat_list().total_unread

    # --- view toggles ------------------------------------------------------

    @property
    def view(self) -> ViewState:
        with self._lock:
            return self._view.model_copy(deep=True)

    def set_view(self, **changes) -> ViewState:
        """Update visibility/explore toggles (validated as a whole)."""
        with self._lock:
            payload = {**self._view.model_dump(), **changes}
            view = ViewState.model_validate(payload)
            if view.explore_own_post_id is not None and not any(
                p.id == view.explore_own_post_id for p in self._own_posts
            ):
                raise NotFound("own post", view.explore_own_post_id)
            entering_drilldown = (
                view.explore_mode == "drilldown"
                and view.explore_own_post_id is not None
                and (self._view.explore_mode, self._view.explore_own_post_id)
                != (view.explore_mode, view.explore_own_post_id)
            )
            self._view = view
            if entering_drilldown:
                mine = next(p for p in self._own_posts if p.id == view.explore_own_post_id)
                found = len(visibility.near_own_post(mine, self._visible(), radius_m=self.radius_m))
                if found:
                    self._emit("drilldown_results", f"{found} people found nearby", mine.id)
            return view.model_copy(deep=True)

    def set_map_filters(self, **changes) -> MapFilters:
        with self._lock:
            filters = MapFilters.model_validate({**self._view.map_filters.model_dump(), **changes})
            self._view = self._view.model_copy(update={"map_filters": filters})
            return filters.model_copy()

    # --- projections -------------------------------------------------------

    def _visible(self, show_hidden: bool | None = None) -> list[CandidatePost]:
        flag = self._view.show_hidden if show_hidden is None else bool(show_hidden)
        return visibility.visible(
            self._own_posts, self._candidates.values(), show_hidden=flag, radius_m=self.radius_m
        )

    def visible_candidates(self, *, show_hidden: bool | None = None) -> list[CandidatePost]:
        with self._lock:
            return [c.model_copy(deep=True) for c in self._visible(show_hidden)]

    def nearby_counts(self) -> list[NearbyCount]:
        with self._lock:
            return _detached(visibility.nearby_counts(self._own_posts, self._visible(), radius_m=self.radius_m))

    def distance_to_nearest_own(self, post_id: str) -> float | None:
        with self._lock:
            return visibility.nearest_own_distance_m(self._own_posts, self._require_candidate(post_id))

    def explore(self) -> ExploreView:
        """Explore tab projection according to the current view mode."""
        with self._lock:
            view = self._view
            shown = self._visible()
            if view.explore_mode == "drilldown" and view.explore_own_post_id:
                mine = next((p for p in self._own_posts if p.id == view.explore_own_post_id), None)
                if mine is None:
                    return ExploreView(mode="drilldown", selected_own_post_id=view.explore_own_post_id)
                near = visibility.near_own_post(mine, shown, radius_m=self.radius_m)
                return ExploreView(
                    mode="drilldown",
                    candidates=[c.model_copy(deep=True) for c in near],
                    selected_own_post_id=mine.id,
                )
            if view.explore_mode == "list":
                listed = visibility.filter_by_tags(shown, view.filter_tags)
                return ExploreView(mode="list", candidates=[c.model_copy(deep=True) for c in listed])
            return ExploreView(
                mode=view.explore_mode,
                own_posts=_detached(visibility.nearby_counts(self._own_posts, shown, radius_m=self.radius_m)),
            )

    def markers(self, zoom: float) -> ClusteredMarkers:
        """Clustered map markers for `zoom` under the current map filters."""
        with self._lock:
            posts = clustering.select_markers(self._own_posts, self._visible(), self._view.map_filters)
            threshold = clustering.threshold_for_zoom(zoom, self._settings.clustering)
            return clustering.cluster_posts(posts, threshold_m=threshold, zoom=zoom)

    def snapshot(self) -> dict:
        """JSON-friendly dump of the whole engine state (CLI/debugging)."""
        with self._lock:
            return {
                "profile": self._profile.model_dump(mode="json"),
                "location": self.location.model_dump(mode="json") if self.location else None,
                "own_posts": [p.model_dump(mode="json") for p in self._own_posts],
                "candidates": [c.model_dump(mode="json") for c in self._candidates.values()],
                "chats": [
                    s.model_dump(mode="json")
                    for s in (self._chats.get(pid) for pid in self._candidates)
                    if s is not None
                ],
                "view": self._view.model_dump(mode="json"),
                "focused_chat": self._focused_chat,
                "generated_at": now_in(self._settings.app.timezone).isoformat(),
            }

    def close(self) -> None:
        """Cancel every pending reply; the engine must not be used afterwards."""
        with self._lock:
            self._chats.shutdown()
