import time

import pytest
from conftest import FailingOpener, StubOpener, make_candidate

from nearmatch.chat.scheduler import ManualReplyScheduler, ThreadingReplyScheduler
from nearmatch.domain.errors import CapacityExceeded, InvalidTransition, NotFound
from nearmatch.domain.models import EncounterStatus, GeoPoint, PostDraft, UserProfile
from nearmatch.engine.session import EncounterEngine


def _draft(lat=0.0, lon=0.0, title="Coffee line", tags=None) -> PostDraft:
    return PostDraft(location=GeoPoint(lat=lat, lon=lon), title=title, description="Blue jacket.", tags=tags or [])


def test_end_to_end_discover_like_and_match(engine):
    engine.publish(_draft())
    engine.load_candidates(
        [
            make_candidate("a", 0.0, 0.001),
            make_candidate("b", 0.0, 1.0),
        ]
    )

    assert [c.id for c in engine.visible_candidates()] == ["a"]

    liked = engine.connect("a")
    assert liked.status == EncounterStatus.LIKED_BY_ME
    assert engine.chat("a") is None
    assert [e.kind for e in liked.events] == ["like_sent"]

    engine.load_candidates([make_candidate("c", 0.0, 0.001, status=EncounterStatus.LIKED_BY_THEM, name="Sofia")])
    matched = engine.connect("c")

    assert matched.status == EncounterStatus.MATCHED
    assert engine.candidate("c").status == EncounterStatus.MATCHED
    chat = engine.chat("c")
    assert chat is not None
    assert [m.sender for m in chat.messages] == ["system", "partner"]
    assert chat.messages[1].text == "Hey, it was me with the red scarf!"
    assert chat.unread_count == 1
    assert chat.partner_name == "Sofia"
    assert engine.chat_list().total_unread == 1


def test_opener_failure_falls_back_without_failing_the_match(settings):
    eng = EncounterEngine(settings=settings, scheduler=ManualReplyScheduler(), opener_generator=FailingOpener())
    eng.load_candidates([make_candidate("c", 0.0, 0.0, status=EncounterStatus.LIKED_BY_THEM)])

    result = eng.connect("c")

    assert result.status == EncounterStatus.MATCHED
    assert eng.chat("c").messages[1].text == settings.chat.fallback_opener


def test_sixth_post_is_rejected_and_state_unchanged(engine):
    for i in range(5):
        engine.publish(_draft(lon=i * 0.01, title=f"Post {i}"))
    before = [p.id for p in engine.own_posts()]

    with pytest.raises(CapacityExceeded) as exc:
        engine.publish(_draft(title="One too many"))

    assert exc.value.code == "CAPACITY_EXCEEDED"
    assert [p.id for p in engine.own_posts()] == before
    assert len(before) == 5

    with pytest.raises(CapacityExceeded):
        engine.quick_publish(GeoPoint(lat=0.0, lon=0.0))


def test_own_posts_are_newest_first_and_deletable(engine):
    first = engine.publish(_draft(title="First"))
    second = engine.publish(_draft(title="Second"))
    assert [p.id for p in engine.own_posts()] == [second.id, first.id]

    engine.delete_post(first.id)
    assert [p.id for p in engine.own_posts()] == [second.id]
    with pytest.raises(NotFound):
        engine.delete_post(first.id)


def test_quick_publish_uses_profile_quick_message(engine, settings):
    engine.update_profile(quick_message="Saw you at the bakery")
    post = engine.quick_publish(GeoPoint(lat=1.0, lon=2.0))

    assert post.title == settings.posts.quick_publish.title
    assert post.description == "Saw you at the bakery"
    assert post.tags == ["eye_contact"]
    assert post.image == "https://img.test/me.jpg"
    assert post.id.startswith("mine-quick-")


def test_profile_edits_do_not_rewrite_existing_snapshots(engine):
    old = engine.publish(_draft())
    engine.update_profile(name="Sam")
    new = engine.publish(_draft(title="Later"))

    assert old.author.name == "Alex"
    assert new.author.name == "Sam"
    with pytest.raises(ValueError):
        engine.update_profile(id="someone-else")


def test_reject_hides_but_keeps_post_addressable(engine):
    engine.publish(_draft())
    engine.load_candidates([make_candidate("a", 0.0, 0.0005)])

    result = engine.reject("a")

    assert result.status == EncounterStatus.HIDDEN
    assert engine.visible_candidates() == []
    assert [c.id for c in engine.visible_candidates(show_hidden=True)] == ["a"]
    assert engine.candidate("a").status == EncounterStatus.HIDDEN

    with pytest.raises(InvalidTransition):
        engine.connect("a")


def test_invalid_transitions_leave_state_untouched(engine):
    engine.load_candidates([make_candidate("t", 0.0, 0.0, status=EncounterStatus.LIKED_BY_THEM)])

    with pytest.raises(InvalidTransition):
        engine.reject("t")
    with pytest.raises(InvalidTransition):
        engine.unmatch("t")
    assert engine.candidate("t").status == EncounterStatus.LIKED_BY_THEM

    engine.connect("t")
    with pytest.raises(InvalidTransition):
        engine.connect("t")
    assert engine.chat_list().total_unread == 1

    with pytest.raises(NotFound):
        engine.connect("missing")


def test_unmatch_resets_to_pending_and_destroys_chat(engine):
    engine.load_candidates([make_candidate("c", 0.0, 0.0, status=EncounterStatus.LIKED_BY_THEM)])
    engine.connect("c")
    engine.open_chat("c")

    result = engine.unmatch("c")

    assert result.status == EncounterStatus.PENDING
    assert engine.chat("c") is None
    assert engine.chat_list().chats == []
    assert engine.focused_chat is None

    # Back in the discovery flow: a plain like, no instant match.
    assert engine.connect("c").status == EncounterStatus.LIKED_BY_ME


def test_open_chat_recovers_missing_session(engine):
    engine.load_candidates([make_candidate("c", 0.0, 0.0, status=EncounterStatus.MATCHED)])

    session = engine.open_chat("c")

    assert [m.sender for m in session.messages] == ["system"]
    assert session.unread_count == 0
    assert engine.focused_chat == "c"


def test_open_chat_requires_a_match(engine):
    engine.load_candidates([make_candidate("p", 0.0, 0.0)])
    with pytest.raises(InvalidTransition):
        engine.open_chat("p")
    assert engine.chat("p") is None


def test_open_chat_marks_read(engine):
    engine.load_candidates([make_candidate("c", 0.0, 0.0, status=EncounterStatus.LIKED_BY_THEM)])
    engine.connect("c")
    assert engine.total_unread() == 1

    engine.open_chat("c")

    assert engine.total_unread() == 0


def test_explore_modes(engine):
    mine = engine.publish(_draft())
    engine.load_candidates(
        [
            make_candidate("a", 0.0, 0.001, tags=["crush"]),
            make_candidate("b", 0.0, -0.001, tags=["interest"]),
            make_candidate("far", 3.0, 3.0),
        ]
    )

    grouped = engine.explore()
    assert grouped.mode == "grouped"
    assert [(n.own_post.id, n.count) for n in grouped.own_posts] == [(mine.id, 2)]

    engine.set_view(explore_mode="list", filter_tags=["interest"])
    assert [c.id for c in engine.explore().candidates] == ["b"]

    engine.drain_events()
    engine.set_view(explore_mode="drilldown", explore_own_post_id=mine.id)
    drill = engine.explore()
    assert drill.selected_own_post_id == mine.id
    assert [c.id for c in drill.candidates] == ["a", "b"]
    assert [e.kind for e in engine.drain_events()] == ["drilldown_results"]

    with pytest.raises(NotFound):
        engine.set_view(explore_own_post_id="nope")


def test_markers_follow_visibility_and_filters(engine):
    engine.publish(_draft())
    engine.load_candidates(
        [
            make_candidate("a", 0.0, 0.0005),
            make_candidate("h", 0.0, -0.0005, status=EncounterStatus.HIDDEN),
            make_candidate("far", 5.0, 5.0),
        ]
    )

    zoomed_in = engine.markers(18)
    assert zoomed_in.clusters == []
    assert sorted(m.post_id for m in zoomed_in.singles if m.kind == "candidate") == ["a"]

    engine.set_view(show_hidden=True)
    zoomed_out = engine.markers(10)
    assert len(zoomed_out.clusters) == 1
    assert zoomed_out.clusters[0].count == 3

    engine.set_map_filters(mine=False, hidden=False)
    assert [m.post_id for m in engine.markers(18).singles] == ["a"]


def test_bootstrap_uses_fallback_when_location_fails(settings):
    class BrokenLocation:
        def current_coordinate(self):
            raise TimeoutError("no fix")

    class OneCandidate:
        def __init__(self):
            self.calls = []

        def generate_candidates(self, near):
            self.calls.append(near)
            return [make_candidate("x", near.lat, near.lon)]

    generator = OneCandidate()
    eng = EncounterEngine(UserProfile(), settings=settings, scheduler=ManualReplyScheduler(), candidate_generator=generator)

    location = eng.bootstrap(BrokenLocation(), fallback=GeoPoint(lat=10.0, lon=20.0))

    assert location == GeoPoint(lat=10.0, lon=20.0)
    assert generator.calls == [location]
    assert [c.id for c in eng.candidates()] == ["x"]


def test_bootstrap_survives_generator_failure(settings):
    class BrokenGenerator:
        def generate_candidates(self, near):
            raise ConnectionError("down")

    eng = EncounterEngine(settings=settings, scheduler=ManualReplyScheduler(), candidate_generator=BrokenGenerator())
    location = eng.bootstrap()

    assert location.lat == settings.location.fallback_lat
    assert eng.candidates() == []


def test_projections_are_detached_from_engine_state(engine):
    published = engine.publish(_draft(tags=["crush"]))
    engine.load_candidates([make_candidate("a", 0.0, 0.0005, tags=["crush"])])

    published.tags.append("like")
    engine.own_posts()[0].tags.append("like")
    engine.visible_candidates()[0].tags.clear()
    engine.candidate("a").author.images.clear()
    engine.candidates()[0].tags.append("interest")
    engine.explore().own_posts[0].own_post.tags.clear()
    engine.profile.images.clear()

    assert engine.own_posts()[0].tags == ["crush"]
    assert engine.candidate("a").tags == ["crush"]
    assert engine.candidate("a").author.images == ["https://img.test/a.jpg"]
    assert engine.profile.images == ["https://img.test/me.jpg"]
    engine.set_view(explore_mode="list", filter_tags=["crush"])
    assert [c.id for c in engine.explore().candidates] == ["a"]


def test_loaded_candidates_are_copied_from_the_caller(engine):
    mine = make_candidate("a", 0.0, 0.0, tags=["crush"])
    engine.load_candidates([mine])

    mine.tags.clear()

    assert engine.candidate("a").tags == ["crush"]


class InterleavingOpener:
    """Runs `interleave` against the engine the first time an opener is requested."""

    def __init__(self, interleave):
        self.engine = None
        self.interleave = interleave
        self.calls = 0

    def generate_opener(self, post_title: str) -> str:
        self.calls += 1
        if self.calls == 1:
            self.interleave(self.engine)
        return "Hey there!"


def _engine_with(opener, settings) -> EncounterEngine:
    eng = EncounterEngine(settings=settings, scheduler=ManualReplyScheduler(), opener_generator=opener)
    opener.engine = eng
    eng.load_candidates([make_candidate("c", 0.0, 0.0, status=EncounterStatus.LIKED_BY_THEM)])
    return eng


def test_connect_racing_another_match_forms_only_one_session(settings):
    opener = InterleavingOpener(lambda eng: eng.connect("c"))
    eng = _engine_with(opener, settings)

    with pytest.raises(InvalidTransition):
        eng.connect("c")

    assert eng.candidate("c").status == EncounterStatus.MATCHED
    chats = eng.chat_list().chats
    assert [c.post_id for c in chats] == ["c"]
    assert [m.sender for m in eng.chat("c").messages] == ["system", "partner"]
    assert eng.total_unread() == 1
    assert [e.kind for e in eng.drain_events()] == ["match_formed"]


def test_connect_revalidates_when_status_moved_during_opener(settings):
    def match_then_unmatch(eng):
        eng.connect("c")
        eng.unmatch("c")

    eng = _engine_with(InterleavingOpener(match_then_unmatch), settings)

    with pytest.raises(InvalidTransition) as exc:
        eng.connect("c")

    assert exc.value.status == "pending"
    assert eng.candidate("c").status == EncounterStatus.PENDING
    assert eng.chat("c") is None
    assert eng.chat_list().chats == []


def _fast_reply_settings(settings, delay: float):
    return settings.model_copy(update={"chat": settings.chat.model_copy(update={"reply_delay_seconds": delay})})


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_real_timer_reply_lands_in_focused_chat(settings):
    eng = EncounterEngine(
        settings=_fast_reply_settings(settings, 0.05),
        scheduler=ThreadingReplyScheduler(),
        opener_generator=StubOpener(),
    )
    eng.load_candidates([make_candidate("c", 0.0, 0.0, status=EncounterStatus.LIKED_BY_THEM)])
    eng.connect("c")
    eng.open_chat("c")

    eng.send_message("c", "Still around?")

    assert _wait_for(lambda: len(eng.chat("c").messages) == 4)
    assert eng.chat("c").unread_count == 0
    assert eng.chat("c").partner_typing is False
    eng.close()


def test_real_timer_reply_after_unmatch_keeps_chat_gone(settings):
    eng = EncounterEngine(
        settings=_fast_reply_settings(settings, 0.1),
        scheduler=ThreadingReplyScheduler(),
        opener_generator=StubOpener(),
    )
    eng.load_candidates([make_candidate("c", 0.0, 0.0, status=EncounterStatus.LIKED_BY_THEM)])
    eng.connect("c")
    eng.send_message("c", "Hello?")

    eng.unmatch("c")
    time.sleep(0.3)

    assert eng.chat("c") is None
    assert eng.chat_list().chats == []
    assert eng.candidate("c").status == EncounterStatus.PENDING
    assert eng.drain_events()[-1].kind == "match_cancelled"
    eng.close()
