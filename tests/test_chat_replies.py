import pytest
from conftest import StubOpener, make_candidate

from nearmatch.chat.orchestrator import ChatOrchestrator
from nearmatch.domain.errors import NotFound
from nearmatch.domain.models import EncounterStatus
from nearmatch.engine.session import EncounterEngine


class RecordingScheduler:
    """Keeps every callback and ignores cancellation, like a timer that already started."""

    def __init__(self):
        self.callbacks = []

    def schedule(self, key, delay_seconds, callback):
        self.callbacks.append(callback)
        return f"task-{len(self.callbacks)}"

    def cancel(self, key):
        return 0

    def pending(self, key):
        return 0

    def shutdown(self):
        pass

    def fire_all(self):
        for callback in self.callbacks:
            callback()


@pytest.fixture
def matched(engine):
    engine.load_candidates([make_candidate("c", 0.0, 0.0, status=EncounterStatus.LIKED_BY_THEM, name="Sofia")])
    engine.connect("c")
    engine.drain_events()
    return engine


def test_focused_reply_arrives_after_delay_without_unread(matched, scheduler, settings):
    matched.open_chat("c")
    sent = matched.send_message("c", "  Was that you by the fountain?  ")

    assert sent.sender == "me"
    assert sent.text == "Was that you by the fountain?"
    assert matched.chat("c").partner_typing is True

    scheduler.advance(settings.chat.reply_delay_seconds - 0.1)
    assert len(matched.chat("c").messages) == 3

    scheduler.advance(0.2)
    chat = matched.chat("c")
    assert [m.sender for m in chat.messages] == ["system", "partner", "me", "partner"]
    assert chat.messages[-1].text == settings.chat.reply_lines[0]
    assert chat.unread_count == 0
    assert chat.partner_typing is False
    assert matched.drain_events() == []


def test_unfocused_reply_counts_as_unread_and_notifies(matched, scheduler):
    matched.open_chat("c")
    matched.send_message("c", "Hello!")
    matched.close_chat()

    scheduler.run_all()

    assert matched.chat("c").unread_count == 1
    assert matched.total_unread() == 1
    events = matched.drain_events()
    assert [e.kind for e in events] == ["message_received"]
    assert events[0].message == "New message from Sofia"
    assert events[0].post_id == "c"


def test_multiple_sends_each_get_a_reply(matched, scheduler, settings):
    matched.open_chat("c")
    matched.send_message("c", "one")
    scheduler.advance(1.0)
    matched.send_message("c", "two")

    scheduler.advance(settings.chat.reply_delay_seconds - 1.0)
    chat = matched.chat("c")
    assert chat.messages[-1].sender == "partner"
    assert chat.partner_typing is True

    scheduler.advance(1.0)
    chat = matched.chat("c")
    assert [m.sender for m in chat.messages[-4:]] == ["me", "me", "partner", "partner"]
    assert chat.messages[-1].text == settings.chat.reply_lines[1]
    assert chat.partner_typing is False


def test_reply_after_unmatch_is_discarded(matched, scheduler):
    matched.open_chat("c")
    matched.send_message("c", "Hello?")
    matched.unmatch("c")

    assert scheduler.pending("c") == 0
    assert scheduler.run_all() == 0
    assert matched.chat("c") is None
    assert matched.candidate("c").status == EncounterStatus.PENDING


def test_timer_that_already_fired_cannot_resurrect_unmatched_chat(settings):
    scheduler = RecordingScheduler()
    eng = EncounterEngine(settings=settings, scheduler=scheduler, opener_generator=StubOpener())
    eng.load_candidates([make_candidate("c", 0.0, 0.0, status=EncounterStatus.LIKED_BY_THEM)])
    eng.connect("c")
    eng.send_message("c", "Hello?")
    eng.unmatch("c")

    # The timer was already running when unmatch tried to cancel it.
    scheduler.fire_all()

    assert eng.chat("c") is None
    assert eng.candidate("c").status == EncounterStatus.PENDING
    assert eng.total_unread() == 0


def test_reply_scheduled_for_a_replaced_session_is_dropped(settings):
    scheduler = RecordingScheduler()
    chats = ChatOrchestrator(settings, scheduler=scheduler)
    candidate = make_candidate("c", 0.0, 0.0, status=EncounterStatus.MATCHED)
    chats.create_for_match(candidate, "Hi!")
    replies = []
    chats.send("c", "first life", on_reply=lambda post_id, token: replies.append(token))

    chats.recover(candidate)

    assert chats.deliver_reply("c", replies[0], focused=True) is None
    assert [m.sender for m in chats.get("c").messages] == ["system"]


def test_recovered_session_rotates_reply_lines(engine, scheduler, settings):
    engine.load_candidates([make_candidate("r", 0.0, 0.0, status=EncounterStatus.MATCHED)])
    engine.open_chat("r")

    engine.send_message("r", "one")
    scheduler.run_all()
    engine.send_message("r", "two")
    scheduler.run_all()

    replies = [m.text for m in engine.chat("r").messages if m.sender == "partner"]
    assert replies == settings.chat.reply_lines[:2]


def test_send_to_missing_chat_fails(engine):
    with pytest.raises(NotFound):
        engine.send_message("nobody", "hi")


def test_blank_message_is_rejected(matched):
    with pytest.raises(ValueError):
        matched.send_message("c", "   ")
    assert len(matched.chat("c").messages) == 2


def test_close_cancels_pending_replies(matched, scheduler):
    matched.send_message("c", "bye")
    matched.close()
    assert scheduler.pending("c") == 0
