"""
Match & chat orchestration.

Owns the chat sessions of one engine, keyed by the candidate post id they came
from, plus the pending partner replies for each session.

Staleness rule for delayed replies: every session gets a fresh token when it is
created. A reply carries the token it was scheduled under and is dropped unless
the same session (same token) still exists when it fires. Destroying a session
also cancels its pending tasks, so a late reply can never recreate state for a
pair that is no longer matched.

Locking is the engine's job; every method here assumes the caller holds the
engine lock.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable

from nearmatch.chat.scheduler import ReplyScheduler
from nearmatch.config.settings import Settings
from nearmatch.core.time import now_in
from nearmatch.domain.errors import NotFound
from nearmatch.domain.models import CandidatePost, ChatList, ChatMessage, ChatSession, ChatSummary, Sender
from nearmatch.ingestion.base import OpenerGenerator

logger = logging.getLogger(__name__)

ReplyCallback = Callable[[str, str], None]


class ChatOrchestrator:
    def __init__(
        self,
        settings: Settings,
        *,
        scheduler: ReplyScheduler,
        opener_generator: OpenerGenerator | None = None,
    ):
        self._settings = settings
        self._scheduler = scheduler
        self._opener_generator = opener_generator
        self._sessions: dict[str, ChatSession] = {}
        self._tokens: dict[str, str] = {}
        self._replies_sent: dict[str, int] = {}

    # --- session lifecycle -------------------------------------------------

    def fetch_opener(self, post_title: str) -> str:
        """Ask the opener collaborator for a first line; fall back on any failure."""
        fallback = self._settings.chat.fallback_opener
        if self._opener_generator is None:
            return fallback
        try:
            text = self._opener_generator.generate_opener(post_title)
        except Exception as exc:
            logger.warning("Opener generator unavailable (%s); using fallback opener", exc)
            return fallback
        text = (text or "").strip()
        if not text:
            logger.warning("Opener generator returned an empty line; using fallback opener")
            return fallback
        return text

    def _new_session(self, candidate: CandidatePost, messages: list[ChatMessage], unread: int) -> ChatSession:
        if candidate.id in self._sessions:
            self.destroy(candidate.id)
        session = ChatSession(
            post_id=candidate.id,
            partner_name=candidate.author.name,
            partner_image=candidate.author.avatar,
            messages=messages,
            unread_count=unread,
        )
        self._sessions[candidate.id] = session
        self._tokens[candidate.id] = uuid.uuid4().hex
        self._replies_sent[candidate.id] = 0
        return session

    def create_for_match(self, candidate: CandidatePost, opener: str) -> ChatSession:
        """Seed a new session with the match notice and the partner's opener."""
        messages = [
            self._message("system", self._settings.chat.match_system_text),
            self._message("partner", opener),
        ]
        return self._new_session(candidate, messages, unread=1)

    def recover(self, candidate: CandidatePost) -> ChatSession:
        """Recreate a missing session for a matched post: match notice only, nothing unread."""
        logger.info("Recovering missing chat session for %s", candidate.id)
        messages = [self._message("system", self._settings.chat.match_system_text)]
        return self._new_session(candidate, messages, unread=0)

    def destroy(self, post_id: str) -> bool:
        cancelled = self._scheduler.cancel(post_id)
        if cancelled:
            logger.debug("Cancelled %d pending replies for %s", cancelled, post_id)
        self._tokens.pop(post_id, None)
        self._replies_sent.pop(post_id, None)
        return self._sessions.pop(post_id, None) is not None

    def get(self, post_id: str) -> ChatSession | None:
        return self._sessions.get(post_id)

    def require(self, post_id: str) -> ChatSession:
        session = self._sessions.get(post_id)
        if session is None:
            raise NotFound("chat", post_id)
        return session

    def mark_read(self, post_id: str) -> None:
        self.require(post_id).unread_count = 0

    # --- messaging ---------------------------------------------------------

    def send(self, post_id: str, text: str, *, on_reply: ReplyCallback) -> ChatMessage:
        """Append the user's message and schedule the partner's delayed reply."""
        session = self.require(post_id)
        text = text.strip()
        if not text:
            raise ValueError("message text must not be blank")

        message = self._message("me", text)
        session.messages.append(message)
        session.partner_typing = True

        token = self._tokens[post_id]
        self._scheduler.schedule(
            post_id,
            self._settings.chat.reply_delay_seconds,
            lambda: on_reply(post_id, token),
        )
        return message

    def deliver_reply(self, post_id: str, token: str, *, focused: bool) -> ChatMessage | None:
        """Append the partner reply if the session it was scheduled for still exists."""
        session = self._sessions.get(post_id)
        if session is None or self._tokens.get(post_id) != token:
            logger.debug("Discarding stale reply for %s", post_id)
            return None

        reply = self._message("partner", self._next_reply_text(post_id))
        session.messages.append(reply)
        session.partner_typing = self._scheduler.pending(post_id) > 0
        if focused:
            session.unread_count = 0
        else:
            session.unread_count += 1
        return reply

    def _next_reply_text(self, post_id: str) -> str:
        """Rotate through `reply_lines`, counting only replies (not the seeded opener)."""
        lines = self._settings.chat.reply_lines or [self._settings.chat.fallback_opener]
        index = self._replies_sent.get(post_id, 0)
        self._replies_sent[post_id] = index + 1
        return lines[index % len(lines)]

    def _message(self, sender: Sender, text: str) -> ChatMessage:
        return ChatMessage(
            id=f"{sender}-{uuid.uuid4().hex[:10]}",
            sender=sender,
            text=text,
            timestamp=now_in(self._settings.app.timezone),
        )

    # --- projections -------------------------------------------------------

    def summaries(self) -> ChatList:
        chats = [
            ChatSummary(
                post_id=s.post_id,
                partner_name=s.partner_name,
                partner_image=s.partner_image,
                last_message=s.messages[-1].text if s.messages else None,
                unread_count=s.unread_count,
                partner_typing=s.partner_typing,
            )
            for s in self._sessions.values()
        ]
        return ChatList(chats=chats, total_unread=sum(c.unread_count for c in chats))

    def shutdown(self) -> None:
        for post_id in list(self._sessions):
            self._scheduler.cancel(post_id)
