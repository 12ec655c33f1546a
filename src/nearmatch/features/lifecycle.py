# src/nearmatch/features/lifecycle.py
"""
Encounter lifecycle state machine.

Every (action, status) pair is listed explicitly in `_TRANSITIONS`; undefined
combinations map to None and surface as `InvalidTransition` instead of silently
doing nothing. The table is checked for completeness at import time, so adding
a status or action without deciding every combination fails loudly.

`liked_by_them` is never a target: only the candidate generator sets it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from itertools import product

from nearmatch.domain.errors import InvalidTransition
from nearmatch.domain.models import EncounterStatus


class Action(str, Enum):
    CONNECT = "connect"
    REJECT = "reject"
    UNMATCH = "unmatch"


class Effect(str, Enum):
    """Side effect the engine must apply together with the status change."""

    LIKE_SENT = "like_sent"
    MATCH_FORMED = "match_formed"
    HIDDEN = "hidden"
    MATCH_CANCELLED = "match_cancelled"


@dataclass(frozen=True)
class Transition:
    action: Action
    source: EncounterStatus
    target: EncounterStatus
    effect: Effect


S = EncounterStatus

_TRANSITIONS: dict[tuple[Action, EncounterStatus], tuple[EncounterStatus, Effect] | None] = {
    (Action.CONNECT, S.PENDING): (S.LIKED_BY_ME, Effect.LIKE_SENT),
    (Action.CONNECT, S.LIKED_BY_ME): None,
    (Action.CONNECT, S.LIKED_BY_THEM): (S.MATCHED, Effect.MATCH_FORMED),
    (Action.CONNECT, S.MATCHED): None,
    (Action.CONNECT, S.HIDDEN): None,
    (Action.REJECT, S.PENDING): (S.HIDDEN, Effect.HIDDEN),
    (Action.REJECT, S.LIKED_BY_ME): (S.HIDDEN, Effect.HIDDEN),
    (Action.REJECT, S.LIKED_BY_THEM): None,
    (Action.REJECT, S.MATCHED): None,
    (Action.REJECT, S.HIDDEN): None,
    # Unmatch resets to pending (not hidden) so the pair can re-enter discovery.
    (Action.UNMATCH, S.PENDING): None,
    (Action.UNMATCH, S.LIKED_BY_ME): None,
    (Action.UNMATCH, S.LIKED_BY_THEM): None,
    (Action.UNMATCH, S.MATCHED): (S.PENDING, Effect.MATCH_CANCELLED),
    (Action.UNMATCH, S.HIDDEN): None,
}

_missing = set(product(Action, EncounterStatus)) - set(_TRANSITIONS)
if _missing:
    raise RuntimeError(f"Lifecycle table is incomplete: {sorted((a.value, s.value) for a, s in _missing)}")


def plan_transition(action: Action, status: EncounterStatus, *, post_id: str | None = None) -> Transition:
    """Resolve `action` applied to `status`, or raise `InvalidTransition`."""
    outcome = _TRANSITIONS[(Action(action), EncounterStatus(status))]
    if outcome is None:
        raise InvalidTransition(Action(action).value, EncounterStatus(status).value, post_id)
    target, effect = outcome
    return Transition(action=Action(action), source=EncounterStatus(status), target=target, effect=effect)


def allowed_actions(status: EncounterStatus) -> list[Action]:
    """Actions a front end may offer for a candidate in `status`."""
    return [a for a in Action if _TRANSITIONS[(a, EncounterStatus(status))] is not None]
