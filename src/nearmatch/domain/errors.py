"""
Engine error taxonomy.

Every rejected operation raises one of these before touching state, so callers
can rely on "exception means nothing changed". `code` is the stable identifier
the API layer puts into error payloads.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine-level failures."""

    code = "ENGINE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CapacityExceeded(EngineError):
    """Publishing would exceed the per-user own-post cap."""

    code = "CAPACITY_EXCEEDED"

    def __init__(self, limit: int):
        super().__init__(f"Own post limit of {limit} reached")
        self.limit = limit


class InvalidTransition(EngineError):
    """The requested action is not defined for the candidate's current status."""

    code = "INVALID_TRANSITION"

    def __init__(self, action: str, status: str, post_id: str | None = None):
        target = f" on '{post_id}'" if post_id else ""
        super().__init__(f"Cannot {action}{target} while status is {status}")
        self.action = action
        self.status = status
        self.post_id = post_id


class NotFound(EngineError):
    """Unknown own post, candidate or chat session id."""

    code = "NOT_FOUND"

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} '{key}' not found")
        self.kind = kind
        self.key = key


class CollaboratorUnavailable(EngineError):
    """An external collaborator (generator, location source) failed.

    Raised only inside collaborator adapters; the engine always recovers with a
    fallback value and logs the failure.
    """

    code = "COLLABORATOR_UNAVAILABLE"
