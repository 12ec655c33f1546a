"""
Collaborator interfaces.

The engine only talks to the outside world through these protocols. Any
implementation may raise; the engine treats every failure as
`CollaboratorUnavailable` and continues with a fallback value.
"""

from __future__ import annotations

from typing import Protocol

from nearmatch.domain.models import CandidatePost, GeoPoint


class LocationSource(Protocol):
    def current_coordinate(self) -> GeoPoint:
        """Return the device position or raise if it is unavailable."""
        ...


class CandidateGenerator(Protocol):
    def generate_candidates(self, near: GeoPoint) -> list[CandidatePost]:
        """Synthesize candidate posts around `near` (empty list on failure).

        At most one returned candidate may carry status `liked_by_them`.
        """
        ...


class OpenerGenerator(Protocol):
    def generate_opener(self, post_title: str) -> str:
        """Return an opening chat line for a match on `post_title`, or raise."""
        ...
