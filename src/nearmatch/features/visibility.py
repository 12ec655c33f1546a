# src/nearmatch/features/visibility.py
"""
Visibility filter (who can discover which candidate posts).

Discovery is reciprocal, not free browsing:
- A user with no published posts discovers nothing.
- A candidate is discoverable iff it lies within the match radius of ANY own post
  (existential test across all own posts, not nearest-post-only), and it is not
  hidden unless the viewer asked to see hidden posts.

The derived views (per-own-post counts, drill-down, tag filter) reapply the same
radius rule instead of caching anything, so they can never drift from `visible`.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from nearmatch.core.geo import distance_between
from nearmatch.domain.models import CandidatePost, EncounterStatus, NearbyCount, OwnPost


def within_radius(own_post: OwnPost, candidate: CandidatePost, *, radius_m: float) -> bool:
    """Inclusive boundary: a candidate exactly `radius_m` away is within."""
    return distance_between(own_post.location, candidate.location) <= float(radius_m)


def visible(
    own_posts: Sequence[OwnPost],
    candidates: Iterable[CandidatePost],
    *,
    show_hidden: bool,
    radius_m: float,
) -> list[CandidatePost]:
    """Return discoverable candidates, preserving catalog order."""
    if not own_posts:
        return []

    out: list[CandidatePost] = []
    for candidate in candidates:
        if not show_hidden and candidate.status == EncounterStatus.HIDDEN:
            continue
        if any(within_radius(mine, candidate, radius_m=radius_m) for mine in own_posts):
            out.append(candidate)
    return out


def near_own_post(
    own_post: OwnPost, visible_candidates: Iterable[CandidatePost], *, radius_m: float
) -> list[CandidatePost]:
    """Drill-down: visible candidates within the radius of one specific own post."""
    return [c for c in visible_candidates if within_radius(own_post, c, radius_m=radius_m)]


def nearby_counts(
    own_posts: Sequence[OwnPost], visible_candidates: Sequence[CandidatePost], *, radius_m: float
) -> list[NearbyCount]:
    """For each own post, how many visible candidates are within its radius.

    A candidate near two own posts is counted under both.
    """
    return [
        NearbyCount(own_post=mine, count=len(near_own_post(mine, visible_candidates, radius_m=radius_m)))
        for mine in own_posts
    ]


def filter_by_tags(candidates: Iterable[CandidatePost], tags: Iterable[str]) -> list[CandidatePost]:
    """Keep candidates sharing at least one tag with `tags`; an empty filter keeps all."""
    wanted = {t.strip().lower() for t in tags if t and t.strip()}
    if not wanted:
        return list(candidates)
    return [c for c in candidates if wanted.intersection(c.tags)]


def nearest_own_distance_m(own_posts: Sequence[OwnPost], candidate: CandidatePost) -> float | None:
    """Distance from `candidate` to the closest own post (informational only)."""
    if not own_posts:
        return None
    return min(distance_between(mine.location, candidate.location) for mine in own_posts)
