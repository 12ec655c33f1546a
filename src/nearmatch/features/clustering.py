# src/nearmatch/features/clustering.py
"""
Marker clustering (map view).

Greedy single-seed grouping:
- Walk posts in input order; each unassigned post seeds a new group.
- Every later unassigned post closer than the threshold to the SEED joins it.
  Membership is decided against the seed only (no moving centroid, not
  transitive), so group shape depends on input order. That is accepted; the
  output is reproducible for a fixed order and threshold.
- Groups of one become single markers; larger groups become one cluster at the
  arithmetic mean coordinate of their members.

Distances are haversine meters, symmetric in both axes.
"""

from __future__ import annotations

from typing import Sequence

from nearmatch.config.settings import ClusteringSettings
from nearmatch.core.geo import distance_between, mean_point
from nearmatch.domain.models import (
    CandidatePost,
    Cluster,
    ClusteredMarkers,
    EncounterPost,
    EncounterStatus,
    GeoPoint,
    MapFilters,
    Marker,
    OwnPost,
)


def threshold_for_zoom(zoom: float, settings: ClusteringSettings) -> float:
    """Clustering distance for `zoom`: coarser when zoomed out."""
    for band in settings.bands:
        if zoom < band.below_zoom:
            return float(band.threshold_m)
    return float(settings.default_threshold_m)


def _category_enabled(candidate: CandidatePost, filters: MapFilters) -> bool:
    status = candidate.status
    if status == EncounterStatus.MATCHED:
        return filters.match
    if status == EncounterStatus.LIKED_BY_THEM:
        return filters.liked_me
    if status == EncounterStatus.HIDDEN:
        return filters.hidden
    # pending and liked_by_me are both still "possible" encounters.
    return filters.possible


def select_markers(
    own_posts: Sequence[OwnPost], visible_candidates: Sequence[CandidatePost], filters: MapFilters
) -> list[EncounterPost]:
    """Posts to draw: own posts (if enabled) first, then visible candidates by category."""
    selected: list[EncounterPost] = []
    if filters.mine:
        selected.extend(own_posts)
    selected.extend(c for c in visible_candidates if _category_enabled(c, filters))
    return selected


def _marker_for(post: EncounterPost) -> Marker:
    if isinstance(post, CandidatePost):
        return Marker(post_id=post.id, kind="candidate", location=post.location, status=post.status)
    return Marker(post_id=post.id, kind="own", location=post.location)


def cluster_posts(posts: Sequence[EncounterPost], *, threshold_m: float, zoom: float = 0.0) -> ClusteredMarkers:
    """Partition `posts` into single markers and clusters."""
    singles: list[Marker] = []
    clusters: list[Cluster] = []
    assigned = [False] * len(posts)

    for i, seed in enumerate(posts):
        if assigned[i]:
            continue
        assigned[i] = True
        group = [seed]

        for j in range(i + 1, len(posts)):
            if assigned[j]:
                continue
            if distance_between(seed.location, posts[j].location) < threshold_m:
                group.append(posts[j])
                assigned[j] = True

        if len(group) == 1:
            singles.append(_marker_for(seed))
            continue

        center = mean_point([p.location for p in group])
        clusters.append(
            Cluster(
                id=f"cluster-{seed.id}",
                location=GeoPoint(lat=center.lat, lon=center.lon),
                count=len(group),
                member_ids=[p.id for p in group],
            )
        )

    return ClusteredMarkers(zoom=zoom, threshold_m=threshold_m, singles=singles, clusters=clusters)
