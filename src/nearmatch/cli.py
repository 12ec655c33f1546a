"""
NearMatch CLI entrypoint.

This CLI is intended for quick local demos and debugging without a front end.
All behaviour is delegated to `nearmatch.engine` and `nearmatch.features`.
"""

from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone
from typing import Any

from nearmatch.chat.scheduler import ManualReplyScheduler
from nearmatch.config.settings import get_settings
from nearmatch.core.geo import GeoPoint as CoreGeoPoint, haversine_m
from nearmatch.core.logging import configure_logging
from nearmatch.domain.models import AuthorSnapshot, CandidatePost, EncounterStatus, GeoPoint, PostDraft, UserProfile
from nearmatch.engine.session import EncounterEngine
from nearmatch.features.clustering import cluster_posts, threshold_for_zoom
from nearmatch.ingestion.mock_generator import MockEncounterGenerator


def _parse_point(value: str) -> GeoPoint:
    """Parse `LAT,LON` into a validated point."""
    if "," not in value:
        raise argparse.ArgumentTypeError(f"Invalid point '{value}', expected LAT,LON")
    lat, lon = value.split(",", 1)
    try:
        return GeoPoint(lat=float(lat), lon=float(lon))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid point '{value}': {exc}") from exc


def _demo_candidate(post_id: str, name: str, lat: float, lon: float, status: EncounterStatus) -> CandidatePost:
    return CandidatePost(
        id=post_id,
        location=GeoPoint(lat=lat, lon=lon),
        created_at=datetime.now(timezone.utc),
        author=AuthorSnapshot(user_id=f"user-{post_id}", name=name),
        title=f"{name} at the plaza",
        description="We crossed paths near the fountain.",
        tags=["eye_contact"],
        status=status,
    )


def _cmd_demo(args: argparse.Namespace) -> int:
    """Run the reference scenario offline with a virtual clock."""
    settings = get_settings()
    scheduler = ManualReplyScheduler()
    engine = EncounterEngine(
        UserProfile(name=args.name),
        settings=settings,
        scheduler=scheduler,
        opener_generator=MockEncounterGenerator(settings, seed=0),
    )
    engine.publish(PostDraft(location=GeoPoint(lat=0.0, lon=0.0), title="Coffee line", description="Blue jacket."))
    engine.load_candidates(
        [
            _demo_candidate("a", "Lucia", 0.0, 0.001, EncounterStatus.PENDING),
            _demo_candidate("b", "Mateo", 0.0, 1.0, EncounterStatus.PENDING),
            _demo_candidate("c", "Sofia", 0.0, 0.001, EncounterStatus.LIKED_BY_THEM),
        ]
    )

    visible_ids = [c.id for c in engine.visible_candidates()]
    liked = engine.connect("a")
    matched = engine.connect("c")
    engine.open_chat("c")
    engine.send_message("c", "Hi! Was that you by the fountain?")
    scheduler.advance(settings.chat.reply_delay_seconds)

    if args.json:
        print(json.dumps(engine.snapshot(), ensure_ascii=False, indent=2))
        return 0

    print(f"Visible: {', '.join(visible_ids) or '(none)'}")
    print(f"Connect a -> {liked.status.value}")
    print(f"Connect c -> {matched.status.value}")
    chat = engine.chat("c")
    if chat is not None:
        print(f"Chat with {chat.partner_name} (unread={chat.unread_count}):")
        for m in chat.messages:
            print(f"  [{m.sender}] {m.text}")
    markers = engine.markers(args.zoom)
    print(f"Markers @ zoom {args.zoom:g}: {len(markers.singles)} singles, {len(markers.clusters)} clusters")
    for event in engine.drain_events():
        print(f"  event {event.kind}: {event.message}")
    return 0


def _cmd_distance(args: argparse.Namespace) -> int:
    meters = haversine_m(CoreGeoPoint(lat=args.lat1, lon=args.lon1), CoreGeoPoint(lat=args.lat2, lon=args.lon2))
    print(f"{meters:.3f}")
    return 0


def _cmd_cluster(args: argparse.Namespace) -> int:
    settings = get_settings()
    threshold = float(args.threshold_m) if args.threshold_m is not None else threshold_for_zoom(args.zoom, settings.clustering)
    posts = [
        _demo_candidate(f"p{i}", f"Point {i}", p.lat, p.lon, EncounterStatus.PENDING)
        for i, p in enumerate(args.point)
    ]
    result = cluster_posts(posts, threshold_m=threshold, zoom=args.zoom)
    print(json.dumps(result.model_dump(mode="json"), ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the NearMatch CLI."""
    parser = argparse.ArgumentParser(prog="nearmatch")
    sub = parser.add_subparsers(dest="command", required=True)

    demo = sub.add_parser("demo", help="Run the publish -> discover -> match -> chat scenario offline.")
    demo.add_argument("--name", type=str, default="Alex")
    demo.add_argument("--zoom", type=float, default=16)
    demo.add_argument("--json", action="store_true", help="Print the final engine state as JSON")
    demo.set_defaults(func=_cmd_demo)

    dist = sub.add_parser("distance", help="Great-circle distance in meters between two points.")
    dist.add_argument("lat1", type=float)
    dist.add_argument("lon1", type=float)
    dist.add_argument("lat2", type=float)
    dist.add_argument("lon2", type=float)
    dist.set_defaults(func=_cmd_distance)

    clu = sub.add_parser("cluster", help="Group points into map markers for a zoom level.")
    clu.add_argument("--zoom", type=float, default=16)
    clu.add_argument("--threshold-m", type=float, default=None, help="Override the zoom-derived threshold")
    clu.add_argument("--point", type=_parse_point, action="append", default=[], help="Repeatable: LAT,LON")
    clu.set_defaults(func=_cmd_cluster)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m nearmatch.cli`."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
