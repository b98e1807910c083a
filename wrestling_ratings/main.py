"""
Command line entry point.

Usage:
    # Handle the next 10 events of the default season/region (resumes automatically)
    wrestling-ratings scrape --season 2024-25 --region Utah --max-events-per-run 10

    # Reprocess from a capture file instead of the live site
    wrestling-ratings scrape --replay data/capture-2024-25-utah.json

    # Progress, forced rescrape, audit trail, favorites
    wrestling-ratings status --season 2024-25 --region Utah
    wrestling-ratings reset --season 2024-25 --region Utah --dry-run
    wrestling-ratings audit --first John --last Smith --year 2025   # trail plus per-season analytics
    wrestling-ratings favorite 42
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config
from .analytics import analytics_by_season
from .crawl_state import CrawlStateTracker, cleanup_old_states
from .errors import NavigationError
from .models import SeasonRating
from .navigation import Navigator, ReplayNavigator, TrackWrestlingNavigator
from .orchestrator import Orchestrator
from .storage import RatingStore

logger = logging.getLogger(__name__)


def _add_target_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--season", default=config.DEFAULT_SEASON, help=f"Season label prefix (default: {config.DEFAULT_SEASON})")
    p.add_argument("--region", default=config.DEFAULT_REGION, help=f"Region name or TrackWrestling id (default: {config.DEFAULT_REGION})")
    p.add_argument("--state-dir", default=None, help="Directory for crawl state files")


def _add_db_arg(p: argparse.ArgumentParser) -> None:
    p.add_argument("--db", default=None, help="DuckDB file (default: WRESTLING_RATINGS_DB or output/wrestling_ratings.db)")


def build_argparser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wrestling-ratings", description="Resumable TrackWrestling match ingest and ratings")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    sub = parser.add_subparsers(dest="cmd")

    scrape = sub.add_parser("scrape", help="Process the next batch of events")
    _add_target_args(scrape)
    _add_db_arg(scrape)
    scrape.add_argument("--max-events-per-run", type=int, default=config.MAX_EVENTS_PER_RUN)
    scrape.add_argument("--max-groups-per-event", type=int, default=None, help="Limit team pages opened per event")
    scrape.add_argument("--fetch-timeout", type=float, default=config.FETCH_TIMEOUT_SECONDS, help="Seconds allowed per event fetch")
    scrape.add_argument("--replay", default=None, help="Read events and rows from a capture file instead of the live site")
    scrape.add_argument("--capture", default=None, help="Write discovered events and fetched rows to this file")
    scrape.add_argument("--show", action="store_true", help="Run browser headed to observe scraping")
    scrape.add_argument("--no-progress", action="store_true", help="Disable the per-event progress bar")

    status = sub.add_parser("status", help="Show crawl progress")
    _add_target_args(status)
    _add_db_arg(status)

    reset = sub.add_parser("reset", help="Delete the crawl state file to force a full rescrape")
    _add_target_args(reset)
    reset.add_argument("--dry-run", action="store_true", help="Show what would be deleted without deleting")
    reset.add_argument("--keep", type=int, default=None, help="Also prune old state files, keeping the newest N")

    audit = sub.add_parser("audit", help="Print an athlete's match-by-match rating audit trail and season analytics")
    _add_db_arg(audit)
    audit.add_argument("--athlete-id", type=int, default=None)
    audit.add_argument("--first", default=None)
    audit.add_argument("--last", default=None)
    audit.add_argument("--year", type=int, default=None)

    fav = sub.add_parser("favorite", help="Mark or unmark an athlete as favorite")
    _add_db_arg(fav)
    fav.add_argument("athlete_id", type=int)
    fav.add_argument("--off", action="store_true", help="Remove the favorite flag")
    return parser


def _tracker(args: argparse.Namespace) -> CrawlStateTracker:
    return CrawlStateTracker(args.season, config.region_id(args.region), args.state_dir)


def cmd_scrape(args: argparse.Namespace) -> int:
    navigator: Navigator
    if args.replay:
        navigator = ReplayNavigator(args.replay)
    else:
        navigator = TrackWrestlingNavigator(capture_path=args.capture)
    tracker = _tracker(args)
    store = RatingStore(args.db)
    try:
        orch = Orchestrator(
            navigator,
            tracker,
            store,
            season=args.season,
            region=args.region,
            max_events_per_run=args.max_events_per_run,
            max_groups_per_event=args.max_groups_per_event,
            fetch_timeout=args.fetch_timeout,
            navigator_options={"show": args.show},
            show_progress=not args.no_progress,
        )
        report = orch.run()
    except NavigationError as e:
        logger.error("navigation startup failed: %s", e)
        return 1
    finally:
        store.close()
    if tracker.is_complete():
        logger.info("season %s / %s complete", args.season, args.region)
    else:
        logger.info("stopped (%s); rerun to continue from event %d/%d",
                    report.stopped_reason, tracker.current_event_index + 1, tracker.total_events)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    tracker = _tracker(args)
    out = {"state_file": str(tracker.path), **tracker.stats()}
    db_path = args.db or config.get_db_path()
    if db_path and (str(db_path) == ":memory:" or Path(db_path).exists()):
        with RatingStore(db_path) as store:
            out["storage"] = store.counts()
    print(json.dumps(out, indent=2))
    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    tracker = _tracker(args)
    if args.dry_run:
        exists = tracker.path.exists()
        logger.info("[dry-run] would delete %s (%s)", tracker.path, "exists" if exists else "missing")
    elif tracker.delete():
        logger.info("deleted %s; next scrape starts from the first event", tracker.path)
    else:
        logger.info("no state file at %s", tracker.path)
    if args.keep is not None and not args.dry_run:
        cleanup_old_states(tracker.state_dir, keep=args.keep)
    return 0


def cmd_audit(args: argparse.Namespace) -> int:
    with RatingStore(args.db) as store:
        ids: List[int] = []
        if args.athlete_id is not None:
            ids = [args.athlete_id]
        elif args.first and args.last:
            ids = [a.id for a in store.find_athletes(args.first, args.last)]
        if not ids:
            logger.error("no athlete found; pass --athlete-id or --first/--last")
            return 1
        for aid in ids:
            athlete = store.get_athlete(aid)
            if athlete is None:
                logger.error("athlete %s not found", aid)
                return 1
            print(f"{athlete.id}: {athlete.first_name} {athlete.last_name} ({athlete.state or '-'})"
                  f" elo={athlete.elo} glicko={athlete.glicko_rating}")
            trail = store.audit_trail(aid, args.year)
            for a in trail:
                print(
                    f"  {a.match_date or 'unknown'} {a.match_result:<4} {a.result_type:<15} {a.weight_class or '':>5} "
                    f"vs #{a.opponent_id} elo {a.elo_before:.1f}->{a.elo_after:.1f} ({a.elo_change:+.1f}) "
                    f"glicko {a.glicko_rating_before:.1f}->{a.glicko_rating_after:.1f} rd {a.glicko_rd_after:.1f} "
                    f"W-L {a.wins_after}-{a.losses_after} | {a.event_name or ''}"
                )
            current = store.current_ratings(a.opponent_id for a in trail)
            for sid, s in analytics_by_season(trail, current).items():
                print(format_season_analytics(store.get_season_rating(sid), s))
    return 0


def format_season_analytics(sr: Optional[SeasonRating], s: Dict[str, Any]) -> str:
    label = f"{sr.year} {sr.weight_class}" if sr is not None else "season"
    top = s["most_frequent_opponent"]
    return (
        f"  [{label}] {s['wins']}-{s['losses']} | sos {s['strength_of_schedule']:.1f} "
        f"(latest {s['strength_of_schedule_latest']:.1f}, glicko {s['glicko_strength_of_schedule']:.1f}) "
        f"| sor {s['strength_of_record']:.1f} "
        f"| toughest {s['toughest_opponent_elo']:.1f} weakest {s['weakest_opponent_elo']:.1f} "
        f"| quality W/L {s['quality_wins']}/{s['quality_losses']} upsets W/L {s['upset_wins']}/{s['upset_losses']} "
        f"| opponents {s['unique_opponents']}"
        + (f" (most #{top['opponent_id']} x{top['match_count']})" if top else "")
    )


def cmd_favorite(args: argparse.Namespace) -> int:
    with RatingStore(args.db) as store:
        if not store.set_favorite(args.athlete_id, not args.off):
            logger.error("athlete %s not found", args.athlete_id)
            return 1
    logger.info("athlete %s favorite=%s", args.athlete_id, not args.off)
    return 0


COMMANDS = {
    "scrape": cmd_scrape,
    "status": cmd_status,
    "reset": cmd_reset,
    "audit": cmd_audit,
    "favorite": cmd_favorite,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_argparser()
    args = parser.parse_args(argv)
    # Configure root logging once based on CLI
    logging.basicConfig(
        level=getattr(logging, (args.log_level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    handler = COMMANDS.get(args.cmd)
    if handler is None:
        parser.print_help()
        return 0
    if getattr(args, "region", None) is not None:
        try:
            config.region_id(args.region)
        except ValueError as e:
            logger.error("%s", e)
            return 2
    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
