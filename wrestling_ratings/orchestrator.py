"""
Batch ingest loop: crawl state -> navigator rows -> parser -> dedup -> ratings -> storage.

One run handles at most `max_events_per_run` events, each to completion, checkpointing the
crawl state after every event. Row-level problems are recorded on the crawl state and never
stop the event; fetch problems fail the event; only navigator startup/discovery is fatal.

Navigator calls run on one dedicated daemon thread (Playwright's sync API must stay on the
thread that started it) and fetches are bounded by `fetch_timeout`. A fetch that times out
leaves that thread busy, so the batch stops there and the remaining events wait for the
next run.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from tqdm.auto import tqdm

from . import config
from .crawl_state import CrawlStateTracker
from .dedup import DUPLICATE, EventDedupCache, check_and_reserve, compute_match_hash
from .errors import NavigationError, NavigationTimeout, ParseError, RatingPersistenceError
from .models import Event, MatchRecord, RawRow
from .navigation import Navigator
from .parse_matches import parse_match, validate_match
from .ratings import GlickoState, rate_match
from .storage import RatingStore

logger = logging.getLogger(__name__)

TEARDOWN_TIMEOUT_SECONDS = 60.0


class NavigatorThread:
    """Single daemon thread that runs every navigator call in submission order.

    A call that never returns keeps this thread busy, but the interpreter does not wait for
    it at exit.
    """

    def __init__(self, name: str = "navigator"):
        self._tasks: "queue.Queue[Optional[Tuple[Future, Callable[..., Any], tuple]]]" = queue.Queue()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    @property
    def daemon(self) -> bool:
        return self._thread.daemon

    def _run(self) -> None:
        while True:
            item = self._tasks.get()
            if item is None:
                return
            future, fn, args = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args)
            except BaseException as e:
                future.set_exception(e)
            else:
                future.set_result(result)

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        future: Future = Future()
        self._tasks.put((future, fn, args))
        return future

    def stop(self) -> None:
        """Let the thread exit once its queue drains; does not wait for it."""
        self._tasks.put(None)


@dataclass
class EventResult:
    event: Event
    rows: int = 0
    processed: int = 0
    duplicates: int = 0
    parse_errors: int = 0
    persistence_errors: int = 0
    outcome: str = "processed"  # processed | skipped | failed
    error: Optional[str] = None

    def reconciles(self) -> bool:
        return self.rows == self.processed + self.duplicates + self.parse_errors + self.persistence_errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_matches": self.rows,
            "processed_matches": self.processed,
            "duplicates": self.duplicates,
            "parse_errors": self.parse_errors,
            "persistence_errors": self.persistence_errors,
        }


@dataclass
class RunReport:
    results: List[EventResult] = field(default_factory=list)
    stopped_reason: str = "limit"  # limit | complete | future | navigator_timeout

    def _count(self, outcome: str) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def events_processed(self) -> int:
        return self._count("processed")

    @property
    def events_skipped(self) -> int:
        return self._count("skipped")

    @property
    def events_failed(self) -> int:
        return self._count("failed")

    def total(self, attr: str) -> int:
        return sum(getattr(r, attr) for r in self.results)

    def summary(self) -> Dict[str, Any]:
        return {
            "events": len(self.results),
            "processed": self.events_processed,
            "skipped": self.events_skipped,
            "failed": self.events_failed,
            "rows": self.total("rows"),
            "matches": self.total("processed"),
            "duplicates": self.total("duplicates"),
            "parse_errors": self.total("parse_errors"),
            "persistence_errors": self.total("persistence_errors"),
            "stopped": self.stopped_reason,
        }


def season_year_for(season: str, event_date: Optional[date] = None) -> int:
    """Season end year from the label, else from the event date (Sep-Dec belongs to next year)."""
    year = config.season_end_year(season)
    if year is not None:
        return year
    d = event_date or date.today()
    return d.year + 1 if d.month >= 9 else d.year


class Orchestrator:
    def __init__(
        self,
        navigator: Navigator,
        tracker: CrawlStateTracker,
        store: RatingStore,
        season: str,
        region: str,
        max_events_per_run: int = config.MAX_EVENTS_PER_RUN,
        max_groups_per_event: Optional[int] = None,
        fetch_timeout: float = config.FETCH_TIMEOUT_SECONDS,
        navigator_options: Optional[Dict[str, Any]] = None,
        today: Optional[date] = None,
        show_progress: bool = True,
    ):
        self.navigator = navigator
        self.tracker = tracker
        self.store = store
        self.season = season
        self.region = region
        self.state = config.region_state(region)
        self.max_events_per_run = max_events_per_run
        self.max_groups_per_event = max_groups_per_event
        self.fetch_timeout = fetch_timeout
        self.navigator_options = navigator_options or {}
        self.today = today or date.today()
        self.show_progress = show_progress
        self.cache = EventDedupCache()
        self._worker: Optional[NavigatorThread] = None
        self.navigator_stuck = False

    # ---- navigator thread ----
    def _call(self, fn: Callable[..., Any], *args: Any, timeout: Optional[float] = None) -> Any:
        if self.navigator_stuck:
            raise NavigationTimeout("navigator thread is still busy with a timed-out call")
        if self._worker is None:
            self._worker = NavigatorThread()
        future = self._worker.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout as e:
            self.navigator_stuck = True
            raise NavigationTimeout(f"{getattr(fn, '__name__', 'navigator call')} timed out after {timeout}s") from e
        except NavigationError:
            raise
        except Exception as e:
            raise NavigationError(f"{type(e).__name__}: {e}") from e

    def _shutdown(self) -> None:
        if self._worker is None:
            return
        if self.navigator_stuck:
            logger.warning("[nav] navigator thread still busy; skipping teardown and abandoning it")
        else:
            try:
                self._call(self.navigator.teardown, timeout=TEARDOWN_TIMEOUT_SECONDS)
            except NavigationError as e:
                logger.warning("[nav] teardown failed: %s", e)
        self._worker.stop()
        self._worker = None

    # ---- run ----
    def start(self) -> List[Event]:
        """Start the navigator and freeze the event list; raises NavigationError on failure."""
        self._call(self.navigator.initialize, self.navigator_options)
        events = self._call(self.navigator.discover_events, self.season, self.region)
        logger.info("[discover] %d events for %s / %s", len(events), self.season, self.region)
        self.tracker.initialize(events)
        if self.tracker.resume_ambiguous:
            logger.warning("[discover] resume position ambiguous; restarting from the first event")
        return events

    def run(self) -> RunReport:
        report = RunReport()
        try:
            self.start()
            report = self.run_batch()
        finally:
            self._shutdown()
        return report

    def run_batch(self) -> RunReport:
        report = RunReport()
        while len(report.results) < self.max_events_per_run:
            event = self.tracker.get_next_event()
            if event is None:
                report.stopped_reason = "complete"
                break
            if event.parsed_date is not None and event.parsed_date >= self.today:
                logger.info("[skip][date] %s | date=%s >= today; stopping until results exist", event.text, event.parsed_date)
                report.stopped_reason = "future"
                break
            report.results.append(self.process_event(event))
            if self.navigator_stuck:
                logger.warning("[nav] fetch timed out; stopping batch so remaining events resume next run")
                report.stopped_reason = "navigator_timeout"
                break
        else:
            if self.tracker.is_complete():
                report.stopped_reason = "complete"
        s = report.summary()
        logger.info(
            "[summary][overall] events=%s | processed=%s | skipped=%s | failed=%s | rows=%s | matches=%s "
            "| duplicates=%s | parse_errors=%s | persistence_errors=%s | stopped=%s",
            s["events"], s["processed"], s["skipped"], s["failed"], s["rows"], s["matches"],
            s["duplicates"], s["parse_errors"], s["persistence_errors"], s["stopped"],
        )
        logger.info(self.tracker.progress_summary())
        return report

    # ---- per event ----
    def process_event(self, event: Event) -> EventResult:
        result = EventResult(event=event)
        self.cache.clear()

        if not self.navigator.can_fetch(event):
            result.outcome = "skipped"
            self.tracker.mark_skipped(event, "no locator")
            return result

        try:
            rows = self._call(self.navigator.fetch_rows, event, self.max_groups_per_event, timeout=self.fetch_timeout)
        except NavigationError as e:
            result.outcome = "failed"
            result.error = str(e)
            self.tracker.mark_failed(event, str(e))
            logger.warning("[summary][event] %s | failed: %s", event.text, e)
            return result

        result.rows = len(rows)
        for row in tqdm(rows, total=len(rows), desc=event.text[:40], leave=False, disable=not self.show_progress):
            self._process_row(event, row, result)

        if not result.reconciles():
            logger.error("[summary][event] %s | row counts do not reconcile: %s", event.text, result.to_dict())
        self.tracker.mark_processed(event, result.to_dict())
        logger.info(
            "[summary][event] %s | rows=%s | processed=%s | duplicates=%s | parse_errors=%s | persistence_errors=%s",
            event.text, result.rows, result.processed, result.duplicates, result.parse_errors, result.persistence_errors,
        )
        logger.info(self.tracker.progress_summary())
        return result

    def _process_row(self, event: Event, row: RawRow, result: EventResult) -> None:
        context = f"{event.text} | {row.weight_class}"
        record = parse_match(row.text, row.weight_class, event.parsed_date)
        if not validate_match(record):
            err = ParseError(f"unparseable match text: {row.text!r}")
            result.parse_errors += 1
            self.tracker.record_error(type(err).__name__, context, str(err))
            logger.debug("[parse] %s | %s", context, err)
            return

        match_hash = compute_match_hash(record)
        try:
            if check_and_reserve(self.store, match_hash, self.cache) == DUPLICATE:
                result.duplicates += 1
                return
            self._persist(event, record, match_hash)
        except RatingPersistenceError as e:
            result.persistence_errors += 1
            self.tracker.record_error(type(e).__name__, context, str(e))
            logger.warning("[persist] %s | %s", context, e)
            return
        result.processed += 1

    def _persist(self, event: Event, record: MatchRecord, match_hash: str) -> None:
        year = season_year_for(self.season, record.event_date)
        with self.store.transaction() as store:
            winner = store.find_or_create_athlete(record.winner.first_name, record.winner.last_name, self.state)
            loser = store.find_or_create_athlete(record.loser.first_name, record.loser.last_name, self.state)
            ws = store.find_or_create_season_rating(winner.id, year, record.weight_class, record.winner.school)
            ls = store.find_or_create_season_rating(loser.id, year, record.weight_class, record.loser.school)
            elo, glicko = rate_match(
                ws.final_elo,
                ls.final_elo,
                GlickoState(ws.final_glicko_rating, ws.final_glicko_rd, ws.final_glicko_volatility),
                GlickoState(ls.final_glicko_rating, ls.final_glicko_rd, ls.final_glicko_volatility),
                record.result.type,
            )
            store.record_match(match_hash, record, winner, loser, ws, ls, elo, glicko, event_name=event.text)
