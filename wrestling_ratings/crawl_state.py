"""
Resumable crawl progress for one (season, region) pair.

The state lives in a single JSON file under the state directory:

    crawl-state-<season-slug>-<region_id>.json

Every event outcome (processed, skipped, failed) advances the cursor and rewrites the
file atomically (temp file in the same directory + os.replace), so a killed run resumes
at the first event without a recorded outcome.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from . import config
from .errors import StateCorruption
from .models import Event, sort_events_chronologically

logger = logging.getLogger(__name__)

STATE_PREFIX = "crawl-state-"
OUTCOME_LISTS = ("processed_events", "skipped_events", "failed_events")
_REQUIRED_LISTS = OUTCOME_LISTS + ("events", "errors")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def season_slug(season: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "-", season)


def state_file_name(season: str, region_id: str) -> str:
    return f"{STATE_PREFIX}{season_slug(season)}-{region_id}.json"


class CrawlStateTracker:
    def __init__(self, season: str, region_id: str, state_dir: Optional[Union[str, Path]] = None):
        self.season = season
        self.region_id = str(region_id)
        self.state_dir = Path(state_dir) if state_dir else config.get_state_dir()
        self.path = self.state_dir / state_file_name(season, self.region_id)
        self.state: Dict[str, Any] = self._load()

    # ---- persistence ----
    def _fresh_state(self) -> Dict[str, Any]:
        now = _now()
        return {
            "season_key": self.season,
            "region_id": self.region_id,
            "start_time": now,
            "last_update": now,
            "total_events": 0,
            "events": [],
            "current_event_index": 0,
            "processed_events": [],
            "skipped_events": [],
            "failed_events": [],
            "total_matches": 0,
            "processed_matches": 0,
            "errors": [],
            "resume_ambiguous": False,
        }

    def _validate(self, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise StateCorruption(f"state root is {type(data).__name__}, expected object")
        for key in _REQUIRED_LISTS:
            if not isinstance(data.get(key), list):
                raise StateCorruption(f"state field {key!r} missing or not a list")
        for key in ("current_event_index", "total_events"):
            if not isinstance(data.get(key), int) or data[key] < 0:
                raise StateCorruption(f"state field {key!r} missing or not a non-negative integer")
        if data.get("region_id") not in (None, self.region_id):
            raise StateCorruption(f"state belongs to region {data.get('region_id')!r}")
        fresh = self._fresh_state()
        for k, v in fresh.items():
            data.setdefault(k, v)
        return data

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return self._fresh_state()
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
            state = self._validate(data)
        except (OSError, ValueError, StateCorruption) as e:
            err = e if isinstance(e, StateCorruption) else StateCorruption(str(e))
            aside = self.path.with_name(self.path.name + ".corrupt")
            logger.error("[state] %s is unreadable (%s); moving to %s and starting fresh", self.path, err, aside.name)
            os.replace(self.path, aside)
            state = self._fresh_state()
            state["errors"].append({
                "type": "StateCorruption",
                "context": str(self.path),
                "error": str(err),
                "timestamp": _now(),
            })
            return state
        logger.info("[state] loaded %s: %d events processed", self.path.name, len(state["processed_events"]))
        return state

    def save(self) -> None:
        self.state["last_update"] = _now()
        self.state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=str(self.state_dir))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.state, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug("[state] saved %s", self.path.name)

    def delete(self) -> bool:
        """Remove the state file so the next run starts from scratch."""
        if self.path.exists():
            self.path.unlink()
            logger.info("[state] deleted %s", self.path)
            self.state = self._fresh_state()
            return True
        return False

    # ---- accessors ----
    @property
    def current_event_index(self) -> int:
        return int(self.state["current_event_index"])

    @property
    def total_events(self) -> int:
        return int(self.state["total_events"])

    @property
    def resume_ambiguous(self) -> bool:
        return bool(self.state.get("resume_ambiguous"))

    @property
    def errors(self) -> List[Dict[str, Any]]:
        return self.state["errors"]

    @property
    def events(self) -> List[Event]:
        return [Event.from_dict(d) for d in self.state["events"]]

    # ---- lifecycle ----
    def initialize(self, events: List[Event]) -> None:
        """Freeze the chronologically ordered event list and position the cursor for resume."""
        ordered = sort_events_chronologically(events)
        previous_keys = [(d.get("text"), d.get("date_text")) for d in self.state["events"]]
        previous_cursor = self.current_event_index
        keys = [ev.key() for ev in ordered]

        prior = {
            (d.get("text"), d.get("date_text"))
            for name in OUTCOME_LISTS
            for d in self.state[name]
        }
        cursor = 0
        ambiguous = False
        if prior:
            located = [i for i, k in enumerate(keys) if k in prior]
            if located:
                cursor = max(located) + 1
            else:
                ambiguous = True
                self.state["errors"].append({
                    "type": "ResumeAmbiguity",
                    "context": f"{len(prior)} prior outcomes",
                    "error": "none of the previously handled events appear in the discovered list; restarting at 0",
                    "timestamp": _now(),
                })
                logger.warning("[state] resume ambiguous: no prior outcome found in %d discovered events", len(keys))

        if keys == previous_keys:
            cursor = max(cursor, previous_cursor)

        self.state["events"] = [ev.to_dict() for ev in ordered]
        self.state["total_events"] = len(ordered)
        self.state["current_event_index"] = cursor
        self.state["resume_ambiguous"] = ambiguous
        if cursor:
            logger.info("[state] resuming from event %d/%d", min(cursor + 1, len(ordered)), len(ordered))
        self.save()

    def get_next_event(self) -> Optional[Event]:
        i = self.current_event_index
        if i >= len(self.state["events"]):
            return None
        return Event.from_dict(self.state["events"][i])

    def _require_current(self, event: Event) -> None:
        current = self.get_next_event()
        if current is None or current.key() != event.key():
            expected = current.text if current else None
            raise ValueError(
                f"event {event.text!r} is not the event under the cursor "
                f"({expected!r} at {self.current_event_index})"
            )

    def _advance(self, list_name: str, event: Event, extra: Dict[str, Any]) -> None:
        entry = event.to_dict()
        entry.update(extra)
        self.state[list_name].append(entry)
        self.state["current_event_index"] = self.current_event_index + 1
        self.save()

    def mark_processed(self, event: Event, result: Dict[str, Any]) -> None:
        self._require_current(event)
        self.state["total_matches"] += int(result.get("total_matches", 0) or 0)
        self.state["processed_matches"] += int(result.get("processed_matches", 0) or 0)
        self._advance("processed_events", event, {"processed_at": _now(), "result": result})
        logger.info("[state] event processed: %s (%d matches)", event.text, result.get("processed_matches", 0) or 0)

    def mark_skipped(self, event: Event, reason: str) -> None:
        self._require_current(event)
        self._advance("skipped_events", event, {"skipped_at": _now(), "reason": reason})
        logger.info("[state] event skipped: %s (%s)", event.text, reason)

    def mark_failed(self, event: Event, error: str) -> None:
        self._require_current(event)
        self.state["errors"].append({
            "type": "event_processing",
            "context": event.text,
            "error": error,
            "timestamp": _now(),
        })
        self._advance("failed_events", event, {"failed_at": _now(), "error": error})
        logger.warning("[state] event failed: %s (%s)", event.text, error)

    def record_error(self, type: str, context: str, message: str) -> None:
        """Record a row-level error; written with the next checkpoint."""
        self.state["errors"].append({
            "type": type,
            "context": context,
            "error": message,
            "timestamp": _now(),
        })

    # ---- reporting ----
    def is_complete(self) -> bool:
        return self.current_event_index >= self.total_events

    def stats(self) -> Dict[str, Any]:
        total = self.total_events
        handled = min(self.current_event_index, total)
        return {
            "total_events": total,
            "processed": len(self.state["processed_events"]),
            "skipped": len(self.state["skipped_events"]),
            "failed": len(self.state["failed_events"]),
            "remaining": total - handled,
            "current_event_index": self.current_event_index,
            "total_matches": self.state["total_matches"],
            "processed_matches": self.state["processed_matches"],
            "errors": len(self.state["errors"]),
            "resume_ambiguous": self.resume_ambiguous,
            "progress_percentage": round(handled / total * 100) if total else 0,
        }

    def progress_summary(self) -> str:
        s = self.stats()
        return (
            f"Progress: {s['current_event_index']}/{s['total_events']} events ({s['progress_percentage']}%) | "
            f"{s['processed_matches']} matches | {s['processed']} processed | "
            f"{s['skipped']} skipped | {s['failed']} failed | {s['remaining']} remaining"
        )


def cleanup_old_states(state_dir: Optional[Union[str, Path]] = None, keep: int = 5) -> List[Path]:
    """Delete all but the `keep` most recently modified state files. Returns deleted paths."""
    d = Path(state_dir) if state_dir else config.get_state_dir()
    if not d.exists():
        return []
    files = sorted(
        (p for p in d.glob(f"{STATE_PREFIX}*.json")),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )
    deleted = []
    for p in files[keep:]:
        p.unlink()
        logger.info("[state] deleted old state file %s", p.name)
        deleted.append(p)
    return deleted
