"""
Navigation collaborators: discover a season's events and fetch each event's match rows.

- Navigator: the interface the orchestrator drives.
- TrackWrestlingNavigator: live Playwright session against the TrackWrestling seasons site.
  Flow: seasons index -> click season label -> select region (#gbId) -> Login -> event grid
  (inside #PageFrame when present) -> per event: open event -> team links (paged) -> for each
  team, go back to the list, reopen the event and read that team's match grid.
- ReplayNavigator: serves events and rows from a JSON capture file, for offline reprocessing.

All DOM heuristics live in TrackWrestlingNavigator; HTML is handed to parse_matches for row
extraction. Any Playwright failure surfaces as NavigationError.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from . import config
from .errors import NavigationError
from .models import Event, RawRow, sort_events_chronologically
from .parse_matches import extract_event_rows, extract_match_rows, parse_event_date

logger = logging.getLogger(__name__)

SEASONS_URL = "https://www.trackwrestling.com/seasons/index.jsp"

# Frames that never hold event content
IGNORED_FRAME_MARKERS = (
	"about:blank",
	"googletagmanager.com",
	"doubleclick.net",
	"amazon-adsystem.com",
	"adnxs.com",
	"pubmatic.com",
	"google.com",
	"MethodCaller.jsp",
	"chrome-error://",
)

TEAM_CONTAINERS = ("#eventTeamFrame", "#teamsFrame")
NEXT_PAGE_SELECTOR = 'a.icon-arrow_r.dgNext, a[title="Next Page"]'
URL_PREFIXES = ("http://", "https://", "/", "./", "../")

# True when the frame still lists an anchor whose onclick or href is `loc`
HAS_LOCATOR_JS = (
	"(loc) => Array.from(document.querySelectorAll('a'))"
	".some(a => a.getAttribute('onclick') === loc || a.getAttribute('href') === loc)"
)


class Navigator(ABC):
	"""What the orchestrator needs from a source of events and rows."""

	@abstractmethod
	def initialize(self, options: Optional[Dict[str, Any]] = None) -> None:
		...

	@abstractmethod
	def discover_events(self, season: str, region: str) -> List[Event]:
		...

	@abstractmethod
	def fetch_rows(self, event: Event, max_groups: Optional[int] = None) -> List[RawRow]:
		...

	@abstractmethod
	def teardown(self) -> None:
		...

	def can_fetch(self, event: Event) -> bool:
		"""False when the event cannot be opened at all; such events are skipped."""
		return True


def events_from_dicts(items: List[Dict[str, Any]]) -> List[Event]:
	events: List[Event] = []
	for i, d in enumerate(items):
		date_text = str(d.get("date_text") or "")
		events.append(Event(
			index=int(d.get("index", i)),
			text=str(d["text"]),
			date_text=date_text,
			parsed_date=parse_event_date(date_text),
			locator=d.get("locator"),
		))
	return events


# ---- Live TrackWrestling session ----
class TrackWrestlingNavigator(Navigator):
	def __init__(self, page_size: int = 250, max_pages: int = 20, capture_path: Optional[Union[str, Path]] = None):
		self.page_size = page_size
		self.max_pages = max_pages
		self.capture_path = Path(capture_path) if capture_path else None
		self._pw = None
		self._browser = None
		self._context = None
		self.page = None
		self._list_frame = None
		self._capture: Dict[str, Any] = {"events": []}

	def initialize(self, options: Optional[Dict[str, Any]] = None) -> None:
		# Delay import to allow linting without playwright installed
		from playwright.sync_api import sync_playwright

		opts = options or {}
		try:
			self._pw = sync_playwright().start()
			self._browser = self._pw.chromium.launch(headless=not opts.get("show", False))
			self._context = self._browser.new_context()
			self.page = self._context.new_page()
			self.page.set_default_timeout(int(opts.get("timeout_ms", 30000)))
		except Exception as e:
			raise NavigationError(f"browser launch failed: {e}") from e
		logger.info("[nav] browser ready (headless=%s)", not opts.get("show", False))

	# -- helpers --
	def _content_frames(self) -> List[Any]:
		frames = []
		for fr in self.page.frames:
			url = fr.url or ""
			if any(m in url for m in IGNORED_FRAME_MARKERS):
				continue
			frames.append(fr)
		return frames or [self.page.main_frame]

	def _grid_frame(self, timeout_ms: int = 30000) -> Any:
		"""Return the frame holding the .dataGrid, preferring #PageFrame."""
		start = time.time()
		while (time.time() - start) * 1000 < timeout_ms:
			handle = self.page.query_selector("#PageFrame")
			if handle is not None:
				fr = handle.content_frame()
				if fr is not None and fr.query_selector(".dataGrid") is not None:
					return fr
			for fr in self._content_frames():
				try:
					if fr.query_selector(".dataGrid") is not None:
						return fr
				except Exception:
					continue
			self.page.wait_for_timeout(250)
		raise NavigationError("no .dataGrid frame found")

	def _select_season(self, label: str) -> None:
		for attempt in range(self.max_pages):
			link = self.page.locator("a", has_text=label).first
			if link.count() > 0:
				link.click()
				logger.info("[nav] selected season %r", label)
				return
			nxt = self.page.locator(NEXT_PAGE_SELECTOR).first
			if nxt.count() == 0:
				break
			logger.debug("season %r not on page %d; advancing", label, attempt + 1)
			nxt.click()
			self.page.wait_for_load_state("domcontentloaded")
		raise NavigationError(f"season {label!r} not found on seasons index")

	def _select_region(self, rid: str) -> None:
		self.page.wait_for_selector("#gbId", state="visible", timeout=10000)
		self.page.select_option("#gbId", rid)
		login = self.page.locator('input[type="button"][value="Login"]').first
		if login.count() == 0:
			raise NavigationError("Login button not found in season modal")
		login.click()
		self.page.wait_for_load_state("domcontentloaded")
		logger.info("[nav] logged into region %s", rid)

	def _set_page_size(self, frame: Any) -> None:
		box = frame.query_selector('input[type="text"][maxlength="5"]')
		if box is None:
			logger.debug("page size input not found; keeping default pagination")
			return
		box.fill(str(self.page_size))
		box.press("Enter")
		frame.wait_for_load_state("domcontentloaded")

	def _next_grid_page(self, frame: Any) -> bool:
		nxt = frame.query_selector(NEXT_PAGE_SELECTOR)
		if nxt is None:
			return False
		before = frame.content()
		nxt.click()
		start = time.time()
		while time.time() - start < 10.0:
			self.page.wait_for_timeout(250)
			if frame.content() != before:
				return True
		return False

	def discover_events(self, season: str, region: str) -> List[Event]:
		label = config.season_label(season)
		rid = config.region_id(region)
		try:
			self.page.goto(SEASONS_URL, wait_until="domcontentloaded")
			self._select_season(label)
			self._select_region(rid)
			frame = self._grid_frame()
			self._set_page_size(frame)
			frame = self._grid_frame()
			items: List[Dict[str, Any]] = []
			for page_no in range(self.max_pages):
				found = extract_event_rows(frame.content())
				logger.info("[nav] events page %d: %d events", page_no + 1, len(found))
				items.extend(found)
				if not found or not self._next_grid_page(frame):
					break
		except NavigationError:
			raise
		except Exception as e:
			raise NavigationError(f"event discovery failed for {season} / {region}: {e}") from e
		self._list_frame = frame
		for i, d in enumerate(items):
			d["index"] = i
		self._capture["season"] = season
		self._capture["region"] = region
		self._capture["events"] = [dict(d, groups=[]) for d in items]
		return sort_events_chronologically(events_from_dicts(items))

	def _activate(self, frame: Any, locator: str) -> None:
		"""Follow an onclick/href locator inside `frame`: run it as script or navigate to it."""
		loc = (locator or "").strip()
		if not loc:
			raise NavigationError("empty locator")
		if loc.lower().startswith("javascript:"):
			frame.evaluate(f"() => {{ {loc[len('javascript:'):]} }}")
		elif loc.startswith(URL_PREFIXES):
			frame.goto(loc, wait_until="domcontentloaded")
		else:
			frame.evaluate(f"() => {{ {loc} }}")

	def _find_list_frame(self, event: Event) -> Optional[Any]:
		for fr in self._content_frames():
			try:
				if fr.evaluate(HAS_LOCATOR_JS, event.locator):
					return fr
			except Exception:
				continue
		return None

	def _return_to_list(self, event: Event) -> bool:
		"""Walk back through history until the frame listing `event` is showing again."""
		for _ in range(5):
			fr = self._find_list_frame(event)
			if fr is not None:
				self._list_frame = fr
				return True
			try:
				self.page.go_back(wait_until="domcontentloaded")
			except Exception as e:
				logger.debug("go_back failed while returning to event list: %s", e)
				break
			self.page.wait_for_timeout(300)
		self._list_frame = None
		return False

	def _event_frame(self, timeout_ms: int = 10000) -> Any:
		"""Frame showing the opened event: its team list, or the matches of a dual meet."""
		start = time.time()
		while (time.time() - start) * 1000 < timeout_ms:
			for fr in self._content_frames():
				try:
					if any(fr.query_selector(sel) is not None for sel in TEAM_CONTAINERS):
						return fr
					if extract_match_rows(fr.content()):
						return fr
				except Exception:
					continue
			self.page.wait_for_timeout(250)
		return None

	def _open_event(self, event: Event) -> Any:
		if not event.locator:
			raise NavigationError(f"event {event.text!r} has no locator")
		if not self._return_to_list(event):
			raise NavigationError(f"event list holding {event.text!r} not found")
		self._activate(self._list_frame, event.locator)
		self.page.wait_for_timeout(1000)
		frame = self._event_frame()
		if frame is None:
			raise NavigationError(f"event page for {event.text!r} did not load")
		return frame

	def _team_links(self, frame: Any) -> List[Tuple[str, str]]:
		"""(team name, onclick/href) for every team, following the team list's pages."""
		teams: List[Tuple[str, str]] = []
		seen = set()
		for _ in range(self.max_pages):
			container = None
			for sel in TEAM_CONTAINERS:
				container = frame.query_selector(sel)
				if container is not None:
					break
			if container is None:
				break
			for a in container.query_selector_all("a"):
				name = (a.inner_text() or "").strip()
				loc = a.get_attribute("onclick") or a.get_attribute("href")
				if not name or not loc or loc in seen:
					continue
				seen.add(loc)
				teams.append((name, loc))
			if not self._next_grid_page(frame):
				break
		return teams

	def _read_match_rows(self, timeout_ms: int = 5000) -> List[RawRow]:
		start = time.time()
		while (time.time() - start) * 1000 < timeout_ms:
			for fr in self._content_frames():
				try:
					rows = extract_match_rows(fr.content())
				except Exception:
					continue
				if rows:
					return rows
			self.page.wait_for_timeout(250)
		return []

	def fetch_rows(self, event: Event, max_groups: Optional[int] = None) -> List[RawRow]:
		try:
			frame = self._open_event(event)
			teams = self._team_links(frame)
			groups: List[List[RawRow]] = []
			if not teams:
				# Dual meet: matches are on the event page itself
				groups.append(extract_match_rows(frame.content()))
			else:
				if max_groups is not None:
					teams = teams[:max_groups]
				for i, (name, loc) in enumerate(teams):
					# Team pages replace the team list, so reopen the event for every team
					if i:
						frame = self._open_event(event)
					self._activate(frame, loc)
					self.page.wait_for_timeout(500)
					rows = self._read_match_rows()
					logger.debug("[nav] %s / %s: %d rows", event.text, name, len(rows))
					groups.append(rows)
		except NavigationError:
			raise
		except Exception as e:
			raise NavigationError(f"fetching rows for {event.text!r} failed: {e}") from e
		finally:
			if event.locator and not self._return_to_list(event):
				logger.warning("[nav] event list not found after %s; next event will search again", event.text)

		self._record_capture(event, groups)
		return [r for g in groups for r in g]

	def can_fetch(self, event: Event) -> bool:
		return bool(event.locator)

	def _record_capture(self, event: Event, groups: List[List[RawRow]]) -> None:
		for d in self._capture["events"]:
			if (d.get("text"), d.get("date_text")) == event.key():
				d["groups"] = [[{"weight_class": r.weight_class, "text": r.text} for r in g] for g in groups]
				break

	def teardown(self) -> None:
		if self.capture_path is not None:
			self.capture_path.parent.mkdir(parents=True, exist_ok=True)
			with self.capture_path.open("w", encoding="utf-8") as f:
				json.dump(self._capture, f, indent=2)
			logger.info("[nav] wrote capture %s", self.capture_path)
		for closer in (self._context, self._browser):
			if closer is not None:
				try:
					closer.close()
				except Exception as e:
					logger.warning("[nav] close failed: %s", e)
		if self._pw is not None:
			self._pw.stop()
		self._pw = self._browser = self._context = self.page = None


# ---- Offline replay ----
class ReplayNavigator(Navigator):
	"""Serve events and rows from a capture file written by TrackWrestlingNavigator.

	Format: {"season": ..., "region": ..., "events": [{"text", "date_text", "locator",
	"groups": [[{"weight_class", "text"}, ...], ...]} or "rows": [...] instead of groups]}
	"""

	def __init__(self, path: Union[str, Path]):
		self.path = Path(path)
		self._data: Dict[str, Any] = {}

	def initialize(self, options: Optional[Dict[str, Any]] = None) -> None:
		try:
			with self.path.open("r", encoding="utf-8") as f:
				self._data = json.load(f)
		except (OSError, ValueError) as e:
			raise NavigationError(f"cannot read replay file {self.path}: {e}") from e
		if not isinstance(self._data.get("events"), list):
			raise NavigationError(f"replay file {self.path} has no events list")

	def discover_events(self, season: str, region: str) -> List[Event]:
		return sort_events_chronologically(events_from_dicts(self._data["events"]))

	def fetch_rows(self, event: Event, max_groups: Optional[int] = None) -> List[RawRow]:
		for d in self._data["events"]:
			if (d.get("text"), str(d.get("date_text") or "")) != event.key():
				continue
			groups = d.get("groups")
			if groups is None:
				groups = [d.get("rows") or []]
			if max_groups is not None:
				groups = groups[:max_groups]
			return [RawRow(weight_class=str(r.get("weight_class", "")), text=str(r.get("text", ""))) for g in groups for r in g]
		raise NavigationError(f"event {event.text!r} ({event.date_text}) not in replay file")

	def teardown(self) -> None:
		self._data = {}
