"""
Parse TrackWrestling match text into structured MatchRecord objects.

Accepted grammar (one match per row, weight class supplied by the caller):

    [Round -] Winner (School) over Loser (School) (ResultToken)

Examples:
    Cons. Semis - Logan McNally (Wasatch) over Adam Mitchell (Cedar Valley) (MD 9-1)
    Aubrey Hastings (Cumberland HS) over Jillian Boncore (Alvirne) (Fall 3:47)

The parser never raises on malformed input; it returns None instead. Callers must
run validate_match() on the result before handing it to the rating engine.

Also holds the HTML helpers used by the navigation adapter to pull event rows and
match rows out of saved/live page markup (BeautifulSoup).
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from .models import RESULT_TYPES, MatchRecord, MatchResult, RawRow, Wrestler

logger = logging.getLogger(__name__)

MIN_MATCH_TEXT_LENGTH = 10
UNKNOWN = "Unknown"

SCORE_RE = re.compile(r"(\d+)\s*-\s*(\d+)")
TIME_RE = re.compile(r"(\d{1,2}:\d{2})")

# Tokens that mean the bout was not wrestled to a result; counted as decisions without score
FORFEIT_TOKENS = ("FORFEIT", "DEFAULT")
BARE_TOKEN_PREFIXES = ("FALL", "TF", "MD", "DEC", "FOR", "DEF")

# Placeholder opponents TrackWrestling prints for byes; such rows are not matches
BYE_NAMES = {"bye", "forfeit", "forfeit bye", "forfeit forfeit", "bye bye"}


def _normalize_text(s: str) -> str:
    return " ".join((s or "").replace("\xa0", " ").split())


# -----------------------------
# Configurable conversions
# -----------------------------
# Add name and school corrections here. Each entry is (regex_pattern, replacement), case-insensitive.
NAME_CONVERSIONS_RAW: List[Tuple[str, str]] = [
    # 'Keyanta Robinson-Forfeit' -> 'Keyanta Robinson'
    (r"\s*-\s*Forfeit$", ""),
]

SCHOOL_CONVERSIONS_RAW: List[Tuple[str, str]] = [
    # 'Kellam HS' / 'Akron Sr HS' -> 'Kellam' / 'Akron'
    (r"\s+(?:Sr\.?\s+|Jr\.?\s+)?HS$", ""),
]

NAME_CONVERSIONS = [(re.compile(pat, re.IGNORECASE), repl) for pat, repl in NAME_CONVERSIONS_RAW]
SCHOOL_CONVERSIONS = [(re.compile(pat, re.IGNORECASE), repl) for pat, repl in SCHOOL_CONVERSIONS_RAW]


def _apply_conversions(value: str, conversions: List[Tuple[re.Pattern[str], str]]) -> str:
    if not value:
        return value
    out = value
    for rx, repl in conversions:
        out = rx.sub(repl, out)
    return out.strip()


# -----------------------------
# Segment helpers
# -----------------------------
def _top_level_groups(text: str) -> List[Tuple[int, int]]:
    """Return (start, end) spans of top-level balanced parenthesised groups; end is exclusive."""
    spans: List[Tuple[int, int]] = []
    depth = 0
    start = -1
    for i, ch in enumerate(text):
        if ch == "(":
            if depth == 0:
                start = i
            depth += 1
        elif ch == ")" and depth > 0:
            depth -= 1
            if depth == 0:
                spans.append((start, i + 1))
    return spans


def _split_round(text: str) -> Tuple[Optional[str], str]:
    # Round prefix is text before the first " - ", unless that text already holds a
    # wrestler segment (hyphenated names like 'Sampson - Johnson').
    if " - " not in text:
        return None, text
    prefix, rest = text.split(" - ", 1)
    if "(" in prefix or " over " in f" {prefix} ".lower():
        return None, text
    prefix = prefix.strip()
    return (prefix or None), rest.strip()


def _split_result_token(rest: str) -> Optional[Tuple[str, str]]:
    """Split '<participants> (<token>)' into participants and the trailing token.

    A bare trailing token ('... (Chancellor) Fall 3:34') is accepted when it starts with a
    known result prefix.
    """
    groups = _top_level_groups(rest)
    if not groups:
        return None
    start, end = groups[-1]
    trailing = rest[end:].strip()
    if trailing:
        if not trailing.upper().startswith(BARE_TOKEN_PREFIXES):
            return None
        return rest[:end].strip(), trailing
    token = rest[start + 1:end - 1].strip()
    participants = rest[:start].strip()
    if not token or not participants:
        return None
    return participants, token


def parse_wrestler(segment: str) -> Wrestler:
    """Parse 'First Last (School)' into a Wrestler; missing name parts become 'Unknown'.

    Anything after the school group (bracket records like '12-3 won by fall') is ignored.
    """
    segment = _normalize_text(segment)
    groups = _top_level_groups(segment)
    school = ""
    full_name = segment
    if groups:
        start, end = groups[-1]
        full_name = segment[:start].strip()
        school = segment[start + 1:end - 1].strip()
    full_name = _apply_conversions(full_name, NAME_CONVERSIONS)
    school = _apply_conversions(school, SCHOOL_CONVERSIONS)

    parts = full_name.split(" ", 1)
    first = parts[0].strip() if parts else ""
    last = parts[1].strip() if len(parts) > 1 else ""
    return Wrestler(first_name=first or UNKNOWN, last_name=last or UNKNOWN, school=school)


def parse_result(token: str) -> MatchResult:
    """Classify a result token by prefix: FALL, TF, MD, DEC, forfeit/default, else decision."""
    raw = token
    up = _normalize_text(token).upper()
    score_m = SCORE_RE.search(up)
    time_m = TIME_RE.search(up)
    score = f"{score_m.group(1)}-{score_m.group(2)}" if score_m else None
    ftime = time_m.group(1) if time_m else None

    if up.startswith("FALL"):
        return MatchResult(type="fall", raw=raw, time=ftime)
    if up.startswith("TF"):
        return MatchResult(type="technical-fall", raw=raw, score=score, time=ftime)
    if up.startswith("MD"):
        return MatchResult(type="major-decision", raw=raw, score=score)
    if up.startswith("DEC"):
        return MatchResult(type="decision", raw=raw, score=score)
    if any(t in up for t in FORFEIT_TOKENS):
        return MatchResult(type="decision", raw=raw)
    # Unrecognized tokens are absorbed as decisions; keep a trail in the logs
    logger.debug("unrecognized result token %r; defaulting to decision", raw)
    return MatchResult(type="decision", raw=raw)


def parse_match(raw_text: Any, weight_class: str, event_date: Optional[date] = None) -> Optional[MatchRecord]:
    """Parse a single match text line into a MatchRecord, or None if it is not a match."""
    if not raw_text or not isinstance(raw_text, str):
        return None
    text = _normalize_text(raw_text)
    if len(text) < MIN_MATCH_TEXT_LENGTH:
        return None
    try:
        tournament_round, rest = _split_round(text)
        split = _split_result_token(rest)
        if split is None:
            return None
        participants, token = split
        m = re.match(r"^(?P<win>.+?)\s+over\s+(?P<lose>.+)$", participants, re.I)
        if not m:
            return None
        winner = parse_wrestler(m.group("win"))
        loser = parse_wrestler(m.group("lose"))
        # Nameless or Bye sides are empty bracket slots: drop the row instead of rating an Unknown wrestler
        for w in (winner, loser):
            if w.first_name == UNKNOWN and w.last_name == UNKNOWN:
                return None
            known = " ".join(p for p in (w.first_name, w.last_name) if p != UNKNOWN)
            if known.lower() in BYE_NAMES:
                logger.debug("bye row skipped: %r", text)
                return None
        return MatchRecord(
            weight_class=str(weight_class or "").strip(),
            winner=winner,
            loser=loser,
            result=parse_result(token),
            tournament_round=tournament_round,
            event_date=event_date,
            raw_text=text,
        )
    except Exception as e:
        logger.warning("failed to parse match text %r: %s", text, e)
        return None


def validate_match(record: Optional[MatchRecord]) -> bool:
    """Both participants need first and last names, and the result needs a known type."""
    if record is None:
        return False
    for w in (record.winner, record.loser):
        if w is None or not (w.first_name or "").strip() or not (w.last_name or "").strip():
            return False
    if record.result is None or not record.result.type:
        return False
    return record.result.type in RESULT_TYPES


# -----------------------------
# Dates
# -----------------------------
_MONTH_DATE_RE = re.compile(r"([A-Za-z]{3,9})\.?\s+(\d{1,2}),?\s+(\d{4})")


def parse_event_date(text: Optional[str]) -> Optional[date]:
    """Parse the date column of an event listing.

    Handles MM/DD/YYYY, MM/DD - MM/DD/YYYY ranges (start date wins), YYYY-MM-DD,
    'Jan 15, 2025' and 'January 15, 2025'. Returns None when nothing parses.
    """
    t = _normalize_text(text or "")
    if not t:
        return None
    try:
        m = re.match(r"^(\d{1,2})/(\d{1,2})\s*-\s*\d{1,2}/\d{1,2}/(\d{4})$", t)
        if m:
            return date(int(m.group(3)), int(m.group(1)), int(m.group(2)))
        m = re.search(r"(\d{1,2})/(\d{1,2})/(\d{4})", t)
        if m:
            return date(int(m.group(3)), int(m.group(1)), int(m.group(2)))
        m = re.search(r"(\d{4})-(\d{1,2})-(\d{1,2})", t)
        if m:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        m = _MONTH_DATE_RE.search(t)
        if m:
            joined = f"{m.group(1)[:3].title()} {m.group(2)} {m.group(3)}"
            return datetime.strptime(joined, "%b %d %Y").date()
    except ValueError:
        pass
    logger.debug("could not parse event date %r", text)
    return None


# -----------------------------
# HTML extraction
# -----------------------------
def extract_event_rows(html: str) -> List[Dict[str, Any]]:
    """Return event dicts (index, date_text, text, locator) from a season event grid."""
    soup = BeautifulSoup(html or "", "html.parser")
    results: List[Dict[str, Any]] = []
    for idx, row in enumerate(soup.select(".dataGrid tr.dataGridRow")):
        cells = row.find_all("td")
        if len(cells) < 3:
            continue
        date_text = _normalize_text(cells[1].get_text(" "))
        for a in cells[2].find_all("a"):
            name = _normalize_text(a.get_text(" "))
            if not name:
                continue
            results.append({
                "index": idx,
                "date_text": date_text,
                "text": name,
                "locator": a.get("onclick") or a.get("href"),
            })
    return results


def _looks_like_match(text: str) -> bool:
    low = text.lower()
    return " over " in low and "(" in text and ")" in text


def extract_match_rows(html: str) -> List[RawRow]:
    """Return RawRows from a results page.

    Two layouts are understood: the season data grid (weight in column 2, match in
    column 3) and the round results list (section.tw-list with <h2> weight headers
    followed by <ul><li> matches).
    """
    soup = BeautifulSoup(html or "", "html.parser")
    rows: List[RawRow] = []
    for row in soup.select(".dataGrid tr.dataGridRow"):
        cells = row.find_all("td")
        if len(cells) < 3:
            continue
        weight = _normalize_text(cells[1].get_text(" "))
        text = _normalize_text(cells[2].get_text(" "))
        if _looks_like_match(text):
            rows.append(RawRow(weight_class=weight, text=text))
    if rows:
        return rows

    section = soup.select_one("section.tw-list, section[class~=tw-list]")
    if not section:
        return rows
    current_weight: Optional[str] = None
    for child in section.children:
        if not isinstance(child, Tag):
            continue
        tag = (child.name or "").lower()
        if tag == "h2":
            current_weight = _normalize_text(child.get_text(" "))
        elif tag == "ul" and current_weight:
            lis = child.find_all("li", recursive=False) or child.find_all("li")
            for li in lis:
                text = _normalize_text(li.get_text(" "))
                if _looks_like_match(text):
                    rows.append(RawRow(weight_class=current_weight, text=text))
    return rows
