"""Data models shared by the parser, rating engine, storage and crawl tracker."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

RESULT_TYPES = ("fall", "technical-fall", "major-decision", "decision")


# ---- Scraped inputs ----
@dataclass
class Event:
    index: int
    text: str
    date_text: str
    parsed_date: Optional[date] = None
    locator: Optional[str] = None

    def key(self) -> tuple:
        return (self.text, self.date_text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "text": self.text,
            "date_text": self.date_text,
            "parsed_date": self.parsed_date.isoformat() if self.parsed_date else None,
            "locator": self.locator,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Event":
        parsed = d.get("parsed_date")
        return cls(
            index=int(d.get("index", 0)),
            text=str(d["text"]),
            date_text=str(d.get("date_text") or ""),
            parsed_date=date.fromisoformat(parsed) if parsed else None,
            locator=d.get("locator"),
        )


@dataclass
class RawRow:
    weight_class: str
    text: str


# ---- Parsed match ----
@dataclass
class Wrestler:
    first_name: str
    last_name: str
    school: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class MatchResult:
    type: str
    raw: str
    score: Optional[str] = None
    time: Optional[str] = None


@dataclass
class MatchRecord:
    weight_class: str
    winner: Wrestler
    loser: Wrestler
    result: MatchResult
    tournament_round: Optional[str] = None
    event_date: Optional[date] = None
    raw_text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["event_date"] = self.event_date.isoformat() if self.event_date else None
        return out


# ---- Persisted rows ----
@dataclass
class Athlete:
    id: int
    first_name: str
    last_name: str
    state: Optional[str] = None
    is_favorite: bool = False
    elo: Optional[float] = None
    glicko_rating: Optional[float] = None
    glicko_rd: Optional[float] = None
    glicko_volatility: Optional[float] = None


@dataclass
class SeasonRating:
    id: int
    athlete_id: int
    year: int
    weight_class: str
    final_elo: float
    final_glicko_rating: float
    final_glicko_rd: float
    final_glicko_volatility: float
    team: Optional[str] = None
    wins: int = 0
    losses: int = 0
    total_matches: int = 0
    peak_elo: Optional[float] = None
    peak_elo_date: Optional[date] = None
    lowest_elo: Optional[float] = None
    lowest_elo_date: Optional[date] = None
    peak_glicko_rating: Optional[float] = None
    peak_glicko_date: Optional[date] = None
    first_match_date: Optional[date] = None
    last_match_date: Optional[date] = None


@dataclass
class RankingMatchAudit:
    """Immutable before/after snapshot of one athlete's ratings for one match."""

    match_hash: str
    athlete_id: int
    opponent_id: int
    season_rating_id: int
    match_result: str  # 'win' or 'loss'
    result_type: str
    weight_class: str
    match_date: Optional[date]
    elo_before: float
    elo_after: float
    glicko_rating_before: float
    glicko_rating_after: float
    glicko_rd_before: float
    glicko_rd_after: float
    glicko_volatility_before: float
    glicko_volatility_after: float
    wins_before: int
    losses_before: int
    wins_after: int
    losses_after: int
    opponent_elo_before: float
    opponent_elo_after: float
    opponent_glicko_before: float
    opponent_glicko_rd_before: float
    event_name: Optional[str] = None
    tournament_round: Optional[str] = None
    raw_text: Optional[str] = None
    processed_at: datetime = field(default_factory=datetime.now)

    @property
    def elo_change(self) -> float:
        return self.elo_after - self.elo_before

    @property
    def glicko_rating_change(self) -> float:
        return self.glicko_rating_after - self.glicko_rating_before

    @property
    def glicko_rd_change(self) -> float:
        return self.glicko_rd_after - self.glicko_rd_before

    @property
    def glicko_volatility_change(self) -> float:
        return self.glicko_volatility_after - self.glicko_volatility_before


def sort_events_chronologically(events: List[Event]) -> List[Event]:
    """Stable sort by parsed date; undated events go last and ties keep discovery order."""
    keyed = sorted(
        enumerate(events),
        key=lambda pair: (pair[1].parsed_date is None, pair[1].parsed_date or date.min, pair[0]),
    )
    return [ev for _, ev in keyed]
