"""
Configuration module for wrestling-ratings.

Loads crawl and storage settings from environment variables (via .env file).
Use these values throughout the codebase instead of hardcoding season/region values.

Environment Variables:
    WRESTLING_RATINGS_DB: DuckDB file path (default: output/wrestling_ratings.db)
    WRESTLING_RATINGS_STATE_DIR: directory holding crawl state JSON files (default: data)
    DEFAULT_SEASON: TrackWrestling season label prefix (default: 2024-25)
    DEFAULT_REGION: region/state name (default: Utah)
    DEFAULT_LEVEL / DEFAULT_SEX: season label suffix parts (default: High School / Boys)
    FETCH_TIMEOUT_SECONDS: per-event row fetch timeout (default: 600)
    MAX_EVENTS_PER_RUN: events handled per batch invocation (default: 10)
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

# Project root is the parent of the package directory
_project_root = Path(__file__).parent.parent
_env_path = _project_root / ".env"
if _env_path.exists():
    load_dotenv(_env_path)


# ----- Crawl Configuration -----

DEFAULT_SEASON: str = os.getenv("DEFAULT_SEASON", "2024-25")
DEFAULT_REGION: str = os.getenv("DEFAULT_REGION", "Utah")
DEFAULT_LEVEL: str = os.getenv("DEFAULT_LEVEL", "High School")
DEFAULT_SEX: str = os.getenv("DEFAULT_SEX", "Boys")

FETCH_TIMEOUT_SECONDS: float = float(os.getenv("FETCH_TIMEOUT_SECONDS", "600"))
MAX_EVENTS_PER_RUN: int = int(os.getenv("MAX_EVENTS_PER_RUN", "10"))

# Region name -> (TrackWrestling gbId, state abbreviation stored on athletes)
REGIONS: Dict[str, Tuple[str, str]] = {
    "Utah": ("50", "UT"),
    "Colorado": ("6", "CO"),
    "Arizona": ("3", "AZ"),
    "Nevada": ("28", "NV"),
    "Idaho": ("12", "ID"),
}


# ----- Rating Defaults -----

DEFAULT_ELO: float = 1500.0
DEFAULT_GLICKO_RATING: float = 1500.0
DEFAULT_GLICKO_RD: float = 200.0
DEFAULT_GLICKO_VOLATILITY: float = 0.06


# ----- Derived Values -----

def region_id(region: str) -> str:
    """Return the TrackWrestling region id for a region name (or pass an id through)."""
    if region in REGIONS:
        return REGIONS[region][0]
    if region.isdigit():
        return region
    raise ValueError(f"unknown region {region!r}; expected one of {sorted(REGIONS)} or a numeric id")


def region_state(region: str) -> Optional[str]:
    """Return the state abbreviation for a region name or id, if known."""
    for name, (rid, abbrev) in REGIONS.items():
        if region in (name, rid):
            return abbrev
    return None


def season_label(season: str) -> str:
    """Full TrackWrestling season label, e.g. '2024-25 High School Boys'."""
    return f"{season} {DEFAULT_LEVEL} {DEFAULT_SEX}"


def season_end_year(season: str) -> Optional[int]:
    """'2024-25' -> 2025, '2024-2025' -> 2025, '2025' -> 2025."""
    m = re.match(r"^\s*(\d{4})\s*-\s*(\d{2}|\d{4})\b", season or "")
    if m:
        start = int(m.group(1))
        tail = m.group(2)
        if len(tail) == 4:
            return int(tail)
        return (start // 100) * 100 + int(tail) if int(tail) > start % 100 else start + 1
    m = re.match(r"^\s*(\d{4})\b", season or "")
    return int(m.group(1)) if m else None


def get_db_path() -> Path:
    """Return the full path to the ratings database file."""
    raw = os.getenv("WRESTLING_RATINGS_DB")
    if raw:
        return Path(raw)
    return _project_root / "output" / "wrestling_ratings.db"


def get_state_dir() -> Path:
    """Return the directory holding crawl state files."""
    raw = os.getenv("WRESTLING_RATINGS_STATE_DIR")
    if raw:
        return Path(raw)
    return _project_root / "data"
