"""
Season analytics derived from an athlete's audit trail.

Schedule strength:
- at time: mean opponent Elo (and Glicko) before each match
- latest: mean of the opponents' current ratings, falling back to their post-match Elo
  (Glicko: pre-match rating) when no current value is known
- toughest / weakest: max / min opponent Elo at time

Strength of record weights each result by (opponent_rating - 1000) / 1000, scores wins 1 and
losses 0, and scales the weighted mean to 0..2000 (1500 when the total weight is not positive).

Quality and upsets:
- quality win: beat an opponent rated above 1600; quality loss: lost to one below 1400
- upset win: opponent rated above the athlete before the match; upset loss: below
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .models import RankingMatchAudit

DEFAULT_RATING = 1500.0
QUALITY_WIN_ELO = 1600.0
QUALITY_LOSS_ELO = 1400.0


def _mean(values: List[float]) -> float:
	return sum(values) / len(values) if values else 0.0


def opponent_elo(a: RankingMatchAudit) -> float:
	return a.opponent_elo_before or DEFAULT_RATING


def opponent_glicko(a: RankingMatchAudit) -> float:
	return a.opponent_glicko_before or DEFAULT_RATING


def strength_of_record(audits: Iterable[RankingMatchAudit], rating: str = "elo") -> float:
	score = 0.0
	weight = 0.0
	for a in audits:
		r = opponent_elo(a) if rating == "elo" else opponent_glicko(a)
		w = (r - 1000.0) / 1000.0
		score += (1.0 if a.match_result == "win" else 0.0) * w
		weight += w
	return score / weight * 2000.0 if weight > 0 else DEFAULT_RATING


def quality_metrics(audits: Iterable[RankingMatchAudit]) -> Dict[str, int]:
	out = {"quality_wins": 0, "quality_losses": 0, "upset_wins": 0, "upset_losses": 0}
	for a in audits:
		opp = opponent_elo(a)
		own = a.elo_before or DEFAULT_RATING
		won = a.match_result == "win"
		if won and opp > QUALITY_WIN_ELO:
			out["quality_wins"] += 1
		if not won and opp < QUALITY_LOSS_ELO:
			out["quality_losses"] += 1
		if won and opp > own:
			out["upset_wins"] += 1
		if not won and opp < own:
			out["upset_losses"] += 1
	return out


def opponent_analysis(audits: List[RankingMatchAudit]) -> Dict[str, Any]:
	counts = Counter(a.opponent_id for a in audits)
	if not counts:
		return {"unique_opponents": 0, "matches_per_opponent": 0.0, "most_frequent_opponent": None}
	# most_common keeps first-seen order among ties
	opp_id, n = counts.most_common(1)[0]
	return {
		"unique_opponents": len(counts),
		"matches_per_opponent": len(audits) / len(counts),
		"most_frequent_opponent": {"opponent_id": opp_id, "match_count": n},
	}


def season_analytics(
	audits: List[RankingMatchAudit],
	current: Optional[Mapping[int, Tuple[float, float]]] = None,
) -> Dict[str, Any]:
	"""Analytics for one season's audits; `current` maps opponent id to (elo, glicko) now."""
	current = current or {}
	elo_at = [opponent_elo(a) for a in audits]
	glicko_at = [opponent_glicko(a) for a in audits]
	elo_latest = []
	glicko_latest = []
	for a in audits:
		elo_now, glicko_now = current.get(a.opponent_id) or (None, None)
		elo_latest.append(elo_now if elo_now is not None else (a.opponent_elo_after or DEFAULT_RATING))
		glicko_latest.append(glicko_now if glicko_now is not None else opponent_glicko(a))

	out: Dict[str, Any] = {
		"total_matches": len(audits),
		"wins": sum(1 for a in audits if a.match_result == "win"),
		"losses": sum(1 for a in audits if a.match_result == "loss"),
		"strength_of_schedule": _mean(elo_at),
		"strength_of_schedule_latest": _mean(elo_latest),
		"toughest_opponent_elo": max(elo_at) if elo_at else 0.0,
		"weakest_opponent_elo": min(elo_at) if elo_at else 0.0,
		"strength_of_record": strength_of_record(audits) if audits else 0.0,
		"glicko_strength_of_schedule": _mean(glicko_at),
		"glicko_strength_of_schedule_latest": _mean(glicko_latest),
	}
	out.update(quality_metrics(audits))
	out.update(opponent_analysis(audits))
	return out


def analytics_by_season(
	audits: List[RankingMatchAudit],
	current: Optional[Mapping[int, Tuple[float, float]]] = None,
) -> Dict[int, Dict[str, Any]]:
	"""Group an audit trail by season rating and compute analytics for each, in trail order."""
	groups: Dict[int, List[RankingMatchAudit]] = {}
	for a in audits:
		groups.setdefault(a.season_rating_id, []).append(a)
	return {sid: season_analytics(items, current) for sid, items in groups.items()}
