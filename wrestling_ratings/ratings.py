"""
Rating update engine: Elo and a simplified Glicko, computed from pre-match values.

Elo:
- Base K-factor: 16
- Result multipliers on K: decision 1.0, major decision 1.2, tech fall 1.4, fall 1.6
  (anything else counts as a decision)
- Expected: E_w = 1 / (1 + 10^((R_l - R_w) / 400)), E_l = 1 - E_w
- Winner gains K*m*(1 - E_w), loser loses K*m*E_l (zero-sum)

Glicko (simplified, single-game rating period):
- q = ln(10) / 400, g(RD) = 1 / sqrt(1 + 3 q^2 RD^2 / pi^2)
- Expected uses the opponent's g(RD)
- v = 1 / (q^2 g^2 E (1 - E)), delta = q g (s - E) * m
- rating' = rating + delta * v * 0.25, RD' = sqrt(1 / (1/RD^2 + 1/v))
- sigma' = sigma * (1 + |delta| / v * 0.01), clamped to [0.01, 0.5]
- Result multipliers: decision 1.0, major decision 1.1, tech fall 1.2, fall 1.3

Nothing here touches storage; callers pass the ratings they read inside the
transaction and persist what comes back.
"""

from __future__ import annotations

import math
from typing import Dict, NamedTuple, Tuple

from . import config

BASE_K = 16.0

ELO_MULTIPLIERS: Dict[str, float] = {
	"decision": 1.0,
	"major-decision": 1.2,
	"technical-fall": 1.4,
	"fall": 1.6,
}

GLICKO_MULTIPLIERS: Dict[str, float] = {
	"decision": 1.0,
	"major-decision": 1.1,
	"technical-fall": 1.2,
	"fall": 1.3,
}

Q = math.log(10) / 400.0
MIN_VOLATILITY = 0.01
MAX_VOLATILITY = 0.5


class EloUpdate(NamedTuple):
	winner_before: float
	winner_after: float
	loser_before: float
	loser_after: float
	expected_winner: float
	expected_loser: float
	k_applied: float

	@property
	def winner_change(self) -> float:
		return self.winner_after - self.winner_before

	@property
	def loser_change(self) -> float:
		return self.loser_after - self.loser_before


class GlickoState(NamedTuple):
	rating: float = config.DEFAULT_GLICKO_RATING
	rd: float = config.DEFAULT_GLICKO_RD
	volatility: float = config.DEFAULT_GLICKO_VOLATILITY


class GlickoUpdate(NamedTuple):
	winner_before: GlickoState
	winner_after: GlickoState
	loser_before: GlickoState
	loser_after: GlickoState


def expected_score(ra: float, rb: float) -> float:
	return 1.0 / (1.0 + 10 ** ((rb - ra) / 400.0))


def elo_k(result_type: str) -> float:
	return BASE_K * ELO_MULTIPLIERS.get((result_type or "").lower(), 1.0)


def elo_update(winner_elo: float, loser_elo: float, result_type: str) -> EloUpdate:
	"""Apply one Elo update for a decided match."""
	ew = expected_score(winner_elo, loser_elo)
	el = 1.0 - ew
	k = elo_k(result_type)
	return EloUpdate(
		winner_before=winner_elo,
		winner_after=winner_elo + k * (1.0 - ew),
		loser_before=loser_elo,
		loser_after=loser_elo + k * (0.0 - el),
		expected_winner=ew,
		expected_loser=el,
		k_applied=k,
	)


def g(rd: float) -> float:
	return 1.0 / math.sqrt(1.0 + 3.0 * Q ** 2 * rd ** 2 / math.pi ** 2)


def glicko_expected(rating: float, opp_rating: float, opp_rd: float) -> float:
	return 1.0 / (1.0 + 10 ** (-g(opp_rd) * (rating - opp_rating) / 400.0))


def _glicko_side(me: GlickoState, opp: GlickoState, score: float, mult: float) -> GlickoState:
	gv = g(opp.rd)
	e = glicko_expected(me.rating, opp.rating, opp.rd)
	variance = 1.0 / (Q ** 2 * gv ** 2 * e * (1.0 - e))
	delta = Q * gv * (score - e) * mult
	rating = me.rating + delta * variance * 0.25
	rd = math.sqrt(1.0 / (1.0 / me.rd ** 2 + 1.0 / variance))
	vol = me.volatility * (1.0 + abs(delta) / variance * 0.01)
	vol = max(MIN_VOLATILITY, min(MAX_VOLATILITY, vol))
	return GlickoState(rating=rating, rd=rd, volatility=vol)


def glicko_update(winner: GlickoState, loser: GlickoState, result_type: str) -> GlickoUpdate:
	"""Apply one simplified Glicko update to both sides from their pre-match states."""
	mult = GLICKO_MULTIPLIERS.get((result_type or "").lower(), 1.0)
	return GlickoUpdate(
		winner_before=winner,
		winner_after=_glicko_side(winner, loser, 1.0, mult),
		loser_before=loser,
		loser_after=_glicko_side(loser, winner, 0.0, mult),
	)


def rate_match(
	winner_elo: float,
	loser_elo: float,
	winner_glicko: GlickoState,
	loser_glicko: GlickoState,
	result_type: str,
) -> Tuple[EloUpdate, GlickoUpdate]:
	return elo_update(winner_elo, loser_elo, result_type), glicko_update(winner_glicko, loser_glicko, result_type)
