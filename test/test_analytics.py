"""
Tests for season analytics over audit trails.

Run with: pytest test/test_analytics.py
"""

import sys
from datetime import date
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from wrestling_ratings.analytics import analytics_by_season, season_analytics, strength_of_record
from wrestling_ratings.models import RankingMatchAudit


def audit(result, opponent_id, opp_before, opp_after, own_before, opp_glicko, season_rating_id=10, day=1):
    return RankingMatchAudit(
        match_hash=f"h{opponent_id}-{day}",
        athlete_id=1,
        opponent_id=opponent_id,
        season_rating_id=season_rating_id,
        match_result=result,
        result_type="decision",
        weight_class="145",
        match_date=date(2025, 1, day),
        elo_before=own_before,
        elo_after=own_before + (8.0 if result == "win" else -8.0),
        glicko_rating_before=1500.0,
        glicko_rating_after=1500.0,
        glicko_rd_before=200.0,
        glicko_rd_after=190.0,
        glicko_volatility_before=0.06,
        glicko_volatility_after=0.06,
        wins_before=0,
        losses_before=0,
        wins_after=0,
        losses_after=0,
        opponent_elo_before=opp_before,
        opponent_elo_after=opp_after,
        opponent_glicko_before=opp_glicko,
        opponent_glicko_rd_before=200.0,
    )


@pytest.fixture
def season():
    return [
        audit("win", 2, 1700.0, 1690.0, 1500.0, 1650.0, day=1),
        audit("loss", 3, 1300.0, 1310.0, 1510.0, 1350.0, day=2),
        audit("win", 2, 1690.0, 1682.0, 1505.0, 1640.0, day=3),
    ]


def test_schedule_strength_and_extremes(season):
    s = season_analytics(season)
    assert (s["total_matches"], s["wins"], s["losses"]) == (3, 2, 1)
    assert s["strength_of_schedule"] == pytest.approx((1700 + 1300 + 1690) / 3)
    assert s["glicko_strength_of_schedule"] == pytest.approx((1650 + 1350 + 1640) / 3)
    assert s["toughest_opponent_elo"] == 1700.0
    assert s["weakest_opponent_elo"] == 1300.0


def test_latest_schedule_prefers_current_ratings(season):
    s = season_analytics(season)
    assert s["strength_of_schedule_latest"] == pytest.approx((1690 + 1310 + 1682) / 3)
    assert s["glicko_strength_of_schedule_latest"] == pytest.approx((1650 + 1350 + 1640) / 3)

    s = season_analytics(season, {2: (1600.0, 1580.0), 3: (None, None)})
    assert s["strength_of_schedule_latest"] == pytest.approx((1600 + 1310 + 1600) / 3)
    assert s["glicko_strength_of_schedule_latest"] == pytest.approx((1580 + 1350 + 1580) / 3)


def test_strength_of_record_weights_by_opponent(season):
    assert strength_of_record(season) == pytest.approx((0.7 + 0.69) / (0.7 + 0.3 + 0.69) * 2000)
    assert strength_of_record(season, rating="glicko") == pytest.approx((0.65 + 0.64) / (0.65 + 0.35 + 0.64) * 2000)
    # Opponents rated at or below 1000 carry no positive weight
    assert strength_of_record([audit("win", 4, 900.0, 890.0, 1500.0, 900.0)]) == 1500.0


def test_quality_wins_and_upsets(season):
    s = season_analytics(season)
    assert (s["quality_wins"], s["quality_losses"]) == (2, 1)
    assert (s["upset_wins"], s["upset_losses"]) == (2, 1)

    even = season_analytics([audit("win", 5, 1500.0, 1492.0, 1500.0, 1500.0)])
    assert (even["quality_wins"], even["upset_wins"]) == (0, 0)


def test_opponent_analysis(season):
    s = season_analytics(season)
    assert s["unique_opponents"] == 2
    assert s["matches_per_opponent"] == pytest.approx(1.5)
    assert s["most_frequent_opponent"] == {"opponent_id": 2, "match_count": 2}


def test_empty_season():
    s = season_analytics([])
    assert s["total_matches"] == 0
    assert s["strength_of_schedule"] == s["strength_of_record"] == 0.0
    assert s["toughest_opponent_elo"] == s["weakest_opponent_elo"] == 0.0
    assert s["most_frequent_opponent"] is None


def test_analytics_grouped_by_season_rating(season):
    other = audit("loss", 7, 1550.0, 1558.0, 1400.0, 1550.0, season_rating_id=11, day=9)
    out = analytics_by_season(season + [other])
    assert list(out) == [10, 11]
    assert out[10]["total_matches"] == 3
    assert out[11]["losses"] == 1
    assert out[11]["upset_losses"] == 0


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__]))
