"""
DuckDB persistence for athletes, per-season ratings and the per-match audit trail.

Tables (created on open if missing, columns backfilled for older files):
- athletes(id, first_name, last_name, state, is_favorite, elo, glicko_rating, glicko_rd,
		   glicko_volatility, last_match_date, created_at, updated_at)
- season_ratings(id, athlete_id, year, weight_class, team, final_elo, final_glicko_*,
		   wins, losses, total_matches, peak/lowest elo (+dates), peak glicko (+date),
		   first_match_date, last_match_date, updated_at)
- ranking_match_audits(match_hash, athlete_id, ... before/after snapshot ...,
		   PRIMARY KEY (match_hash, athlete_id))

One processed match = two audit inserts + two season_ratings updates + two athletes
updates, all inside a single transaction() block opened by the caller.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import fields
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

import duckdb

from . import config
from .errors import RatingPersistenceError
from .models import Athlete, MatchRecord, RankingMatchAudit, SeasonRating
from .ratings import EloUpdate, GlickoState, GlickoUpdate

logger = logging.getLogger(__name__)

ATHLETE_COLUMNS = [f.name for f in fields(Athlete)]
SEASON_COLUMNS = [f.name for f in fields(SeasonRating)]
AUDIT_COLUMNS = [f.name for f in fields(RankingMatchAudit)]


def _existing_columns(conn: duckdb.DuckDBPyConnection, table: str) -> set:
	return set(
		r[0]
		for r in conn.execute(
			"""--sql
			SELECT column_name FROM information_schema.columns WHERE table_name = ?
			""",
			[table],
		).fetchall()
	)


def _backfill(conn: duckdb.DuckDBPyConnection, table: str, expect: List[Tuple[str, str]]) -> None:
	cols = _existing_columns(conn, table)
	for name, typ in expect:
		if name not in cols:
			conn.execute(f"""--sql
			ALTER TABLE {table} ADD COLUMN {name} {typ}
			""")


def ensure_schema(conn: duckdb.DuckDBPyConnection) -> None:
	conn.execute("CREATE SEQUENCE IF NOT EXISTS athletes_id_seq START 1")
	conn.execute("CREATE SEQUENCE IF NOT EXISTS season_ratings_id_seq START 1")
	conn.execute(
		"""--sql
		CREATE TABLE IF NOT EXISTS athletes (
			id BIGINT PRIMARY KEY DEFAULT nextval('athletes_id_seq'),
			first_name TEXT NOT NULL,
			last_name TEXT NOT NULL,
			state TEXT,
			is_favorite BOOLEAN DEFAULT FALSE,
			elo DOUBLE,
			glicko_rating DOUBLE,
			glicko_rd DOUBLE,
			glicko_volatility DOUBLE,
			last_match_date DATE,
			created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
			updated_at TIMESTAMP
		);
		"""
	)
	_backfill(conn, "athletes", [
		("is_favorite", "BOOLEAN DEFAULT FALSE"),
		("last_match_date", "DATE"),
	])
	conn.execute(
		"""--sql
		CREATE TABLE IF NOT EXISTS season_ratings (
			id BIGINT PRIMARY KEY DEFAULT nextval('season_ratings_id_seq'),
			athlete_id BIGINT NOT NULL,
			year INTEGER NOT NULL,
			weight_class TEXT NOT NULL,
			team TEXT,
			final_elo DOUBLE,
			final_glicko_rating DOUBLE,
			final_glicko_rd DOUBLE,
			final_glicko_volatility DOUBLE,
			wins INTEGER DEFAULT 0,
			losses INTEGER DEFAULT 0,
			total_matches INTEGER DEFAULT 0,
			peak_elo DOUBLE,
			peak_elo_date DATE,
			lowest_elo DOUBLE,
			lowest_elo_date DATE,
			peak_glicko_rating DOUBLE,
			peak_glicko_date DATE,
			first_match_date DATE,
			last_match_date DATE,
			updated_at TIMESTAMP
		);
		"""
	)
	_backfill(conn, "season_ratings", [
		("peak_glicko_rating", "DOUBLE"),
		("peak_glicko_date", "DATE"),
		("lowest_elo", "DOUBLE"),
		("lowest_elo_date", "DATE"),
	])
	conn.execute(
		"""--sql
		CREATE TABLE IF NOT EXISTS ranking_match_audits (
			match_hash TEXT NOT NULL,
			athlete_id BIGINT NOT NULL,
			opponent_id BIGINT NOT NULL,
			season_rating_id BIGINT NOT NULL,
			match_result TEXT NOT NULL, -- 'win' or 'loss'
			result_type TEXT NOT NULL,
			weight_class TEXT,
			match_date DATE,
			elo_before DOUBLE,
			elo_after DOUBLE,
			elo_change DOUBLE,
			glicko_rating_before DOUBLE,
			glicko_rating_after DOUBLE,
			glicko_rating_change DOUBLE,
			glicko_rd_before DOUBLE,
			glicko_rd_after DOUBLE,
			glicko_rd_change DOUBLE,
			glicko_volatility_before DOUBLE,
			glicko_volatility_after DOUBLE,
			glicko_volatility_change DOUBLE,
			wins_before INTEGER,
			losses_before INTEGER,
			wins_after INTEGER,
			losses_after INTEGER,
			opponent_elo_before DOUBLE,
			opponent_elo_after DOUBLE,
			opponent_glicko_before DOUBLE,
			opponent_glicko_rd_before DOUBLE,
			event_name TEXT,
			tournament_round TEXT,
			raw_text TEXT,
			processed_at TIMESTAMP,
			PRIMARY KEY (match_hash, athlete_id)
		);
		"""
	)
	_backfill(conn, "ranking_match_audits", [
		("opponent_elo_before", "DOUBLE"),
		("opponent_elo_after", "DOUBLE"),
		("opponent_glicko_before", "DOUBLE"),
		("opponent_glicko_rd_before", "DOUBLE"),
	])


def _max_opt(current: Optional[float], value: float) -> bool:
	return current is None or value > current


def _min_opt(current: Optional[float], value: float) -> bool:
	return current is None or value < current


class RatingStore:
	def __init__(self, db_path: Optional[Union[str, Path]] = None):
		path = str(db_path) if db_path is not None else str(config.get_db_path())
		if path != ":memory:":
			Path(path).parent.mkdir(parents=True, exist_ok=True)
		self.db_path = path
		self.conn = duckdb.connect(path)
		self._in_transaction = False
		ensure_schema(self.conn)

	def close(self) -> None:
		self.conn.close()

	def __enter__(self) -> "RatingStore":
		return self

	def __exit__(self, *exc) -> None:
		self.close()

	@contextmanager
	def transaction(self) -> Iterator["RatingStore"]:
		"""Run a block atomically; any failure rolls back and surfaces as RatingPersistenceError."""
		if self._in_transaction:
			raise RatingPersistenceError("nested transactions are not supported")
		self.conn.begin()
		self._in_transaction = True
		try:
			yield self
		except Exception as e:
			self.conn.rollback()
			if isinstance(e, RatingPersistenceError):
				raise
			raise RatingPersistenceError(f"{type(e).__name__}: {e}") from e
		else:
			self.conn.commit()
		finally:
			self._in_transaction = False

	# ---- athletes ----
	def _athlete_from_row(self, row: Tuple[Any, ...]) -> Athlete:
		a = Athlete(**dict(zip(ATHLETE_COLUMNS, row)))
		a.is_favorite = bool(a.is_favorite)
		return a

	def get_athlete(self, athlete_id: int) -> Optional[Athlete]:
		row = self.conn.execute(
			f"""--sql
			SELECT {", ".join(ATHLETE_COLUMNS)} FROM athletes WHERE id = ?
			""",
			[athlete_id],
		).fetchone()
		return self._athlete_from_row(row) if row else None

	def current_ratings(self, athlete_ids: Iterable[int]) -> Dict[int, Tuple[float, float]]:
		"""Current (elo, glicko_rating) for each known athlete id."""
		ids = sorted(set(athlete_ids))
		if not ids:
			return {}
		rows = self.conn.execute(
			f"""--sql
			SELECT id, elo, glicko_rating FROM athletes WHERE id IN ({", ".join("?" for _ in ids)})
			""",
			ids,
		).fetchall()
		return {r[0]: (r[1], r[2]) for r in rows}

	def find_athletes(self, first_name: str, last_name: str) -> List[Athlete]:
		rows = self.conn.execute(
			f"""--sql
			SELECT {", ".join(ATHLETE_COLUMNS)} FROM athletes
			WHERE lower(first_name) = lower(?) AND lower(last_name) = lower(?)
			ORDER BY id
			""",
			[first_name, last_name],
		).fetchall()
		return [self._athlete_from_row(r) for r in rows]

	def find_or_create_athlete(self, first_name: str, last_name: str, state: Optional[str] = None) -> Athlete:
		first_name = (first_name or "").strip() or "Unknown"
		last_name = (last_name or "").strip() or "Unknown"
		row = self.conn.execute(
			f"""--sql
			SELECT {", ".join(ATHLETE_COLUMNS)} FROM athletes
			WHERE first_name = ? AND last_name = ? AND state IS NOT DISTINCT FROM ?
			ORDER BY id LIMIT 1
			""",
			[first_name, last_name, state],
		).fetchone()
		if row:
			return self._athlete_from_row(row)
		new_id = self.conn.execute(
			"""--sql
			INSERT INTO athletes (first_name, last_name, state, is_favorite)
			VALUES (?, ?, ?, FALSE)
			RETURNING id
			""",
			[first_name, last_name, state],
		).fetchone()[0]
		logger.debug("created athlete %s %s (%s) id=%s", first_name, last_name, state, new_id)
		return Athlete(id=new_id, first_name=first_name, last_name=last_name, state=state)

	def set_favorite(self, athlete_id: int, favorite: bool = True) -> bool:
		if self.get_athlete(athlete_id) is None:
			return False
		self.conn.execute(
			"""--sql
			UPDATE athletes SET is_favorite = ?, updated_at = now() WHERE id = ?
			""",
			[favorite, athlete_id],
		)
		return True

	# ---- season ratings ----
	def _season_from_row(self, row: Tuple[Any, ...]) -> SeasonRating:
		return SeasonRating(**dict(zip(SEASON_COLUMNS, row)))

	def get_season_rating(self, season_rating_id: int) -> Optional[SeasonRating]:
		row = self.conn.execute(
			f"""--sql
			SELECT {", ".join(SEASON_COLUMNS)} FROM season_ratings WHERE id = ?
			""",
			[season_rating_id],
		).fetchone()
		return self._season_from_row(row) if row else None

	def find_or_create_season_rating(
		self,
		athlete_id: int,
		year: int,
		weight_class: str,
		team: Optional[str] = None,
	) -> SeasonRating:
		row = self.conn.execute(
			f"""--sql
			SELECT {", ".join(SEASON_COLUMNS)} FROM season_ratings
			WHERE athlete_id = ? AND year = ? AND weight_class = ?
			ORDER BY id LIMIT 1
			""",
			[athlete_id, year, weight_class],
		).fetchone()
		if row:
			return self._season_from_row(row)
		sr = SeasonRating(
			id=0,
			athlete_id=athlete_id,
			year=year,
			weight_class=weight_class,
			team=team or "Unknown",
			final_elo=config.DEFAULT_ELO,
			final_glicko_rating=config.DEFAULT_GLICKO_RATING,
			final_glicko_rd=config.DEFAULT_GLICKO_RD,
			final_glicko_volatility=config.DEFAULT_GLICKO_VOLATILITY,
		)
		sr.id = self.conn.execute(
			"""--sql
			INSERT INTO season_ratings (athlete_id, year, weight_class, team, final_elo, final_glicko_rating,
										final_glicko_rd, final_glicko_volatility, wins, losses, total_matches)
			VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, 0, 0)
			RETURNING id
			""",
			[athlete_id, year, weight_class, sr.team, sr.final_elo, sr.final_glicko_rating,
			 sr.final_glicko_rd, sr.final_glicko_volatility],
		).fetchone()[0]
		return sr

	def season_ratings_for(self, athlete_id: int) -> List[SeasonRating]:
		rows = self.conn.execute(
			f"""--sql
			SELECT {", ".join(SEASON_COLUMNS)} FROM season_ratings
			WHERE athlete_id = ? ORDER BY year, weight_class
			""",
			[athlete_id],
		).fetchall()
		return [self._season_from_row(r) for r in rows]

	# ---- audits ----
	def audit_hash_exists(self, match_hash: str) -> bool:
		try:
			row = self.conn.execute(
				"""--sql
				SELECT 1 FROM ranking_match_audits WHERE match_hash = ? LIMIT 1
				""",
				[match_hash],
			).fetchone()
		except duckdb.Error as e:
			raise RatingPersistenceError(f"audit lookup failed: {e}") from e
		return row is not None

	def _insert_audit(self, a: RankingMatchAudit) -> None:
		cols = AUDIT_COLUMNS + ["elo_change", "glicko_rating_change", "glicko_rd_change", "glicko_volatility_change"]
		vals = [getattr(a, c) for c in AUDIT_COLUMNS] + [
			a.elo_change, a.glicko_rating_change, a.glicko_rd_change, a.glicko_volatility_change,
		]
		self.conn.execute(
			f"""--sql
			INSERT INTO ranking_match_audits ({", ".join(cols)})
			VALUES ({", ".join("?" for _ in cols)})
			""",
			vals,
		)

	def _apply_season(
		self,
		sr: SeasonRating,
		won: bool,
		elo_after: float,
		glicko_after: GlickoState,
		match_date: Optional[date],
	) -> None:
		if won:
			sr.wins += 1
		else:
			sr.losses += 1
		sr.total_matches += 1
		sr.final_elo = elo_after
		sr.final_glicko_rating = glicko_after.rating
		sr.final_glicko_rd = glicko_after.rd
		sr.final_glicko_volatility = glicko_after.volatility
		if _max_opt(sr.peak_elo, elo_after):
			sr.peak_elo, sr.peak_elo_date = elo_after, match_date
		if _min_opt(sr.lowest_elo, elo_after):
			sr.lowest_elo, sr.lowest_elo_date = elo_after, match_date
		if _max_opt(sr.peak_glicko_rating, glicko_after.rating):
			sr.peak_glicko_rating, sr.peak_glicko_date = glicko_after.rating, match_date
		if match_date is not None:
			if sr.first_match_date is None or match_date < sr.first_match_date:
				sr.first_match_date = match_date
			if sr.last_match_date is None or match_date > sr.last_match_date:
				sr.last_match_date = match_date
		self.conn.execute(
			"""--sql
			UPDATE season_ratings SET
				final_elo = ?, final_glicko_rating = ?, final_glicko_rd = ?, final_glicko_volatility = ?,
				wins = ?, losses = ?, total_matches = ?,
				peak_elo = ?, peak_elo_date = ?, lowest_elo = ?, lowest_elo_date = ?,
				peak_glicko_rating = ?, peak_glicko_date = ?,
				first_match_date = ?, last_match_date = ?,
				updated_at = now()
			WHERE id = ?
			""",
			[sr.final_elo, sr.final_glicko_rating, sr.final_glicko_rd, sr.final_glicko_volatility,
			 sr.wins, sr.losses, sr.total_matches,
			 sr.peak_elo, sr.peak_elo_date, sr.lowest_elo, sr.lowest_elo_date,
			 sr.peak_glicko_rating, sr.peak_glicko_date,
			 sr.first_match_date, sr.last_match_date,
			 sr.id],
		)

	def _apply_athlete(self, athlete: Athlete, elo_after: float, glicko_after: GlickoState, match_date: Optional[date]) -> None:
		athlete.elo = elo_after
		athlete.glicko_rating = glicko_after.rating
		athlete.glicko_rd = glicko_after.rd
		athlete.glicko_volatility = glicko_after.volatility
		self.conn.execute(
			"""--sql
			UPDATE athletes SET elo = ?, glicko_rating = ?, glicko_rd = ?, glicko_volatility = ?,
				last_match_date = CASE
					WHEN ?::DATE IS NULL THEN last_match_date
					WHEN last_match_date IS NULL OR last_match_date < ?::DATE THEN ?::DATE
					ELSE last_match_date END,
				updated_at = now()
			WHERE id = ?
			""",
			[elo_after, glicko_after.rating, glicko_after.rd, glicko_after.volatility,
			 match_date, match_date, match_date, athlete.id],
		)

	def record_match(
		self,
		match_hash: str,
		record: MatchRecord,
		winner: Athlete,
		loser: Athlete,
		winner_season: SeasonRating,
		loser_season: SeasonRating,
		elo: EloUpdate,
		glicko: GlickoUpdate,
		event_name: Optional[str] = None,
	) -> Tuple[RankingMatchAudit, RankingMatchAudit]:
		"""Write both audits and apply both rating updates. Call inside transaction()."""
		if not self._in_transaction:
			raise RatingPersistenceError("record_match must run inside transaction()")
		if winner.id == loser.id:
			raise RatingPersistenceError(f"winner and loser resolve to the same athlete ({winner.id})")

		d = record.event_date
		common = dict(
			match_hash=match_hash,
			result_type=record.result.type,
			weight_class=record.weight_class,
			match_date=d,
			event_name=event_name,
			tournament_round=record.tournament_round,
			raw_text=record.raw_text,
		)
		win_audit = RankingMatchAudit(
			athlete_id=winner.id,
			opponent_id=loser.id,
			season_rating_id=winner_season.id,
			match_result="win",
			elo_before=elo.winner_before,
			elo_after=elo.winner_after,
			glicko_rating_before=glicko.winner_before.rating,
			glicko_rating_after=glicko.winner_after.rating,
			glicko_rd_before=glicko.winner_before.rd,
			glicko_rd_after=glicko.winner_after.rd,
			glicko_volatility_before=glicko.winner_before.volatility,
			glicko_volatility_after=glicko.winner_after.volatility,
			wins_before=winner_season.wins,
			losses_before=winner_season.losses,
			wins_after=winner_season.wins + 1,
			losses_after=winner_season.losses,
			opponent_elo_before=elo.loser_before,
			opponent_elo_after=elo.loser_after,
			opponent_glicko_before=glicko.loser_before.rating,
			opponent_glicko_rd_before=glicko.loser_before.rd,
			**common,
		)
		loss_audit = RankingMatchAudit(
			athlete_id=loser.id,
			opponent_id=winner.id,
			season_rating_id=loser_season.id,
			match_result="loss",
			elo_before=elo.loser_before,
			elo_after=elo.loser_after,
			glicko_rating_before=glicko.loser_before.rating,
			glicko_rating_after=glicko.loser_after.rating,
			glicko_rd_before=glicko.loser_before.rd,
			glicko_rd_after=glicko.loser_after.rd,
			glicko_volatility_before=glicko.loser_before.volatility,
			glicko_volatility_after=glicko.loser_after.volatility,
			wins_before=loser_season.wins,
			losses_before=loser_season.losses,
			wins_after=loser_season.wins,
			losses_after=loser_season.losses + 1,
			opponent_elo_before=elo.winner_before,
			opponent_elo_after=elo.winner_after,
			opponent_glicko_before=glicko.winner_before.rating,
			opponent_glicko_rd_before=glicko.winner_before.rd,
			**common,
		)
		self._insert_audit(win_audit)
		self._insert_audit(loss_audit)
		self._apply_season(winner_season, True, elo.winner_after, glicko.winner_after, d)
		self._apply_season(loser_season, False, elo.loser_after, glicko.loser_after, d)
		self._apply_athlete(winner, elo.winner_after, glicko.winner_after, d)
		self._apply_athlete(loser, elo.loser_after, glicko.loser_after, d)
		return win_audit, loss_audit

	def audit_trail(self, athlete_id: int, year: Optional[int] = None) -> List[RankingMatchAudit]:
		sql = f"""--sql
			SELECT {", ".join("a." + c for c in AUDIT_COLUMNS)}
			FROM ranking_match_audits a
			JOIN season_ratings s ON s.id = a.season_rating_id
			WHERE a.athlete_id = ?
		"""
		params: List[Any] = [athlete_id]
		if year is not None:
			sql += " AND s.year = ?"
			params.append(year)
		sql += " ORDER BY a.match_date NULLS LAST, a.processed_at"
		rows = self.conn.execute(sql, params).fetchall()
		return [RankingMatchAudit(**dict(zip(AUDIT_COLUMNS, r))) for r in rows]

	def counts(self) -> Dict[str, int]:
		out = {}
		for table in ("athletes", "season_ratings", "ranking_match_audits"):
			out[table] = self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
		return out
