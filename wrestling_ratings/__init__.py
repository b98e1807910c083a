"""Resumable TrackWrestling match ingest with Elo and Glicko ratings."""

__version__ = "0.1.0"
