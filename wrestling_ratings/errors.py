"""Error taxonomy for the ingest pipeline."""

from __future__ import annotations


class RatingsPipelineError(Exception):
    """Base exception for pipeline errors."""
    pass


class ParseError(RatingsPipelineError):
    """Row text could not be turned into a valid match; the row is dropped."""
    pass


class DuplicateMatch(RatingsPipelineError):
    """Match hash already seen; informational only, never fatal."""
    pass


class NavigationError(RatingsPipelineError):
    """Navigation collaborator failed or timed out fetching events or rows."""
    pass


class RatingPersistenceError(RatingsPipelineError):
    """Writing one match's audits and rating updates failed; the match is rolled back."""
    pass


class StateCorruption(RatingsPipelineError):
    """Crawl state file unreadable or invalid; a fresh state is started."""
    pass


class NavigationTimeout(NavigationError):
    """A navigator call did not return in time; the navigator thread is still busy with it."""
    pass
