"""Candidate matching for trackfetch."""

from trackfetch.match.engine import MatchEngine, score_candidate

__all__ = ["MatchEngine", "score_candidate"]
