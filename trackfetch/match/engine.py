"""
Match engine: TrackDescriptor -> best CandidateMatch from an audio source.

Precision over completeness: a track with no convincing candidate fails
with MatchError rather than downloading the wrong audio.

Scoring (per candidate, in listed order):
    1. Duration window: |candidate - target| > DURATION_TOLERANCE_MS is a
       hard exclusion, whatever the text similarity. Unknown durations are
       excluded too.
    2. Base score (0-100): TITLE_WEIGHT * title similarity
                         + ARTIST_WEIGHT * artist similarity
       using rapidfuzz token_set_ratio on normalized text. The artist score
       is the best of any catalog artist against the uploader or against
       the candidate title ("Artist - Title" uploads).
    3. Duration drift: -DURATION_PENALTY_PER_SECOND per second off target.
    4. Result type: +RESULT_TYPE_BONUS for official YouTube Music songs.
    5. Negative words: -NEGATIVE_WORD_PENALTY for each version marker
       (live, remix, karaoke...) in the candidate title that neither the
       catalog title nor the album contains.

Selection:
    Highest score wins; ties go to the earlier-listed result. Below
    MIN_ACCEPT_SCORE the track fails with NO_ACCEPTABLE_CANDIDATE.
    Candidates within CLOSE_MATCH_THRESHOLD of the winner are written to
    the close-alternatives review log.

Usage:
    engine = MatchEngine(create_audio_source("ytmusic"))
    match = engine.match(descriptor)
"""

import re
import threading

from rapidfuzz import fuzz

from trackfetch.catalog.models import TrackDescriptor
from trackfetch.core.exceptions import MatchError, MatchErrorKind
from trackfetch.core.fingerprint import normalize_component
from trackfetch.core.logger import get_logger, log_match_close_alternatives
from trackfetch.source.base import AudioSource
from trackfetch.source.models import CandidateMatch, CandidateSummary
from trackfetch.utils import format_duration

logger = get_logger(__name__)


# =============================================================================
# DURATION AND SIMILARITY THRESHOLDS
# =============================================================================

DURATION_TOLERANCE_MS = 10_000

DURATION_PENALTY_PER_SECOND = 1.0

MIN_ACCEPT_SCORE = 70.0

TITLE_WEIGHT = 0.65
ARTIST_WEIGHT = 0.35

RESULT_TYPE_BONUS = {
    "song": 5.0,
    "video": 0.0,
}

NEGATIVE_WORD_PENALTY = 15.0

CLOSE_MATCH_THRESHOLD = 5.0

# Markers of an alternative version of the recording
NEGATIVE_WORDS = (
    "live",
    "cover",
    "remix",
    "karaoke",
    "instrumental",
    "acoustic",
    "sped up",
    "slowed",
    "reverb",
    "nightcore",
    "8d audio",
    "bass boosted",
    "acapella",
    "concert",
)

_NEGATIVE_WORD_PATTERNS = {
    word: re.compile(rf"\b{re.escape(word)}\b") for word in NEGATIVE_WORDS
}


def _normalize_text(text: str) -> str:
    """
    Normalize text for similarity: drop bracketed parts (version info),
    fold case and diacritics, strip punctuation.
    """
    text = re.sub(r"\s*[\(\[\{].*?[\)\]\}]\s*", " ", text)
    text = normalize_component(text)
    text = re.sub(r"[^\w\s]", "", text)
    return " ".join(text.split())


def find_negative_words(reference: str, candidate_title: str) -> list[str]:
    """
    Version markers present in candidate_title but absent from reference.

    Example:
        find_negative_words("Playing God", "Playing God (Acoustic)")
        # ["acoustic"]
    """
    reference_lower = reference.lower()
    candidate_lower = candidate_title.lower()

    return [
        word for word, pattern in _NEGATIVE_WORD_PATTERNS.items()
        if pattern.search(candidate_lower) and not pattern.search(reference_lower)
    ]


def within_duration_window(target_ms: int, candidate_ms: int) -> bool:
    if candidate_ms <= 0:
        return False
    return abs(candidate_ms - target_ms) <= DURATION_TOLERANCE_MS


def score_candidate(descriptor: TrackDescriptor, candidate: CandidateSummary) -> float | None:
    """
    Score one candidate against a descriptor.

    Returns:
        The score, or None when the candidate is outside the duration
        window (excluded, not merely penalized).
    """
    if not within_duration_window(descriptor.duration_ms, candidate.duration_ms):
        return None

    catalog_title = _normalize_text(descriptor.title)
    candidate_title = _normalize_text(candidate.title)
    uploader = _normalize_text(candidate.uploader)

    title_score = fuzz.token_set_ratio(catalog_title, candidate_title)

    artist_score = 0.0
    for artist in descriptor.artists or (descriptor.artist,):
        normalized_artist = _normalize_text(artist)
        if not normalized_artist:
            continue
        artist_score = max(
            artist_score,
            fuzz.token_set_ratio(normalized_artist, uploader) if uploader else 0.0,
            fuzz.token_set_ratio(normalized_artist, candidate_title),
        )

    score = title_score * TITLE_WEIGHT + artist_score * ARTIST_WEIGHT

    drift_seconds = abs(candidate.duration_ms - descriptor.duration_ms) / 1000
    score -= drift_seconds * DURATION_PENALTY_PER_SECOND

    score += RESULT_TYPE_BONUS.get(candidate.result_type, 0.0)

    reference = f"{descriptor.title} {descriptor.album}"
    score -= NEGATIVE_WORD_PENALTY * len(find_negative_words(reference, candidate.title))

    return score


class MatchEngine:
    """
    Matches descriptors against one audio source.

    Thread Safety:
        match() keeps no state between calls and may run concurrently,
        provided the source's search() is thread-safe.
    """

    def __init__(self, source: AudioSource, min_score: float = MIN_ACCEPT_SCORE) -> None:
        self._source = source
        self.min_score = min_score

    def match(self, descriptor: TrackDescriptor, cancel_event: threading.Event | None = None) -> CandidateMatch:
        """
        Search the source and select the best candidate.

        Raises:
            MatchError(SEARCH_FAILED): The source kept failing.
            MatchError(NO_ACCEPTABLE_CANDIDATE): Nothing scored high enough.
            DownloadError(CANCELLED): cancel_event was set during search retries.
        """
        candidates = self._source.search(descriptor.search_query, cancel_event=cancel_event)
        return self.select(descriptor, candidates)

    def select(self, descriptor: TrackDescriptor, candidates: list[CandidateSummary]) -> CandidateMatch:
        """
        Pick the winner among already-fetched candidates.

        Deterministic: identical inputs always give the same winner.
        """
        if not candidates:
            raise MatchError(
                MatchErrorKind.NO_ACCEPTABLE_CANDIDATE,
                f"No search results for: {descriptor.search_query}",
                details={"catalog_id": descriptor.catalog_id, "candidates": 0}
            )

        scored: list[tuple[CandidateSummary, float]] = []
        for candidate in candidates:
            score = score_candidate(descriptor, candidate)
            if score is not None:
                scored.append((candidate, score))

        if not scored:
            raise MatchError(
                MatchErrorKind.NO_ACCEPTABLE_CANDIDATE,
                f"No candidate within {DURATION_TOLERANCE_MS // 1000}s of the catalog duration "
                f"({format_duration(descriptor.duration_ms // 1000)})",
                details={"catalog_id": descriptor.catalog_id, "candidates": len(candidates)}
            )

        best, best_score = scored[0]
        for candidate, score in scored[1:]:
            # Strict comparison keeps the earlier-listed result on ties
            if score > best_score:
                best, best_score = candidate, score

        if best_score < self.min_score:
            raise MatchError(
                MatchErrorKind.NO_ACCEPTABLE_CANDIDATE,
                f"Best score {best_score:.1f} below {self.min_score:.0f} ({best.title})",
                details={
                    "catalog_id": descriptor.catalog_id,
                    "best_score": best_score,
                    "best_url": best.url,
                }
            )

        alternatives = [
            (candidate.title, candidate.url, score)
            for candidate, score in scored
            if candidate is not best
            and score >= self.min_score
            and best_score - score <= CLOSE_MATCH_THRESHOLD
        ]
        if alternatives:
            log_match_close_alternatives(
                logger,
                track_name=descriptor.title,
                artist=descriptor.artist,
                catalog_url=descriptor.catalog_url,
                source_url=best.url,
                source_title=best.title,
                score=best_score,
                alternatives=alternatives,
            )

        logger.debug(f"Matched: {descriptor.search_query} -> {best.url} (score {best_score:.1f})")
        return CandidateMatch.from_summary(best, best_score)
