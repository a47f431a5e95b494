"""
Download module for trackfetch.

Components:
    - MediaExtractor: yt-dlp process wrapper
    - Tagger / ArtworkFetcher: metadata and cover art
    - TrackJob / JobRegistry: per-track state machine
    - EventAggregator: single-consumer progress events
    - DownloadOrchestrator: bounded worker pool driving the jobs
"""

from trackfetch.download.artwork import ArtworkFetcher, fit_artwork
from trackfetch.download.events import (
    EventAggregator,
    JobCompleted,
    JobEvent,
    JobFailed,
    JobProgress,
    JobStarted,
)
from trackfetch.download.extractor import MediaExtractor
from trackfetch.download.jobs import InvalidTransition, JobRegistry, JobState, TrackJob
from trackfetch.download.orchestrator import DownloadOrchestrator
from trackfetch.download.tagger import Tagger

__all__ = [
    "ArtworkFetcher",
    "fit_artwork",
    "EventAggregator",
    "JobEvent",
    "JobStarted",
    "JobProgress",
    "JobCompleted",
    "JobFailed",
    "MediaExtractor",
    "InvalidTransition",
    "JobRegistry",
    "JobState",
    "TrackJob",
    "DownloadOrchestrator",
    "Tagger",
]
