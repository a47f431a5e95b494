"""Test audio source backends"""

import threading
import time
from unittest.mock import MagicMock, Mock, patch

import pytest

from trackfetch.core.exceptions import DownloadError, DownloadErrorKind, MatchError, MatchErrorKind
from trackfetch.source import available_sources, create_audio_source
from trackfetch.source.models import CandidateSummary
from trackfetch.source.youtube import YouTubeSearchSource
from trackfetch.source.ytmusic import YTMusicSource


def ytmusic_result(video_id, title="Bohemian Rhapsody", artist="Queen", duration="5:54", result_type="song"):
    return {
        "videoId": video_id,
        "title": title,
        "artists": [{"name": artist, "id": "x"}] if artist else [],
        "duration": duration,
        "resultType": result_type,
    }


class TestCandidateSummary:

    def test_from_ytmusic_song(self):
        candidate = CandidateSummary.from_ytmusic_result(ytmusic_result("abc"))

        assert candidate.source_id == "abc"
        assert candidate.duration_ms == 354000
        assert candidate.url == "https://music.youtube.com/watch?v=abc"
        assert candidate.result_type == "song"

    def test_from_ytmusic_video_uses_duration_seconds(self):
        raw = ytmusic_result("vid", result_type="video", duration=None)
        raw["duration_seconds"] = 354

        candidate = CandidateSummary.from_ytmusic_result(raw)
        assert candidate.duration_ms == 354000
        assert candidate.url == "https://www.youtube.com/watch?v=vid"

    @pytest.mark.parametrize("duration,expected_ms", [
        ("1:02:30", 3750000),
        ("3:xx", 0),
        ("", 0),
    ])
    def test_from_ytmusic_duration_formats(self, duration, expected_ms):
        candidate = CandidateSummary.from_ytmusic_result(ytmusic_result("abc", duration=duration))
        assert candidate.duration_ms == expected_ms

    def test_from_ytdlp_entry(self):
        candidate = CandidateSummary.from_ytdlp_entry(
            {"id": "v1", "title": "Queen - Bohemian Rhapsody", "channel": "Queen Official", "duration": 354.0}
        )
        assert candidate.duration_ms == 354000
        assert candidate.uploader == "Queen Official"
        assert candidate.url == "https://www.youtube.com/watch?v=v1"


class TestRegistry:

    def test_builtin_sources(self):
        assert available_sources() == ["youtube", "ytmusic"]

    def test_unknown_source(self):
        with pytest.raises(ValueError, match="Unknown audio source"):
            create_audio_source("soundcloud")

    def test_create_with_options(self):
        source = create_audio_source("ytmusic", client=Mock(), max_retries=1)
        assert isinstance(source, YTMusicSource)
        assert source.max_retries == 1


class TestYTMusicSource:

    def test_songs_then_videos_deduplicated(self):
        client = Mock()

        def search(query, filter, **kwargs):
            if filter == "songs":
                return [ytmusic_result("s1"), ytmusic_result("s2")]
            return [ytmusic_result("s2", result_type="video"), ytmusic_result("v1", result_type="video")]

        client.search.side_effect = search
        results = YTMusicSource(client=client).search("Queen - Bohemian Rhapsody")

        assert [r.source_id for r in results] == ["s1", "s2", "v1"]
        assert results[1].result_type == "song"

    def test_skips_incomplete_results(self):
        client = Mock()
        client.search.side_effect = lambda query, filter, **kwargs: [
            ytmusic_result(None),
            ytmusic_result("no_artist", artist=None),
            ytmusic_result("no_duration", duration=None),
            ytmusic_result("ok"),
        ] if filter == "songs" else []

        results = YTMusicSource(client=client).search("q")
        assert [r.source_id for r in results] == ["ok"]

    def test_retries_then_succeeds(self):
        client = Mock()
        client.search.side_effect = [Exception("HTTP 500"), [ytmusic_result("s1")], []]

        results = YTMusicSource(client=client, max_retries=3, retry_delay_base=0).search("q")

        assert [r.source_id for r in results] == ["s1"]
        assert client.search.call_count == 3

    def test_search_failed(self):
        client = Mock()
        client.search.side_effect = Exception("429 Too Many Requests")

        source = YTMusicSource(client=client, max_retries=2, retry_delay_base=0)
        with pytest.raises(MatchError) as exc_info:
            source.search("q")

        assert exc_info.value.kind is MatchErrorKind.SEARCH_FAILED
        assert client.search.call_count == 2

    def test_cancel_ends_backoff_wait(self):
        client = Mock()
        client.search.side_effect = Exception("HTTP 500")
        cancel_event = threading.Event()
        threading.Timer(0.2, cancel_event.set).start()

        source = YTMusicSource(client=client, max_retries=5, retry_delay_base=30)
        started = time.monotonic()
        with pytest.raises(DownloadError) as exc_info:
            source.search("q", cancel_event=cancel_event)

        assert time.monotonic() - started < 10
        assert exc_info.value.kind is DownloadErrorKind.CANCELLED
        assert client.search.call_count == 1

    def test_unset_cancel_event_still_retries(self):
        client = Mock()
        client.search.side_effect = [Exception("HTTP 500"), [ytmusic_result("s1")], []]

        results = YTMusicSource(client=client, max_retries=3, retry_delay_base=0).search(
            "q", cancel_event=threading.Event()
        )
        assert [r.source_id for r in results] == ["s1"]

    def test_url_for(self):
        assert YTMusicSource(client=Mock()).url_for("abc") == "https://music.youtube.com/watch?v=abc"


class TestYouTubeSearchSource:

    @patch("trackfetch.source.youtube.YoutubeDL")
    def test_search(self, mock_ydl_cls):
        ydl = MagicMock()
        ydl.extract_info.return_value = {"entries": [
            {"id": "v1", "title": "Bohemian Rhapsody", "channel": "Queen", "duration": 354},
            {"id": "v2", "title": "Live stream", "channel": "Queen", "duration": None},
            None,
        ]}
        mock_ydl_cls.return_value.__enter__.return_value = ydl

        results = YouTubeSearchSource(limit=5, cookie_file="/tmp/cookies.txt").search("Queen - Bohemian Rhapsody")

        assert [r.source_id for r in results] == ["v1"]
        ydl.extract_info.assert_called_once_with("ytsearch5:Queen - Bohemian Rhapsody", download=False)
        opts = mock_ydl_cls.call_args.args[0]
        assert opts["cookiefile"] == "/tmp/cookies.txt"
        assert opts["extract_flat"] == "in_playlist"

    @patch("trackfetch.source.youtube.YoutubeDL")
    def test_search_failed(self, mock_ydl_cls):
        mock_ydl_cls.return_value.__enter__.return_value.extract_info.side_effect = Exception("network down")

        with pytest.raises(MatchError) as exc_info:
            YouTubeSearchSource(max_retries=1).search("q")
        assert exc_info.value.kind_label == "MatchError.SearchFailed"
