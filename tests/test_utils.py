"""Test utilities and helpers"""

import pytest

from trackfetch.utils import (
    UNKNOWN_COMPONENT,
    format_duration,
    parse_catalog_link,
    parse_duration,
    portable_name,
    sanitize_filename,
)


class TestHelpers:
    """Test helper functions"""

    def test_sanitize_filename(self):
        """Test filename sanitization keeps unicode, replaces separators"""
        assert sanitize_filename("Sigur Rós") == "Sigur Rós"
        assert "/" not in sanitize_filename("AC/DC")
        assert sanitize_filename("  Queen  ") == "Queen"

    def test_sanitize_filename_empty(self):
        """Test names that sanitize to nothing"""
        assert sanitize_filename("   ") == UNKNOWN_COMPONENT

    def test_portable_name(self):
        """Test reduction to [A-Za-z0-9_-]"""
        assert portable_name("Beyoncé") == "Beyonce"
        assert portable_name("AC/DC: Live!") == "ACDC_Live"
        assert portable_name("Queen - Bohemian Rhapsody") == "Queen_-_Bohemian_Rhapsody"
        assert portable_name("???") == UNKNOWN_COMPONENT

    def test_portable_name_charset(self):
        """Transliterated output only uses the portable charset"""
        name = portable_name("Motörhead — Ace of Spades (東京 Remix) «2024»")
        assert name
        assert all(ch.isascii() and (ch.isalnum() or ch in "_-") for ch in name)

    def test_format_duration(self):
        """Test duration formatting"""
        assert format_duration(90) == "1:30"
        assert format_duration(3661) == "1:01:01"
        assert format_duration(0) == "0:00"

    def test_parse_duration(self):
        """Test duration string parsing"""
        assert parse_duration("3:45") == 225
        assert parse_duration("1:02:30") == 3750
        with pytest.raises(ValueError):
            parse_duration("invalid")


class TestParseCatalogLink:
    """Test catalog link parsing"""

    def test_url(self):
        assert parse_catalog_link("https://open.spotify.com/album/4aawyAB9vmqN3uQ7FjRGTy") == (
            "album", "4aawyAB9vmqN3uQ7FjRGTy"
        )

    def test_intl_url_with_query(self):
        link = "https://open.spotify.com/intl-it/playlist/37i9dQZF1DXcBWIGoYBM5M?si=abc123"
        assert parse_catalog_link(link) == ("playlist", "37i9dQZF1DXcBWIGoYBM5M")

    def test_uri(self):
        assert parse_catalog_link("spotify:playlist:37i9dQZF1DXcBWIGoYBM5M") == (
            "playlist", "37i9dQZF1DXcBWIGoYBM5M"
        )

    def test_bare_id(self):
        assert parse_catalog_link("  37i9dQZF1DXcBWIGoYBM5M ") == (None, "37i9dQZF1DXcBWIGoYBM5M")

    @pytest.mark.parametrize("link", [
        "",
        "not a link",
        "https://example.com/album/4aawyAB9vmqN3uQ7FjRGTy",
        "spotify:album:",
    ])
    def test_invalid(self, link):
        with pytest.raises(ValueError):
            parse_catalog_link(link)
