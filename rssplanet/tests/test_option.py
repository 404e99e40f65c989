"""
Tests for content options and legacy client detection.
"""

import pytest

from rssplanet.client_policy import LegacyClientPolicy
from rssplanet.option import (
    Option,
    fetch_auto_option,
    get_option,
    option_for_content_type,
    option_for_link,
)
from rssplanet.url_validator import SSRFError


class TestGetOption:
    @pytest.mark.parametrize("raw,expected", [
        ("feed", Option.FEED),
        ("FEED", Option.FEED),
        ("Html", Option.HTML),
        ("asset", Option.ASSET),
        ("image", Option.IMAGE),
        ("auto", Option.AUTO),
        ("bogus", Option.AUTO),
        ("", Option.AUTO),
        (None, Option.AUTO),
    ])
    def test_lookup(self, raw, expected):
        assert get_option(raw) == expected


class TestOptionForContentType:
    @pytest.mark.parametrize("content_type,expected", [
        ("application/rss+xml; charset=utf-8", Option.FEED),
        ("application/atom+xml", Option.FEED),
        ("text/xml", Option.FEED),
        ("text/html; charset=UTF-8", Option.HTML),
        ("image/png", Option.IMAGE),
        ("audio/mpeg", Option.ASSET),
        ("application/octet-stream", Option.ASSET),
        ("", Option.ASSET),
        (None, Option.ASSET),
    ])
    def test_mapping(self, content_type, expected):
        assert option_for_content_type(content_type) == expected


class TestOptionForLink:
    """Tests for inferring options from Atom link attributes."""

    def test_html_link(self):
        assert option_for_link("text/html") == Option.HTML

    def test_xhtml_resolves_to_feed(self):
        """Later matches win, so xhtml+xml is treated as XML."""
        assert option_for_link("application/xhtml+xml") == Option.FEED

    def test_audio_and_image(self):
        assert option_for_link("audio/mpeg") == Option.ASSET
        assert option_for_link("image/jpeg") == Option.IMAGE

    def test_unknown_type_is_auto(self):
        assert option_for_link(None) == Option.AUTO
        assert option_for_link("video/mp4") == Option.AUTO

    def test_self_rel_is_feed(self):
        assert option_for_link("text/html", "self") == Option.FEED

    def test_self_rel_can_be_ignored(self):
        assert option_for_link("text/html", "self", honor_self=False) == Option.HTML


class TestFetchAutoOption:
    """Tests for the HEAD probe."""

    @pytest.mark.asyncio
    async def test_uses_content_type(self, stub_fetcher):
        stub_fetcher.add("https://example.com/feed", content_type="application/rss+xml")
        assert await fetch_auto_option("https://example.com/feed", stub_fetcher) == Option.FEED
        assert stub_fetcher.requested() == ["https://example.com/feed"]
        assert stub_fetcher.requests[0][0] == "HEAD"

    @pytest.mark.asyncio
    async def test_error_status_is_none(self, stub_fetcher):
        assert await fetch_auto_option("https://example.com/missing", stub_fetcher) is None

    @pytest.mark.asyncio
    async def test_unreachable_is_none(self, stub_fetcher):
        stub_fetcher.unreachable.add("https://down.example/")
        assert await fetch_auto_option("https://down.example/", stub_fetcher) is None

    @pytest.mark.asyncio
    async def test_blocked_target_raises(self, stub_fetcher):
        """A target refused by the URL validator is a bad request, not an unknown type."""
        stub_fetcher.blocked.add("http://10.0.0.1/")
        with pytest.raises(SSRFError):
            await fetch_auto_option("http://10.0.0.1/", stub_fetcher)


class TestLegacyClientPolicy:
    """Tests for deciding which clients get the reduced treatment."""

    @pytest.mark.parametrize("user_agent", [
        "iTunes/10.7 (Macintosh; OS X 10.6.8) AppleWebKit/534.57.7",
        "iTunes/10.7",
        "iTunes/1.2",
        "NetNewsWire/3.2.15 (Mac OS X; http://netnewswire.com/)",
        None,
        "",
    ])
    def test_legacy_clients(self, user_agent):
        assert LegacyClientPolicy().is_legacy_user_agent(user_agent) is True

    @pytest.mark.parametrize("user_agent", [
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/605.1.15",
        "NetNewsWire/6.1 (Mac OS X; https://netnewswire.com/)",
        "iTunes/12.0",
        "iTunes/11.4",
    ])
    def test_modern_clients(self, user_agent):
        assert LegacyClientPolicy().is_legacy_user_agent(user_agent) is False

    def test_custom_signatures(self):
        policy = LegacyClientPolicy(signatures=["OldReader/"])
        assert policy.is_legacy_user_agent("OldReader/1.0") is True
        assert policy.is_legacy_user_agent("iTunes/10.7") is False

    def test_max_entries(self):
        policy = LegacyClientPolicy(legacy_max_entries=5, modern_max_entries=50)
        assert policy.max_entries(True) == 5
        assert policy.max_entries(False) == 50
