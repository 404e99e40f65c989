"""
Tests for HTML rewriting.
"""

import pytest
from bs4 import BeautifulSoup

from rssplanet.html_rewriter import HTMLRewriter, choose_srcset_candidate
from rssplanet.option import Option


@pytest.fixture
def rewriter(codec):
    return HTMLRewriter(codec, page_url="https://example.com/posts/1")


def parse(html):
    return BeautifulSoup(html, "html.parser")


class TestChooseSrcsetCandidate:
    def test_largest_within_limit(self):
        srcset = "a.jpg 320w, b.jpg 800w, c.jpg 1600w"
        assert choose_srcset_candidate(srcset) == "b.jpg"

    def test_exact_limit_allowed(self):
        assert choose_srcset_candidate("a.jpg 500w, b.jpg 1000w") == "b.jpg"

    def test_falls_back_to_first(self):
        """Density descriptors or oversized widths use the first candidate."""
        assert choose_srcset_candidate("a.jpg 1x, b.jpg 2x") == "a.jpg"
        assert choose_srcset_candidate("big.jpg 2000w, bigger.jpg 3000w") == "big.jpg"

    def test_empty(self):
        assert choose_srcset_candidate("") is None
        assert choose_srcset_candidate(" , ") is None


class TestHTMLRewriter:
    """Tests for proxying page resources."""

    def test_removes_scripts(self, rewriter):
        html = "<p>Hi</p><script>alert(1)</script><script src='https://x.example/a.js'></script>"
        result = rewriter.rewrite(html)
        assert "<script" not in result
        assert "alert" not in result
        assert "<p>Hi</p>" in result

    def test_unwraps_noscript(self, rewriter):
        result = rewriter.rewrite("<noscript><p>Fallback</p></noscript>")
        assert "<noscript" not in result
        assert "<p>Fallback</p>" in result

    def test_strips_event_handlers(self, rewriter):
        result = parse(rewriter.rewrite('<div onclick="x()" onLoad="y()" class="c">a</div>'))
        div = result.find("div")
        assert div.attrs == {"class": ["c"]}

    def test_rewrites_links_as_auto(self, rewriter, codec):
        result = parse(rewriter.rewrite('<a href="https://other.example/page">x</a>'))
        expected = codec.encode_inline("https://other.example/page", Option.AUTO)
        assert result.find("a")["href"] == expected

    def test_resolves_relative_links(self, rewriter, codec):
        """Relative URLs are resolved against the page before encoding."""
        result = parse(rewriter.rewrite('<a href="/about">x</a>'))
        expected = codec.encode_inline("https://example.com/about", Option.AUTO)
        assert result.find("a")["href"] == expected

    def test_leaves_non_http_links(self, rewriter):
        result = parse(rewriter.rewrite('<a href="mailto:a@example.com">x</a><a href="#top">y</a>'))
        hrefs = [a["href"] for a in result.find_all("a")]
        assert hrefs[0] == "mailto:a@example.com"
        # Fragments resolve to the page itself
        assert "/proxy/" in hrefs[1]

    def test_rewrites_images(self, rewriter, codec):
        result = parse(rewriter.rewrite('<img src="https://cdn.example/a.png">'))
        assert result.find("img")["src"] == codec.encode_inline("https://cdn.example/a.png", Option.IMAGE)

    def test_rewrites_media_sources_as_assets(self, rewriter, codec):
        html = (
            '<video src="https://cdn.example/v.mp4"></video>'
            '<audio><source src="https://cdn.example/a.mp3"></audio>'
        )
        result = parse(rewriter.rewrite(html))
        assert result.find("video")["src"] == codec.encode_inline("https://cdn.example/v.mp4", Option.ASSET)
        assert result.find("source")["src"] == codec.encode_inline("https://cdn.example/a.mp3", Option.ASSET)

    def test_rewrites_stylesheets_only(self, rewriter, codec):
        html = (
            '<link rel="stylesheet" href="https://cdn.example/s.css">'
            '<link rel="icon" href="https://cdn.example/favicon.ico">'
        )
        links = parse(rewriter.rewrite(html)).find_all("link")
        assert links[0]["href"] == codec.encode_inline("https://cdn.example/s.css", Option.ASSET)
        assert links[1]["href"] == "https://cdn.example/favicon.ico"

    def test_srcset_collapsed_to_src(self, rewriter, codec):
        """The chosen srcset candidate replaces src and srcset/sizes go away."""
        html = (
            '<img src="https://cdn.example/small.jpg" '
            'srcset="https://cdn.example/m.jpg 640w, https://cdn.example/l.jpg 1920w" '
            'sizes="100vw">'
        )
        img = parse(rewriter.rewrite(html)).find("img")
        assert img["src"] == codec.encode_inline("https://cdn.example/m.jpg", Option.IMAGE)
        assert not img.has_attr("srcset")
        assert not img.has_attr("sizes")

    def test_relative_srcset(self, rewriter, codec):
        img = parse(rewriter.rewrite('<img srcset="/img/a.jpg 400w">')).find("img")
        assert img["src"] == codec.encode_inline("https://example.com/img/a.jpg", Option.IMAGE)

    def test_fragment_without_page_url(self, codec):
        """Without a page URL, relative references are left alone."""
        rewriter = HTMLRewriter(codec)
        result = parse(rewriter.rewrite('<a href="/about">x</a><img src="https://cdn.example/a.png">'))
        assert result.find("a")["href"] == "/about"
        assert "/proxy/" in result.find("img")["src"]
