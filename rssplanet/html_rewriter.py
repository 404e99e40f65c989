"""
HTML rewriting for proxied pages and feed bodies.

Scripts are removed, inline event handlers dropped, and every link, image,
media source and stylesheet is rerouted through the proxy so that the page
renders on clients that cannot speak modern TLS.
"""

import logging

from bs4 import BeautifulSoup

from .codec import Codec, parse_absolute_url
from .option import Option

logger = logging.getLogger(__name__)

SRCSET_MAX_WIDTH = 1000

# (tag names, attribute, option)
URL_ATTRIBUTES: list[tuple[tuple[str, ...], str, Option]] = [
    (("a",), "href", Option.AUTO),
    (("img",), "src", Option.IMAGE),
    (("video", "audio", "source"), "src", Option.ASSET),
]


def choose_srcset_candidate(srcset: str) -> str | None:
    """
    Pick the largest width descriptor not above SRCSET_MAX_WIDTH.

    Falls back to the first candidate when none qualifies.
    """
    candidates: list[tuple[str, int]] = []
    for part in srcset.split(","):
        fields = part.strip().split()
        if not fields:
            continue
        width = 0
        if len(fields) > 1 and fields[1].lower().endswith("w"):
            try:
                width = int(fields[1][:-1])
            except ValueError:
                width = 0
        candidates.append((fields[0], width))

    if not candidates:
        return None
    suitable = [c for c in candidates if 0 < c[1] <= SRCSET_MAX_WIDTH]
    if suitable:
        return max(suitable, key=lambda c: c[1])[0]
    return candidates[0][0]


class HTMLRewriter:
    def __init__(self, codec: Codec, page_url: str | None = None):
        self.codec = codec
        self.page_url = page_url

    def _proxied(self, value: str | None, option: Option) -> str | None:
        target = parse_absolute_url(value, self.page_url)
        if target is None:
            return None
        return self.codec.encode_inline(target, option)

    def rewrite(self, html: str) -> str:
        """Rewrite a full document or a fragment and return the new markup."""
        soup = BeautifulSoup(html, "html.parser")

        for script in soup.find_all("script"):
            script.decompose()
        for noscript in soup.find_all("noscript"):
            noscript.unwrap()

        for tag in soup.find_all(True):
            for attribute in [name for name in tag.attrs if name.lower().startswith("on")]:
                del tag[attribute]

        for tag_names, attribute, option in URL_ATTRIBUTES:
            for tag in soup.find_all(tag_names):
                proxied = self._proxied(tag.get(attribute), option)
                if proxied:
                    tag[attribute] = proxied

        for link in soup.find_all("link"):
            rel = link.get("rel") or []
            if isinstance(rel, str):
                rel = rel.split()
            if "stylesheet" not in [value.lower() for value in rel]:
                continue
            proxied = self._proxied(link.get("href"), Option.ASSET)
            if proxied:
                link["href"] = proxied

        for tag in soup.find_all(["img", "source"]):
            srcset = tag.get("srcset")
            if srcset is None:
                continue
            chosen = choose_srcset_candidate(srcset)
            proxied = self._proxied(chosen, Option.IMAGE) if chosen else None
            if proxied:
                tag["src"] = proxied
            del tag["srcset"]
            if tag.has_attr("sizes"):
                del tag["sizes"]

        return str(soup)
