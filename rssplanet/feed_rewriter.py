"""
Feed rewriting - RSS 2.0 and Atom.

Every URL in the feed (channel links, artwork, enclosures, entry links and
the HTML inside descriptions) is rerouted through the proxy. Stale and
excess entries are dropped so that old clients get a small feed.

lxml is used instead of ElementTree because CDATA sections and namespace
prefixes have to survive the round trip.
"""

import email.utils
import logging
import re
from datetime import datetime, timedelta, timezone

from lxml import etree

from .client_policy import LegacyClientPolicy
from .codec import Codec, parse_absolute_url
from .config import config
from .exceptions import ParseFailure
from .html_rewriter import HTMLRewriter
from .option import Option, option_for_link

logger = logging.getLogger(__name__)

HTML_BODY_FIELDS = ("description", "content:encoded", "content", "summary")
_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")


def _qname(element) -> str | None:
    """Prefixed tag name as written in the document, e.g. "itunes:image"."""
    if not isinstance(element.tag, str):
        return None
    local = etree.QName(element).localname
    return f"{element.prefix}:{local}" if element.prefix else local


def _children(parent, name: str) -> list:
    return [child for child in parent if _qname(child) == name]


def _first(parent, name: str):
    children = _children(parent, name)
    return children[0] if children else None


def _is_cdata(element) -> bool:
    if not element.text:
        return False
    return "<![CDATA[" in etree.tostring(element, encoding="unicode", with_tail=False)


def _set_text(element, text: str, cdata: bool) -> None:
    element.text = etree.CDATA(text) if cdata else text


def _remove(element) -> None:
    parent = element.getparent()
    if parent is not None:
        parent.remove(element)


def _parse_rss_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_atom_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_feed(data: str | bytes):
    """Parse feed text into an lxml root element, or raise ParseFailure."""
    if isinstance(data, str):
        # The declared encoding no longer applies to already-decoded text
        data = _XML_DECLARATION.sub("", data, count=1).encode("utf-8")
    data = data.lstrip()
    if not data:
        raise ParseFailure("The feed was empty")

    parser = etree.XMLParser(
        strip_cdata=False,
        resolve_entities=False,
        no_network=True,
        huge_tree=False,
    )
    try:
        root = etree.fromstring(data, parser)
    except (etree.XMLSyntaxError, ValueError) as e:
        logger.error(f"Feed parse failed: {e}")
        raise ParseFailure(f"The feed could not be parsed: {e}") from e
    if root is None:
        raise ParseFailure("The feed could not be parsed")
    return root


def _is_stylesheet(node) -> bool:
    return node.tag is etree.ProcessingInstruction and node.target == "xml-stylesheet"


def serialize_feed(root) -> str:
    """Serialize with a UTF-8 declaration, keeping top-level comments and PIs."""
    preamble = [
        etree.tostring(node, encoding="unicode", with_tail=False)
        for node in reversed(list(root.itersiblings(preceding=True)))
        if not _is_stylesheet(node)
    ]
    body = etree.tostring(root, encoding="unicode")
    return "\n".join(['<?xml version="1.0" encoding="UTF-8"?>', *preamble, body]) + "\n"


class FeedRewriter:
    """Rewrites one feed document for one caller."""

    def __init__(
        self,
        codec: Codec,
        legacy: bool = False,
        source_url: str | None = None,
        policy: LegacyClientPolicy | None = None,
        rss_max_age_days: int = config.RSS_ITEM_MAX_AGE_DAYS,
        atom_max_age_days: int = config.ATOM_ENTRY_MAX_AGE_DAYS,
        now: datetime | None = None,
    ):
        self.codec = codec
        self.legacy = legacy
        self.source_url = source_url
        self.policy = policy or LegacyClientPolicy()
        self.rss_max_age_days = rss_max_age_days
        self.atom_max_age_days = atom_max_age_days
        self.now = now or datetime.now(timezone.utc)
        self.html = HTMLRewriter(codec, page_url=source_url)

    @property
    def max_entries(self) -> int:
        return self.policy.max_entries(self.legacy)

    async def rewrite(self, data: str | bytes) -> str:
        root = parse_feed(data)

        for instruction in list(root.iter(etree.ProcessingInstruction)):
            if _is_stylesheet(instruction):
                _remove(instruction)

        root_name = _qname(root)
        if root_name == "rss":
            channel = _first(root, "channel")
            if channel is not None:
                await self._rewrite_rss_channel(channel)
        elif root_name == "feed":
            await self._rewrite_atom_feed(root)
        else:
            logger.warning(f"Unrecognized feed root <{root_name}>, only stripping stylesheets")

        return serialize_feed(root)

    # ─────────────────────────────────────────────────────────────
    # Field helpers
    # ─────────────────────────────────────────────────────────────

    async def _encode(self, value: str | None, option: Option, heavy: bool) -> str | None:
        target = parse_absolute_url(value)
        if target is None:
            return None
        return await self.codec.encode(target, option, legacy=self.legacy and heavy)

    async def _rewrite_text(self, element, option: Option, heavy: bool = False) -> None:
        if element is None or len(element):
            return
        cdata = _is_cdata(element)
        encoded = await self._encode(element.text, option, heavy)
        if encoded:
            _set_text(element, encoded, cdata)

    async def _rewrite_attribute(self, element, attribute: str, option: Option, heavy: bool = False) -> None:
        if element is None:
            return
        encoded = await self._encode(element.get(attribute), option, heavy)
        if encoded:
            element.set(attribute, encoded)

    def _rewrite_html_body(self, element) -> None:
        if element is None or len(element) or not element.text:
            return
        content_type = (element.get("type") or "").lower()
        if content_type and ("xhtml" in content_type or "html" not in content_type):
            return
        if "<" not in element.text:
            return
        cdata = _is_cdata(element)
        _set_text(element, self.html.rewrite(element.text), cdata)

    def _prune(self, entries: list, date_fields: tuple[str, ...], parse_date, max_age_days: int) -> list:
        """Drop entries older than max_age_days, then keep at most max_entries."""
        kept = []
        cutoff = self.now - timedelta(days=max_age_days) if max_age_days > 0 else None
        for entry in entries:
            if cutoff is not None:
                published = None
                for name in date_fields:
                    date_element = _first(entry, name)
                    if date_element is not None:
                        published = parse_date(date_element.text)
                        if published is not None:
                            break
                if published is not None and published < cutoff:
                    _remove(entry)
                    continue
            kept.append(entry)

        for entry in kept[self.max_entries:]:
            _remove(entry)
        dropped = len(entries) - min(len(kept), self.max_entries)
        if dropped:
            logger.info(f"Dropped {dropped} of {len(entries)} entries")
        return kept[:self.max_entries]

    # ─────────────────────────────────────────────────────────────
    # RSS 2.0
    # ─────────────────────────────────────────────────────────────

    async def _rewrite_rss_channel(self, channel) -> None:
        for element in _children(channel, "itunes:new-feed-url"):
            _remove(element)

        for image in _children(channel, "itunes:image"):
            await self._rewrite_attribute(image, "href", Option.IMAGE, heavy=True)
        for link in _children(channel, "link"):
            await self._rewrite_text(link, Option.AUTO, heavy=True)
        for atom_link in _children(channel, "atom:link"):
            if atom_link.get("rel") == "self":
                await self._rewrite_attribute(atom_link, "href", Option.FEED)
        for image in _children(channel, "image"):
            await self._rewrite_text(_first(image, "url"), Option.IMAGE)
            await self._rewrite_text(_first(image, "link"), Option.AUTO)

        items = self._prune(
            _children(channel, "item"),
            ("pubDate", "dc:date"),
            _parse_rss_date,
            self.rss_max_age_days,
        )
        for item in items:
            await self._rewrite_rss_item(item)

    async def _rewrite_rss_item(self, item) -> None:
        for link in _children(item, "link"):
            await self._rewrite_text(link, Option.AUTO)
        for image in _children(item, "itunes:image"):
            await self._rewrite_attribute(image, "href", Option.IMAGE, heavy=True)
        for enclosure in _children(item, "enclosure"):
            await self._rewrite_attribute(enclosure, "url", Option.ASSET, heavy=True)
        for media in _children(item, "media:content"):
            await self._rewrite_attribute(media, "url", Option.ASSET, heavy=True)
        for name in HTML_BODY_FIELDS:
            for body in _children(item, name):
                self._rewrite_html_body(body)

    # ─────────────────────────────────────────────────────────────
    # Atom
    # ─────────────────────────────────────────────────────────────

    async def _rewrite_atom_links(self, parent, honor_self: bool) -> None:
        for link in _children(parent, "link"):
            option = option_for_link(link.get("type"), link.get("rel"), honor_self=honor_self)
            await self._rewrite_attribute(link, "href", option)

    async def _rewrite_atom_feed(self, feed) -> None:
        await self._rewrite_atom_links(feed, honor_self=True)
        for name in ("logo", "icon"):
            for element in _children(feed, name):
                await self._rewrite_text(element, Option.IMAGE)

        entries = self._prune(
            _children(feed, "entry"),
            ("updated", "published"),
            _parse_atom_date,
            self.atom_max_age_days,
        )
        for entry in entries:
            await self._rewrite_atom_links(entry, honor_self=False)
            for name in HTML_BODY_FIELDS:
                for body in _children(entry, name):
                    self._rewrite_html_body(body)
