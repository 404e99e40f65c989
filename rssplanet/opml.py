"""
OPML subscription lists: validation for storage and proxy rewriting.

Only outline attributes are touched when rewriting; titles, folders and any
unknown attributes are written back as they came in.
"""

import xml.etree.ElementTree as ET
from collections.abc import Iterator
from dataclasses import dataclass, field

from .codec import Codec, parse_absolute_url
from .option import Option

OPML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

# Outline attribute -> how the proxy should treat its URL
URL_ATTRIBUTES = (
    ("xmlUrl", Option.FEED),
    ("htmlUrl", Option.AUTO),
)


@dataclass
class Subscription:
    """One outline carrying a feed URL."""
    xml_url: str
    html_url: str | None = None
    title: str | None = None
    folders: list[str] = field(default_factory=list)


@dataclass
class SubscriptionList:
    title: str | None
    subscriptions: list[Subscription]


def _load(xml_content: str | bytes) -> ET.Element:
    try:
        root = ET.fromstring(xml_content)
    except ET.ParseError as e:
        raise ValueError(f"Invalid XML: {e}")
    if root.tag.lower() != "opml":
        raise ValueError(f"Not an OPML document (root element: {root.tag})")
    return root


def _label(outline: ET.Element) -> str | None:
    label = (outline.get("title") or outline.get("text") or "").strip()
    return label or None


def _walk(parent: ET.Element, folders: list[str]) -> Iterator[Subscription]:
    for outline in parent.findall("outline"):
        xml_url = outline.get("xmlUrl") or outline.get("xmlurl")
        if xml_url:
            yield Subscription(
                xml_url=xml_url,
                html_url=outline.get("htmlUrl"),
                title=_label(outline),
                folders=list(folders),
            )
            continue
        label = _label(outline)
        yield from _walk(outline, folders + [label] if label else folders)


def parse_opml(xml_content: str | bytes) -> SubscriptionList:
    """
    Read the subscriptions out of an OPML document, nested folders included.

    Raises:
        ValueError: If the content is not well-formed OPML with a <body>
    """
    root = _load(xml_content)
    body = root.find("body")
    if body is None:
        raise ValueError("OPML document missing <body> element")

    title = root.findtext("head/title")
    return SubscriptionList(
        title=title.strip() if title and title.strip() else None,
        subscriptions=list(_walk(body, [])),
    )


def rewrite_opml(xml_content: str | bytes, codec: Codec) -> str:
    """
    Route every feed and site URL in an OPML document through the proxy.

    xmlUrl becomes a feed proxy URL and htmlUrl an auto proxy URL, at any
    nesting depth. Values that are not absolute URLs are left alone.

    Raises:
        ValueError: If the content is not well-formed OPML
    """
    root = _load(xml_content)
    for outline in root.iter("outline"):
        for attribute, option in URL_ATTRIBUTES:
            target = parse_absolute_url(outline.get(attribute))
            if target:
                outline.set(attribute, codec.encode_inline(target, option))
    return OPML_DECLARATION + ET.tostring(root, encoding="unicode")
