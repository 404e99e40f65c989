"""
Content options: how a proxied target is handled.
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING

from .exceptions import UpstreamUnreachable

if TYPE_CHECKING:
    from .fetcher import ProxyFetcher

logger = logging.getLogger(__name__)


class Option(str, Enum):
    """Content kind requested for (or detected on) a proxied target."""
    AUTO = "auto"
    FEED = "feed"
    HTML = "html"
    ASSET = "asset"
    IMAGE = "image"


def get_option(parameter: str | None) -> Option:
    """Case-insensitive lookup; anything unknown or absent is AUTO."""
    if not isinstance(parameter, str):
        return Option.AUTO
    try:
        return Option(parameter.strip().lower())
    except ValueError:
        return Option.AUTO


def option_for_content_type(content_type: str | None) -> Option:
    """Map a Content-Type header to the option that handles it."""
    content_type = (content_type or "").lower()
    if any(marker in content_type for marker in ("xml", "rss", "atom")):
        return Option.FEED
    if "html" in content_type:
        return Option.HTML
    if "image" in content_type:
        return Option.IMAGE
    return Option.ASSET


def option_for_link(
    link_type: str | None,
    link_rel: str | None = None,
    honor_self: bool = True,
) -> Option:
    """
    Infer an option from an Atom <link> element's type and rel attributes.

    Later matches win, so "application/xhtml+xml" resolves to FEED and an
    image type beats an audio one. rel="self" always means the feed itself.
    """
    link_type = (link_type or "").lower()
    option = Option.AUTO
    if "html" in link_type:
        option = Option.HTML
    if any(marker in link_type for marker in ("xml", "rss", "atom")):
        option = Option.FEED
    if "audio" in link_type:
        option = Option.ASSET
    if "image" in link_type:
        option = Option.IMAGE
    if honor_self and "self" in (link_rel or "").lower():
        option = Option.FEED
    return option


async def fetch_auto_option(target_url: str, fetcher: "ProxyFetcher") -> Option | None:
    """
    Probe the target with a HEAD request and pick an option from its Content-Type.

    Returns None when the target cannot be reached or answers with an error.

    Raises:
        SSRFError: If the target is not allowed
    """
    try:
        response = await fetcher.head(target_url)
    except UpstreamUnreachable as e:
        logger.error(f"Auto-detect failed for {target_url}: {e}")
        return None
    if not response.ok:
        logger.info(f"Auto-detect got status {response.status} for {target_url}")
        return None
    content_type = response.headers.get("content-type", "")
    logger.info(f"Auto-detected Content-Type: {content_type}")
    return option_for_content_type(content_type)
