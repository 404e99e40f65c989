"""
Mastodon timelines as RSS.

Fetches a home, local or user timeline with the caller's stored access token
and renders it as an RSS 2.0 document whose avatars, media and links all go
through the proxy.
"""

import email.utils
import html
import json
import logging
import re
from datetime import datetime, timezone
from urllib.parse import urlencode, urljoin, urlsplit

from lxml import etree
from pydantic import ValidationError as PydanticValidationError

from .codec import Codec, parse_absolute_url
from .config import config
from .exceptions import UpstreamUnreachable, ValidationError
from .fetcher import ProxyFetcher
from .html_rewriter import HTMLRewriter
from .option import Option
from .schemas import MastoAccount, MastoStatus

logger = logging.getLogger(__name__)

SUBTYPES = ("home", "local", "user")
TITLE_SNIPPET_LENGTH = 60
BOOST_MARKER = "\U0001F504"
_TAGS = re.compile(r"<[^>]*>")


def _parse_iso8601(ts: str) -> datetime:
    """Convert a Mastodon ISO8601 timestamp to an aware UTC datetime."""
    try:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class MastodonClient:
    """Minimal read-only Mastodon API client over the proxy fetcher."""

    def __init__(
        self,
        fetcher: ProxyFetcher,
        server: str,
        token: str,
        max_statuses: int = config.MASTO_MAX_STATUSES,
        max_pages: int = config.MASTO_MAX_PAGES,
    ):
        self.fetcher = fetcher
        self.server = server
        self.token = token
        self.max_statuses = max_statuses
        self.max_pages = max_pages

    def _url(self, path: str, params: dict[str, str] | None = None) -> str:
        url = urljoin(self.server, path)
        return f"{url}?{urlencode(params)}" if params else url

    async def _get_json(self, path: str, params: dict[str, str] | None = None):
        response = await self.fetcher.fetch(
            self._url(path, params),
            headers={"Authorization": f"Bearer {self.token}", "Accept": "application/json"},
        )
        if not response.ok:
            raise UpstreamUnreachable(f"Mastodon returned status {response.status} for {path}")
        try:
            return json.loads(response.body)
        except ValueError as e:
            raise UpstreamUnreachable(f"Mastodon returned invalid JSON for {path}") from e

    async def verify_credentials(self) -> MastoAccount:
        data = await self._get_json("/api/v1/accounts/verify_credentials")
        try:
            return MastoAccount.model_validate(data)
        except PydanticValidationError as e:
            raise UpstreamUnreachable("Mastodon returned an invalid account") from e

    async def _timeline(self, subtype: str) -> tuple[str, dict[str, str]]:
        if subtype == "home":
            return "/api/v1/timelines/home", {}
        if subtype == "local":
            return "/api/v1/timelines/public", {"local": "true"}
        if subtype == "user":
            account = await self.verify_credentials()
            return f"/api/v1/accounts/{account.id}/statuses", {}
        raise ValidationError(f"Invalid status type: {subtype}")

    async def fetch_statuses(self, subtype: str) -> list[MastoStatus]:
        """
        Page backwards through a timeline with max_id.

        A failure on the first page is an error; a failure on a later page
        returns what was collected so far.
        """
        path, base_params = await self._timeline(subtype)
        statuses: list[MastoStatus] = []
        max_id = None

        for _ in range(self.max_pages):
            if len(statuses) >= self.max_statuses:
                break
            params = dict(base_params)
            if max_id:
                params["max_id"] = max_id
            try:
                page = await self._get_json(path, params)
            except UpstreamUnreachable:
                if statuses:
                    logger.warning(f"Stopping pagination of {path} after {len(statuses)} statuses")
                    break
                raise
            if not isinstance(page, list) or not page:
                break

            for raw in page:
                try:
                    statuses.append(MastoStatus.model_validate(raw))
                except PydanticValidationError as e:
                    logger.warning(f"Skipping malformed status: {e.error_count()} errors")
            last_id = page[-1].get("id") if isinstance(page[-1], dict) else None
            if not last_id or last_id == max_id:
                break
            max_id = last_id

        return statuses[:self.max_statuses]


def status_title(status: MastoStatus) -> str:
    data = status.reblog or status
    text = html.unescape(_TAGS.sub("", data.content)).strip()
    if len(text) > TITLE_SNIPPET_LENGTH:
        text = text[:TITLE_SNIPPET_LENGTH] + "..."
    title = f"{data.account.name}: {text or 'Post'}"
    return f"{BOOST_MARKER} {title}" if status.reblog else title


def _proxied(codec: Codec, url: str | None, option: Option) -> str | None:
    target = parse_absolute_url(url)
    return codec.encode_inline(target, option) if target else url


def render_status_html(status: MastoStatus, codec: Codec) -> str:
    """Render a status, including boosts and attachments, as an HTML body."""
    data = status.reblog or status
    author = data.account
    parts = []

    if status.reblog:
        parts.append(f"<p>{BOOST_MARKER} Boosted by {html.escape(status.account.name)}</p>")

    avatar = _proxied(codec, author.avatar, Option.IMAGE) or ""
    parts.append(
        "<div>"
        f'<img src="{html.escape(avatar)}" width="48" height="48" alt="{html.escape(author.name)}">'
        f"<div><strong>{html.escape(author.name)}</strong><br>"
        f'<a href="{html.escape(_proxied(codec, author.url, Option.AUTO) or "")}">@{html.escape(author.acct)}</a>'
        "</div></div><br>"
    )

    if data.spoiler_text:
        parts.append(f"<p><strong>CW: {html.escape(data.spoiler_text)}</strong></p>")
    parts.append(f"<div>{HTMLRewriter(codec).rewrite(data.content)}</div>")

    if data.media_attachments:
        parts.append('<div class="media">')
        for media in data.media_attachments:
            alt = media.description or ""
            link = _proxied(codec, media.url, Option.IMAGE if media.type == "image" else Option.AUTO)
            if not link:
                continue
            if media.type == "image":
                parts.append(f'<p><img src="{html.escape(link)}" alt="{html.escape(alt)}"></p>')
            else:
                label = f"View {media.type}: {alt}" if alt else f"View {media.type} attachment"
                parts.append(f'<p><a href="{html.escape(link)}">{html.escape(label)}</a></p>')
        parts.append("</div>")

    parts.append(
        "<hr><p>"
        f"Replies: {data.replies_count} | "
        f"Boosts: {data.reblogs_count} | "
        f"Favorites: {data.favourites_count}"
        "</p>"
    )
    return "<div>" + "".join(parts) + "</div>"


def statuses_to_rss(
    statuses: list[MastoStatus],
    subtype: str,
    server: str,
    site_url: str,
    codec: Codec,
    now: datetime | None = None,
) -> str:
    """Build an RSS 2.0 document for a timeline."""
    now = now or datetime.now(timezone.utc)
    rss = etree.Element(
        "rss",
        version="2.0",
        nsmap={
            "content": "http://purl.org/rss/1.0/modules/content/",
            "dc": "http://purl.org/dc/elements/1.1/",
        },
    )
    channel = etree.SubElement(rss, "channel")
    host = urlsplit(server).hostname or server
    for name, text in (
        ("title", f"{host} - {subtype.capitalize()}"),
        ("link", site_url),
        ("description", f"RSS THE PLANET: Mastodon {subtype} feed"),
        ("language", "en-us"),
        ("lastBuildDate", email.utils.format_datetime(now, usegmt=True)),
        ("generator", "RSS THE PLANET MastoService"),
    ):
        etree.SubElement(channel, name).text = text

    for status in statuses:
        data = status.reblog or status
        item = etree.SubElement(channel, "item")
        etree.SubElement(item, "title").text = status_title(status)
        if data.link:
            etree.SubElement(item, "link").text = data.link
            etree.SubElement(item, "guid", isPermaLink="true").text = data.link
        else:
            etree.SubElement(item, "guid", isPermaLink="false").text = data.id
        etree.SubElement(item, "pubDate").text = email.utils.format_datetime(
            _parse_iso8601(data.created_at), usegmt=True
        )
        etree.SubElement(item, "description").text = etree.CDATA(
            render_status_html(status, codec).replace("]]>", "]]&gt;")
        )
        etree.SubElement(item, "author").text = f"{data.account.acct} ({data.account.name})"

    return '<?xml version="1.0" encoding="UTF-8"?>\n' + etree.tostring(
        rss, encoding="unicode", pretty_print=True
    )
