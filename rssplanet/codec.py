"""
Codec - Turns target URLs into proxy URLs and back.

A proxy URL looks like:

    {base}/proxy/{token}/{filename}?key={key}&option={option}

where token is quote(base64(quote(target))). The double quoting keeps the
token a single path segment. Legacy clients get a short "KV-<md5>" token
instead when the full proxy URL would be too long; the real target then lives
in the URL cache store.
"""

import base64
import binascii
import logging
import re
from urllib.parse import quote, unquote, urlencode, urljoin, urlsplit

from .config import config
from .crypto import md5
from .kvs import EncryptedStore, StoredEntry
from .option import Option

logger = logging.getLogger(__name__)

SHORT_TOKEN_PREFIX = "KV-"
URLCACHE_SERVICE = "URLCACHE"
URLCACHE_OWNER = "legacy"

# Same unreserved set as JavaScript's encodeURIComponent
_COMPONENT_SAFE = "-_.!~*'()"
_FILENAME_UNSAFE = re.compile(r"[^a-zA-Z0-9.-]")
_IMAGE_EXTENSIONS_TO_JPG = {".png", ".webp", ".gif", ".bmp", ".tiff", ".heic"}
_BLUBRRY_HOST = "media.blubrry.com"


def encode_component(value: str) -> str:
    return quote(value, safe=_COMPONENT_SAFE)


def parse_absolute_url(value: str | None, base: str | None = None) -> str | None:
    """
    Return value as an absolute http(s) URL, resolving against base if given.

    Returns None when the value cannot be understood as one.
    """
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value:
        return None
    try:
        candidate = urljoin(base, value) if base else value
        parts = urlsplit(candidate)
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        return None
    return candidate


def strip_tracking(
    target_url: str,
    tracker_domains: list[str] | None = None,
    hosting_markers: list[str] | None = None,
) -> str:
    """Remove known podcast tracking redirect wrappers from a URL."""
    tracker_domains = config.TRACKER_DOMAINS if tracker_domains is None else tracker_domains
    hosting_markers = config.HOSTING_MARKERS if hosting_markers is None else hosting_markers

    if any(domain in target_url for domain in tracker_domains):
        for marker in hosting_markers:
            index = target_url.find(marker)
            if index == -1:
                continue
            stripped = "https://" + target_url[index:].split("?", 1)[0]
            logger.info(f"Stripped tracking: {target_url} -> {stripped}")
            return stripped
        logger.error(f"Tracker found but no hosting marker matched: {target_url}")
        return target_url

    try:
        parts = urlsplit(target_url)
    except ValueError:
        return target_url
    if _BLUBRRY_HOST in (parts.hostname or ""):
        # https://media.blubrry.com/<show>/<real-host>/<path>
        without_query = target_url.split("?", 1)[0]
        segments = without_query.split("/")
        if len(segments) > 4:
            stripped = "https://" + "/".join(segments[4:])
            logger.info(f"Stripped tracking: {target_url} -> {stripped}")
            return stripped
    return target_url


def sanitize_file_name(raw_path: str, option: Option | None = None, max_length: int = 15) -> str:
    """
    Derive a short, safe trailing filename for a proxy URL.

    Only the last max_length characters are kept so the extension survives,
    and image targets are forced to .jpg because they get converted to JPEG.
    """
    segments = [segment for segment in (raw_path or "").split("/") if segment]
    filename = segments[-1] if segments else "file.bin"

    if option == Option.IMAGE:
        stem, dot, extension = filename.rpartition(".")
        if not dot:
            filename = filename + ".jpg"
        elif "." + extension.lower() in _IMAGE_EXTENSIONS_TO_JPG:
            filename = stem + ".jpg"

    filename = _FILENAME_UNSAFE.sub("_", filename)
    return filename[-max_length:]


class Codec:
    """
    Encoder/decoder bound to one request context.

    base_url is the absolute proxy prefix (ending in the proxy path) and
    auth_key is the caller key embedded in every encoded URL.
    """

    def __init__(
        self,
        base_url: str,
        auth_key: str,
        url_cache: EncryptedStore | None = None,
        url_limit: int = config.LEGACY_URL_LIMIT,
        proxy_marker: str | None = None,
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.auth_key = auth_key
        self.url_cache = url_cache
        self.url_limit = url_limit
        self.proxy_marker = proxy_marker or config.proxy_marker()

    def _build(self, token: str, filename: str, option: Option | None) -> str:
        params = {"key": self.auth_key}
        if option is not None:
            params["option"] = Option(option).value
        return f"{self.base_url}{token}/{filename}?{urlencode(params)}"

    def encode_inline(self, target_url: str, option: Option | None = None) -> str:
        """Encode with the full base64 token. Never touches the store."""
        stripped = strip_tracking(target_url)
        token = encode_component(
            base64.b64encode(encode_component(stripped).encode("ascii")).decode("ascii")
        )
        filename = sanitize_file_name(urlsplit(stripped).path, option)
        return self._build(token, filename, option)

    async def encode(self, target_url: str, option: Option | None = None, legacy: bool = False) -> str:
        """
        Encode a target URL, shortening it through the URL cache for legacy
        clients when the result would be too long.
        """
        encoded = self.encode_inline(target_url, option)
        if not legacy or self.url_cache is None or len(encoded) < self.url_limit:
            return encoded

        stripped = strip_tracking(target_url)
        token = SHORT_TOKEN_PREFIX + md5(stripped)
        existing = await self.url_cache.get(token)
        if existing is None or existing.value != stripped:
            stored = await self.url_cache.put(
                StoredEntry(
                    key=token,
                    name=token,
                    value=stripped,
                    service=URLCACHE_SERVICE,
                    owner=URLCACHE_OWNER,
                )
            )
            if stored is None:
                logger.error(f"Could not cache long URL, using inline token: {stripped}")
                return encoded
            logger.info(f"Cached long URL as {token}: {stripped}")

        filename = sanitize_file_name(urlsplit(stripped).path, option)
        return self._build(token, filename, option)

    def _token_from(self, request_url: str) -> str | None:
        segments = urlsplit(request_url).path.split("/")
        try:
            index = segments.index(self.proxy_marker)
        except ValueError:
            return None
        if index + 1 >= len(segments):
            return None
        return segments[index + 1] or None

    async def decode(self, request_url: str) -> str | None:
        """
        Recover the target URL from a proxy URL (or its path).

        Returns None on any failure: missing token, bad base64, unknown short
        token, or a payload that is not an absolute URL.
        """
        token = self._token_from(request_url)
        if not token:
            return None

        if token.startswith(SHORT_TOKEN_PREFIX):
            if self.url_cache is None:
                return None
            entry = await self.url_cache.get(token)
            if entry is None:
                logger.info(f"Unknown short token {token}")
                return None
            return parse_absolute_url(entry.value)

        try:
            b64 = unquote(token)
            b64 += "=" * (-len(b64) % 4)
            decoded = base64.b64decode(b64, validate=True).decode("ascii")
            target = unquote(decoded, errors="strict")
        except (binascii.Error, ValueError) as e:
            logger.info(f"Could not decode token {token[:32]}: {e}")
            return None
        return parse_absolute_url(target)
