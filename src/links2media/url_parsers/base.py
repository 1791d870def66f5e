"""Abstract base class for URL parsers."""

import re
from abc import ABC, abstractmethod
from typing import Any, Optional
from urllib.parse import parse_qs, unquote, urlsplit

import httpx
import structlog
from bs4 import BeautifulSoup

from ..config import settings
from ..schemas.result import ParseMode, ParseResult, Platform
from ..utils.http_client import HttpTransport
from ..utils.json_utils import JsonValue, loads_lenient
from ..utils.media_select import dedupe_image_urls
from ..utils.retry import RetryableError, with_retry
from ..utils.text_utils import clean_label, format_timestamp, js_decode, sanitize_author
from ..utils.url_utils import absolutize, classify_platform, is_short_link, normalize_url

logger = structlog.get_logger(__name__)

DIRECT_IMAGE_PATTERN = re.compile(
    r"https?://[^\s\"'<>\\]+?\.(?:jpg|jpeg|png|webp)(?:\?[^\s\"'<>\\]*)?", re.IGNORECASE
)
DIRECT_VIDEO_PATTERN = re.compile(
    r"https?://[^\s\"'<>\\]+?\.(?:mp4|m3u8|mov)(?:\?[^\s\"'<>\\]*)?", re.IGNORECASE
)

MAX_SHORT_LINK_HOPS = 5


class BaseURLParser(ABC):
    """
    Abstract base class for URL parsers.

    Subclasses must implement:
    - parser_name: unique identifier for this parser
    - platform: the Platform the parser serves
    - parse(): the platform's fallback chain

    can_handle() and extract_resource_id() are driven by the class-level
    platform and ID_PATTERNS; override them only for unusual URL shapes.
    """

    parser_name: str = "base_url"
    platform: Platform = Platform.UNKNOWN
    requires_cookie: bool = False
    resource_id_required: bool = True
    default_title: str = "untitled"

    # Regexes whose first group is the platform's resource id
    ID_PATTERNS: list[str] = []
    # Domains that may receive the caller's cookie
    COOKIE_DOMAINS: tuple[str, ...] = ()
    # Pattern finding the canonical URL in a short-link landing page body
    CANONICAL_URL_PATTERN: Optional[str] = None

    def __init__(self, transport: HttpTransport):
        self.transport = transport

    def can_handle(self, url: str) -> bool:
        """
        Check if this parser can handle the given URL.

        Args:
            url: URL to check

        Returns:
            True if the URL classifies to this parser's platform
        """
        return classify_platform(url) == self.platform

    def extract_resource_id(self, url: str) -> Optional[str]:
        """Platform resource id from the URL itself, or None."""
        for pattern in self.ID_PATTERNS:
            match = re.search(pattern, url, re.IGNORECASE)
            if match:
                return match.group(1)
        return None

    @abstractmethod
    async def parse(
        self,
        url: str,
        mode: ParseMode = ParseMode.ARTICLE_IMAGES,
        cookie: Optional[str] = None,
    ) -> ParseResult:
        """
        Resolve a post URL into media links and metadata.

        Network and structural failures are absorbed tier by tier; an empty
        ParseResult means every tier came up empty.

        Args:
            url: Post URL (short links allowed)
            mode: ARTICLE_IMAGES collects everything, COVER_IMAGE stops at the first item
            cookie: Optional raw cookie string for this platform

        Returns:
            ParseResult with media URLs and metadata
        """
        pass

    # --- Shared helpers ---

    def _new_result(self, url: str) -> ParseResult:
        return ParseResult(platform=self.platform, source_url=url, resolved_url=url)

    @staticmethod
    def _done(result: ParseResult, mode: ParseMode) -> bool:
        """Cover mode is satisfied by the first media item."""
        return mode == ParseMode.COVER_IMAGE and result.has_media

    def _browser_headers(self, referer: Optional[str] = None, mobile: bool = False) -> dict[str, str]:
        headers = {
            "User-Agent": settings.mobile_user_agent if mobile else settings.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        }
        if referer:
            headers["Referer"] = referer
        return headers

    @with_retry(max_retries=1, delay_seconds=0.5, retryable_exceptions=(httpx.TransportError, RetryableError))
    async def _get(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        cookie: Optional[str] = None,
    ) -> httpx.Response:
        response = await self.transport.get(
            url, headers=headers, cookie=cookie, cookie_domains=self.COOKIE_DOMAINS
        )
        if response.is_server_error:
            raise RetryableError(f"HTTP {response.status_code} from {url}")
        return response

    async def _fetch_text(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        cookie: Optional[str] = None,
    ) -> Optional[str]:
        """Body of a successful GET, or None on any HTTP or transport failure."""
        try:
            response = await self._get(url, headers=headers, cookie=cookie)
        except (httpx.HTTPError, RetryableError) as e:
            logger.warning("Fetch failed", parser=self.parser_name, url=url, error=str(e))
            return None
        if not response.is_success:
            logger.info("Fetch returned error status", parser=self.parser_name, url=url, status=response.status_code)
            return None
        return response.text

    async def _fetch_json(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        cookie: Optional[str] = None,
    ) -> Optional[JsonValue]:
        text = await self._fetch_text(url, headers=headers, cookie=cookie)
        return loads_lenient(text) if text else None

    async def _resolve_short_link(self, url: str) -> str:
        """
        Follow a short link by hand and return the canonical content URL.

        Redirects are read from Location one hop at a time so that
        target= wrappers and app URI schemes can be unwrapped on the way.
        A 200 landing page is scanned for CANONICAL_URL_PATTERN. Any failure
        returns the input URL unchanged.
        """
        current = normalize_url(url)
        if not is_short_link(current):
            return current

        for _ in range(MAX_SHORT_LINK_HOPS):
            try:
                response = await self.transport.get_no_redirect(current, headers=self._browser_headers(mobile=True))
            except httpx.HTTPError as e:
                logger.warning("Short link resolution failed", url=current, error=str(e))
                return current

            location = response.headers.get("Location")
            if response.is_redirect and location:
                next_url = self._unwrap_location(absolutize(current, location))
                if not next_url:
                    return current
                current = next_url
                if not is_short_link(current):
                    break
                continue

            if response.is_success and self.CANONICAL_URL_PATTERN:
                match = re.search(self.CANONICAL_URL_PATTERN, js_decode(response.text))
                if match:
                    current = match.group(0)
            break

        logger.debug("Short link resolved", parser=self.parser_name, source=url, resolved=current)
        return current

    def _unwrap_location(self, location: str) -> Optional[str]:
        """Strip target= wrappers and map app URI schemes to web URLs."""
        if location.lower().startswith(("http://", "https://")):
            query = parse_qs(urlsplit(location).query)
            target = query.get("target") or query.get("redirect_url")
            if target and target[0].lower().startswith(("http://", "https://")):
                return unquote(target[0])
            return location
        return self._map_app_scheme(location)

    def _map_app_scheme(self, location: str) -> Optional[str]:
        """Map an app deep link (e.g. xiaohongshu://note/<id>) to a web URL."""
        return None

    def _fill_og_meta(self, result: ParseResult, html: Optional[str], want_image: bool = True) -> None:
        """og:title into an empty title, og:image as a media candidate."""
        if not html:
            return
        soup = BeautifulSoup(html, "html.parser")
        if not result.title:
            title = _meta_content(soup, "og:title") or (soup.title.string if soup.title else None)
            if title:
                result.title = title.strip()
        if want_image:
            result.add_image(_meta_content(soup, "og:image"))

    def _scan_direct_links(
        self,
        result: ParseResult,
        html: Optional[str],
        mode: ParseMode,
        images: bool = True,
        videos: bool = True,
    ) -> None:
        """Last resort: bare media URLs anywhere in the page source."""
        if not html:
            return
        text = js_decode(html)
        if videos:
            for match in DIRECT_VIDEO_PATTERN.finditer(text):
                result.add_video(match.group(0))
                if self._done(result, mode):
                    return
        if images:
            for match in DIRECT_IMAGE_PATTERN.finditer(text):
                result.add_image(match.group(0))
                if self._done(result, mode):
                    return

    @staticmethod
    def _set_publish_time(result: ParseResult, value: Any) -> bool:
        stamp = format_timestamp(value)
        if stamp:
            result.publish_timestamp = stamp
            return True
        return False

    def _finalize(self, result: ParseResult, dedupe: bool = False) -> ParseResult:
        """Normalize title/author and optionally collapse CDN mirrors of one image."""
        result.title = clean_label(result.title, settings.title_max_length, self.default_title)
        result.author = sanitize_author(result.author, settings.title_max_length)
        if dedupe:
            result.image_urls = dedupe_image_urls(result.image_urls)
        logger.info(
            "Parsed",
            parser=self.parser_name,
            url=result.source_url,
            images=len(result.image_urls),
            videos=len(result.video_urls),
        )
        return result


def _meta_content(soup: BeautifulSoup, name: str) -> Optional[str]:
    node = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
    if node is None:
        return None
    content = node.get("content")
    return content.strip() if content and content.strip() else None
