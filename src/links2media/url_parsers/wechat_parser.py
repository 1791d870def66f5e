"""Parser for WeChat official-account articles (mp.weixin.qq.com)."""

import html as html_lib
import re
from typing import Optional

import structlog
from bs4 import BeautifulSoup

from ..schemas.result import ParseMode, ParseResult, Platform
from ..utils.json_utils import extract_object_after, loads_lenient, repair_json
from ..utils.text_utils import js_decode, parse_timestamp
from .base import BaseURLParser

logger = structlog.get_logger(__name__)

_PICTURE_LIST_STRING = re.compile(r"var\s+picturePageInfoList\s*=\s*\"(.*?)\";", re.DOTALL)
_PICTURE_LIST_WINDOW = "window.picture_page_info_list"
_URL_IN_BLOB = re.compile(r"https?://[^\s'\"]+", re.IGNORECASE)

_CREATE_TIME_JSDECODE = re.compile(
    r"\bcreate_time\s*[:=]\s*JsDecode\(\s*(['\"])(?P<t>.*?)\1\s*\)", re.IGNORECASE | re.DOTALL
)
_EPOCH_VAR = re.compile(r"\b(?:var\s+ct|publish_time|create_time)\s*[:=]\s*\"(?P<ts>\d{10,13})\"", re.IGNORECASE)
_TEXT_TIME_VAR = re.compile(r"\b(?:publish_time|create_time)\s*[:=]\s*\"(?P<t>[^\"]{8,})\"", re.IGNORECASE)

_AUTHOR_PATTERNS = [
    re.compile(r"\b(?:nick_name|nickname)\s*[:=]\s*JsDecode\(\s*(['\"])(?P<name>.*?)\1\s*\)", re.IGNORECASE | re.DOTALL),
    re.compile(r"\b(?:var\s+)?nickname\s*[:=]\s*htmlDecode\(\s*(['\"])(?P<name>.*?)\1\s*\)", re.IGNORECASE | re.DOTALL),
    re.compile(r"\b(?:var\s+)?(?:nick_name|nickname)\s*[:=]\s*(['\"])(?P<name>.*?)\1", re.IGNORECASE | re.DOTALL),
]

_PUBLISH_META = [
    {"property": "article:published_time"},
    {"property": "og:updated_time"},
    {"itemprop": "datePublished"},
    {"name": "pubdate"},
]


def _clean_decode(text: str) -> str:
    return js_decode(html_lib.unescape(text).strip()).strip()


class WeChatParser(BaseURLParser):
    """
    URL parser for WeChat articles.

    Article pages are server rendered; pictures of image-post articles live in
    a script variable, regular articles carry them as data-src on <img>.
    """

    parser_name = "wechat"
    platform = Platform.WECHAT
    resource_id_required = False
    default_title = "WeChat article"

    async def parse(
        self,
        url: str,
        mode: ParseMode = ParseMode.ARTICLE_IMAGES,
        cookie: Optional[str] = None,
    ) -> ParseResult:
        logger.info("WeChat parsing", url=url, mode=mode.value)
        result = self._new_result(url)

        page = await self._fetch_text(url, headers=self._browser_headers())
        if not page:
            return self._finalize(result)

        soup = BeautifulSoup(page, "html.parser")
        self._fill_og_meta(result, page, want_image=False)
        self._extract_publish_time(result, soup, page)
        result.author = self._extract_author(soup, page) or ""

        if mode == ParseMode.COVER_IMAGE:
            self._fill_og_meta(result, page, want_image=True)
            return self._finalize(result)

        if not self._extract_picture_list(result, page):
            for img in soup.select("#js_content img"):
                result.add_image(img.get("data-src") or img.get("src"))

        if not result.has_media:
            self._scan_direct_links(result, page, mode, videos=False)

        return self._finalize(result)

    def _extract_picture_list(self, result: ParseResult, page: str) -> bool:
        """Image-post articles: picturePageInfoList string or window.picture_page_info_list array."""
        match = _PICTURE_LIST_STRING.search(page)
        if match:
            raw = match.group(1).replace("\\x26amp;amp;", "&").replace("\\x26amp;", "&")
            raw = raw.replace(",]", "]").replace("'", '"')
            return self._add_picture_urls(result, raw)

        raw = extract_object_after(page, _PICTURE_LIST_WINDOW, opener="[")
        if raw:
            return self._add_picture_urls(result, raw)
        return False

    @staticmethod
    def _add_picture_urls(result: ParseResult, raw: str) -> bool:
        added = False
        parsed = loads_lenient(repair_json(raw))
        if isinstance(parsed, list):
            for item in parsed:
                if isinstance(item, dict):
                    added |= result.add_image(item.get("cdn_url") or item.get("url"))
        if not added:
            for match in _URL_IN_BLOB.finditer(raw):
                added |= result.add_image(html_lib.unescape(match.group(0)))
        return added

    def _extract_publish_time(self, result: ParseResult, soup: BeautifulSoup, page: str) -> None:
        node = soup.find(["em", "span"], id="publish_time")
        if node and self._set_publish_time(result, node.get_text(strip=True)):
            return

        for attrs in _PUBLISH_META:
            meta = soup.find("meta", attrs=attrs)
            if meta and self._set_publish_time(result, meta.get("content")):
                return

        match = _CREATE_TIME_JSDECODE.search(page)
        if match and self._set_publish_time(result, _clean_decode(match.group("t"))):
            return

        match = _EPOCH_VAR.search(page)
        if match and self._set_publish_time(result, match.group("ts")):
            return

        match = _TEXT_TIME_VAR.search(page)
        if match and parse_timestamp(match.group("t").strip()):
            self._set_publish_time(result, match.group("t").strip())

    @staticmethod
    def _extract_author(soup: BeautifulSoup, page: str) -> Optional[str]:
        for pattern in _AUTHOR_PATTERNS:
            match = pattern.search(page)
            if match:
                name = _clean_decode(match.group("name"))
                if name:
                    return name

        node = soup.find(attrs={"data-nickname": True})
        if node and node.get("data-nickname", "").strip():
            return _clean_decode(node["data-nickname"])

        span = soup.find("span", class_=re.compile("nickname")) or soup.find("span", id=re.compile("nickname"))
        if span and span.get_text(strip=True):
            return _clean_decode(span.get_text(strip=True))

        return None
