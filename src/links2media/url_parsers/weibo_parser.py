"""Parser for Weibo posts (weibo.com, m.weibo.cn)."""

from typing import Any, Optional

import structlog

from ..schemas.result import ParseMode, ParseResult, Platform
from ..utils.json_utils import JsonValue, first_str, get_dict, get_int, get_list, get_path, get_str
from ..utils.text_utils import parse_cookie_string, strip_html
from .base import BaseURLParser

logger = structlog.get_logger(__name__)

MOBILE_API = "https://m.weibo.cn/statuses/show?id={mid}"
MOBILE_ALT_API = "https://m.weibo.cn/api/statuses/show?id={mid}"
AJAX_API = "https://weibo.com/ajax/statuses/show?id={mid}&locale=zh-CN&isGetLongText=true"

PIC_SIZE_PATHS = [("largest", "url"), ("large", "url"), ("original", "url"), ("bmiddle", "url"), ("url",)]

MEDIA_INFO_KEYS = [
    "mp4_4k_mp4",
    "mp4_1080p_mp4",
    "mp4_1080p",
    "mp4_hd_url",
    "mp4_720p_mp4",
    "stream_url_hd",
    "mp4_sd_url",
    "stream_url",
]


def pick_best_playback(playback: list[Any]) -> Optional[str]:
    """
    Best mp4 from a playback_list.

    Score: quality_index * 1e9 + width * height * 10 + bitrate.
    """
    best_url: Optional[str] = None
    best_score = -1
    for item in playback:
        info = get_dict(item, "play_info")
        if not info:
            continue
        url = get_str(info, "url")
        mime = get_str(info, "mime") or ""
        if not url or ".mp4" not in url.lower():
            continue
        if mime and "video/mp4" not in mime.lower():
            continue

        quality = get_int(item, "meta", "quality_index") or 0
        width = min(max(get_int(info, "width") or 0, 0), 10000)
        height = min(max(get_int(info, "height") or 0, 0), 10000)
        bitrate = min(max(get_int(info, "bitrate") or 0, 0), 100_000_000)

        score = quality * 1_000_000_000 + width * height * 10 + bitrate
        if score > best_score:
            best_score = score
            best_url = url
    return best_url


def pick_media_info_url(media_info: JsonValue) -> Optional[str]:
    for key in MEDIA_INFO_KEYS:
        url = get_str(media_info, key)
        if url and ".mp4" in url.lower():
            return url
    return None


def _video_from_node(node: JsonValue) -> Optional[str]:
    """playback_list (top level or under media_info), then media_info direct keys."""
    for path in (("playback_list",), ("media_info", "playback_list")):
        playback = get_list(node, *path)
        if playback:
            url = pick_best_playback(playback)
            if url:
                return url
    media_info = get_dict(node, "media_info")
    return pick_media_info_url(media_info) if media_info else None


class WeiboParser(BaseURLParser):
    """
    URL parser for Weibo posts.

    Tiers: anonymous mobile API, alternate mobile API, cookie-authenticated
    PC ajax API, then og meta of the page itself.
    """

    parser_name = "weibo"
    platform = Platform.WEIBO
    requires_cookie = True
    default_title = "Weibo post"

    ID_PATTERNS = [
        r"weibo\.com/\d+/([A-Za-z0-9]+)",
        r"weibo\.com/([A-Za-z0-9]+)",
        r"m\.weibo\.cn/(?:detail|status|statuses)/([A-Za-z0-9]+)",
        r"weibo\.cn/\d+/([A-Za-z0-9]+)",
    ]
    COOKIE_DOMAINS = ("weibo.com", "m.weibo.cn", "weibo.cn")

    async def parse(
        self,
        url: str,
        mode: ParseMode = ParseMode.ARTICLE_IMAGES,
        cookie: Optional[str] = None,
    ) -> ParseResult:
        logger.info("Weibo parsing", url=url, mode=mode.value)
        result = self._new_result(url)

        mid = self.extract_resource_id(url)
        if not mid:
            logger.warning("No Weibo mid in URL", url=url)
            return self._finalize(result)

        mobile_headers = self._api_headers(f"https://m.weibo.cn/detail/{mid}")

        data = await self._fetch_json(MOBILE_API.format(mid=mid), headers=mobile_headers, cookie=cookie)
        if self._fill_from_mobile(result, data, mode):
            return self._finalize(result)

        alt_headers = {**mobile_headers, "mweibo-pwa": "1"}
        data = await self._fetch_json(MOBILE_ALT_API.format(mid=mid), headers=alt_headers, cookie=cookie)
        if self._fill_from_mobile(result, data, mode) or self._fill_from_status(result, data, mode):
            return self._finalize(result)

        if cookie:
            ajax_headers = self._api_headers("https://weibo.com/")
            xsrf = parse_cookie_string(cookie).get("XSRF-TOKEN")
            if xsrf:
                ajax_headers["X-XSRF-TOKEN"] = xsrf
            data = await self._fetch_json(AJAX_API.format(mid=mid), headers=ajax_headers, cookie=cookie)
            if self._fill_from_status(result, data, mode):
                return self._finalize(result)

        logger.info("Weibo APIs empty, falling back to page meta", mid=mid)
        page = await self._fetch_text(url, headers=self._browser_headers(), cookie=cookie)
        self._fill_og_meta(result, page)
        return self._finalize(result)

    def _api_headers(self, referer: str) -> dict[str, str]:
        headers = self._browser_headers(referer=referer)
        headers["Accept"] = "application/json, text/plain, */*"
        headers["X-Requested-With"] = "XMLHttpRequest"
        return headers

    def _fill_metadata(self, result: ParseResult, status: dict[str, Any]) -> None:
        self._set_publish_time(result, get_str(status, "created_at"))

        nickname = get_str(status, "user", "screen_name")
        if nickname:
            result.author = nickname

        long_text = get_str(status, "longText", "longTextContent")
        text = strip_html(long_text) if long_text else get_str(status, "text_raw") or strip_html(get_str(status, "text"))
        if text:
            result.title = text

    def _fill_from_mobile(self, result: ParseResult, payload: Optional[JsonValue], mode: ParseMode) -> bool:
        """m.weibo.cn shape: {"ok": 1, "data": {...status...}}."""
        if not isinstance(payload, dict):
            return False
        ok = get_int(payload, "ok")
        if ok is not None and ok != 1:
            return False
        data = get_dict(payload, "data")
        if not data:
            return False

        self._fill_metadata(result, data)

        for pic in get_list(data, "pics"):
            result.add_image(first_str(pic, [("large", "url"), ("url",)]))
            if self._done(result, mode):
                return True

        self._fill_page_info_video(result, data)
        self._fill_mix_media(result, data, mode)
        return result.has_media

    def _fill_from_status(self, result: ParseResult, status: Optional[JsonValue], mode: ParseMode) -> bool:
        """PC ajax shape: the status object itself, pictures keyed by pic_ids."""
        if not isinstance(status, dict) or "ok" in status and "data" in status:
            return False

        self._fill_metadata(result, status)

        pic_infos = get_dict(status, "pic_infos") or {}
        for pid in get_list(status, "pic_ids"):
            info = get_dict(pic_infos, str(pid))
            if not info:
                continue

            if (get_str(info, "type") or "").lower() == "livephoto":
                if result.add_video(get_str(info, "video")) and self._done(result, mode):
                    return True

            result.add_image(first_str(info, PIC_SIZE_PATHS))
            if self._done(result, mode):
                return True

        self._fill_page_info_video(result, status)
        self._fill_mix_media(result, status, mode)
        return result.has_media

    @staticmethod
    def _fill_page_info_video(result: ParseResult, container: dict[str, Any]) -> None:
        page_info = get_dict(container, "page_info")
        if page_info:
            result.add_video(_video_from_node(page_info))

    def _fill_mix_media(self, result: ParseResult, container: dict[str, Any], mode: ParseMode) -> None:
        """mix_media_info: list (or {"items": [...]}) mixing pics, livephotos and videos."""
        mix = get_path(container, "mix_media_info")
        items = mix if isinstance(mix, list) else get_list(mix, "items")

        for item in items:
            kind = (get_str(item, "type") or "").lower()
            data = get_dict(item, "data") or item

            if "pic" in kind:
                sub_type = (get_str(data, "type") or get_str(data, "sub_type") or "").lower()
                if sub_type == "livephoto":
                    video = get_str(data, "video") or _video_from_node(data)
                    if result.add_video(video) and self._done(result, mode):
                        return
                if result.add_image(first_str(data, PIC_SIZE_PATHS)) and self._done(result, mode):
                    return
            elif "video" in kind:
                if result.add_video(_video_from_node(data)) and self._done(result, mode):
                    return
