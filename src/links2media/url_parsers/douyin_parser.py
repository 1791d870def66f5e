"""Parser for Douyin videos and image posts."""

import html as html_lib
import re
from typing import Any, Optional

import structlog

from ..schemas.result import AUDIO_MARKER, ParseMode, ParseResult, Platform
from ..utils.json_utils import (
    JsonValue,
    extract_state,
    get_dict,
    get_int,
    get_list,
    get_path,
    get_str,
    walk_json,
)
from ..utils.media_select import (
    is_image_url,
    pick_best_from_ladder,
    select_best_image_url,
    select_best_image_url_probed,
    strip_watermark_token,
)
from .base import BaseURLParser

logger = structlog.get_logger(__name__)

ITEMINFO_API = "https://www.iesdouyin.com/web/api/v2/aweme/iteminfo/?item_ids={aweme_id}"
NO_WATERMARK_PLAY = "https://aweme.snssdk.com/aweme/v1/play/?video_id={vid}&ratio=1080p&line=0"

STATE_ANCHORS = [
    "window.__INIT_PROPS__",
    "window.__INITIAL_STATE__",
    "window.REDUX_STATE",
    "window.SIGI_STATE",
    "window._ROUTER_DATA",
]

AWEME_TYPE_IMAGES = 2
AWEME_TYPE_VIDEO = 4

_VIDEO_TAG = re.compile(r"<video\b[^>]*\bsrc=[\"'](?P<u>[^\"']+)[\"']", re.IGNORECASE)
_SOURCE_TAG = re.compile(r"<source\b[^>]*\bsrc=[\"'](?P<u>[^\"']+)[\"']", re.IGNORECASE)
_VID_URI = re.compile(r"\"uri\"\s*:\s*\"(?P<u>v[^\"]+)\"", re.IGNORECASE)
_VID_FIELD = re.compile(r"\"vid\"\s*:\s*\"(?P<u>[^\"]+)\"", re.IGNORECASE)


def _is_mp4(url: Optional[str]) -> bool:
    return bool(url) and ".mp4" in url.lower()


def _image_urls(node: JsonValue) -> list[str]:
    return [url for url in get_list(node, "url_list") if isinstance(url, str) and is_image_url(url)]


def build_no_watermark_url(video: JsonValue) -> Optional[str]:
    """Play endpoint for the video id found in play_addr.uri (or vid)."""
    vid = get_str(video, "play_addr", "uri") or get_str(video, "vid")
    return NO_WATERMARK_PLAY.format(vid=vid) if vid else None


def pick_best_mp4(video: JsonValue) -> Optional[str]:
    """
    Best mp4 from the bit_rate ladder, else the first mp4 in play_addr.

    Ladder entries share the video's width/height and differ by bit_rate.
    """
    width = get_int(video, "width") or 0
    height = get_int(video, "height") or 0

    entries = []
    for rung in get_list(video, "bit_rate"):
        play = get_dict(rung, "play_addr")
        if not play:
            continue
        urls = [url for url in get_list(play, "url_list") if isinstance(url, str)]
        if not urls and get_str(play, "url"):
            urls = [get_str(play, "url")]
        bitrate = get_int(rung, "bit_rate") or 0
        entries.extend((url, width, height, bitrate) for url in urls if _is_mp4(url))

    best = pick_best_from_ladder(entries)
    if best:
        return strip_watermark_token(best)

    for url in get_list(video, "play_addr", "url_list"):
        if isinstance(url, str) and _is_mp4(url):
            return strip_watermark_token(url)
    return None


def pick_cover(video: JsonValue) -> Optional[str]:
    for key in ("origin_cover", "cover", "dynamic_cover"):
        cover = get_dict(video, key)
        if not cover:
            continue
        best = select_best_image_url(_image_urls(cover))
        if best:
            return best
        single = get_str(cover, "url")
        if single:
            return single
    return None


def pick_music(item: JsonValue) -> Optional[str]:
    play = get_dict(item, "music", "play_url")
    if not play:
        return None
    for url in get_list(play, "url_list"):
        if isinstance(url, str) and url.strip():
            return url
    uri = get_str(play, "uri")
    return uri if uri and uri.lower().startswith("http") else None


class DouyinParser(BaseURLParser):
    """
    URL parser for Douyin.

    Tiers: iteminfo API, page JSON (router data first, then a generic walk),
    <video>/<source> tags and vid scan, direct links.
    """

    parser_name = "douyin"
    platform = Platform.DOUYIN
    default_title = "Douyin post"

    ID_PATTERNS = [
        r"(?:douyin|iesdouyin)\.com/(?:.*?/)?(?:video|note)/(\d+)",
        r"[?&](?:item_ids|aweme_id|modal_id)=(\d+)",
    ]
    COOKIE_DOMAINS = ("douyin.com", "iesdouyin.com")

    async def parse(
        self,
        url: str,
        mode: ParseMode = ParseMode.ARTICLE_IMAGES,
        cookie: Optional[str] = None,
    ) -> ParseResult:
        logger.info("Douyin parsing", url=url, mode=mode.value)
        result = self._new_result(url)

        final_url = await self._resolve_short_link(url)
        result.resolved_url = final_url
        aweme_id = self.extract_resource_id(final_url)

        if aweme_id and await self._fill_from_iteminfo(result, aweme_id, mode, cookie):
            return self._finalize(result, dedupe=True)

        page = await self._fetch_text(
            final_url, headers=self._browser_headers(referer="https://www.iesdouyin.com/", mobile=True), cookie=cookie
        )
        if not page:
            return self._finalize(result, dedupe=True)

        self._fill_og_meta(result, page, want_image=False)

        state = extract_state(page, STATE_ANCHORS)
        if isinstance(state, dict):
            router_ok = await self._fill_from_router_data(result, state, mode)
            if not router_ok:
                self._fill_from_walk(result, state, mode)
            if self._done(result, mode):
                return self._finalize(result, dedupe=True)

        self._scan_player_urls(result, page, mode)
        if self._done(result, mode):
            return self._finalize(result, dedupe=True)

        if not result.video_urls:
            self._scan_direct_links(result, page, mode, images=False)
        if not result.image_urls and not self._done(result, mode):
            self._scan_direct_links(result, page, mode, videos=False)

        return self._finalize(result, dedupe=True)

    async def _fill_from_iteminfo(
        self, result: ParseResult, aweme_id: str, mode: ParseMode, cookie: Optional[str]
    ) -> bool:
        headers = self._browser_headers(referer=f"https://www.iesdouyin.com/share/video/{aweme_id}/", mobile=True)
        headers["Accept"] = "application/json, text/plain, */*"
        headers["X-Requested-With"] = "XMLHttpRequest"

        payload = await self._fetch_json(ITEMINFO_API.format(aweme_id=aweme_id), headers=headers, cookie=cookie)
        item = get_dict(payload, "item_list", 0)
        if not item:
            return False

        self._fill_item_metadata(result, item)

        cover = pick_cover(get_dict(item, "video"))
        if cover:
            result.add_image(cover, front=True)
            if self._done(result, mode):
                return True

        got_any = await self._collect_images(result, get_list(item, "images"), mode)
        if not got_any:
            got_any = await self._collect_images(result, get_list(item, "image_post_info", "images"), mode)

        video = get_dict(item, "video")
        if video:
            self._add_video_variants(result, video)
            if self._done(result, mode):
                return True

        result.add_video(self._music_entry(item))
        return got_any or bool(result.video_urls)

    def _fill_item_metadata(self, result: ParseResult, item: dict[str, Any]) -> None:
        desc = get_str(item, "desc")
        if desc:
            result.title = desc
        nickname = get_str(item, "author", "nickname")
        if nickname:
            result.author = nickname
        self._set_publish_time(result, get_path(item, "create_time"))

    @staticmethod
    def _add_video_variants(result: ParseResult, video: JsonValue) -> None:
        """No-watermark play URL goes first, the ladder pick after it."""
        best = pick_best_mp4(video)
        no_watermark = build_no_watermark_url(video) or best
        if no_watermark:
            if no_watermark in result.video_urls:
                result.video_urls.remove(no_watermark)
            result.add_video(no_watermark, front=True)
        if best and best != no_watermark:
            result.add_video(best)

    @staticmethod
    def _music_entry(item: JsonValue) -> Optional[str]:
        music = pick_music(item)
        return music + AUDIO_MARKER if music else None

    async def _collect_images(self, result: ParseResult, images: list[Any], mode: ParseMode) -> bool:
        """One best URL per gallery image, probing near-ties for byte size."""
        added = False
        for image in images:
            best = await select_best_image_url_probed(_image_urls(image), self.transport)
            if not best:
                display = get_dict(image, "display_image")
                best = await select_best_image_url_probed(_image_urls(display), self.transport)
                if not best:
                    best = get_str(display, "url")
            if result.add_image(best):
                added = True
                if self._done(result, mode):
                    return True
        return added

    async def _fill_from_router_data(self, result: ParseResult, state: dict[str, Any], mode: ParseMode) -> bool:
        """_ROUTER_DATA: loaderData["video_(id)/page" | "note_(id)/page"].videoInfoRes.item_list."""
        loader = get_dict(state, "loaderData")
        if not loader:
            return False

        target = None
        for key, value in loader.items():
            name = key.lower().replace("\\u002f", "/")
            if ("video_(id)" in name or "note_(id)" in name) and name.endswith("/page"):
                target = value
                break

        items = get_list(target, "videoInfoRes", "item_list")
        if not items:
            return False

        for item in items:
            self._fill_item_metadata(result, item)
            aweme_type = get_int(item, "aweme_type")

            if aweme_type == AWEME_TYPE_IMAGES:
                await self._collect_images(result, get_list(item, "images"), mode)
            elif aweme_type == AWEME_TYPE_VIDEO:
                video = get_dict(item, "video")
                if video:
                    self._add_video_variants(result, video)
                    if self._done(result, mode):
                        return True
                    cover = pick_cover(video)
                    if cover:
                        result.add_image(cover, front=True)
            else:
                await self._collect_images(result, get_list(item, "images"), mode)
                result.add_video(pick_best_mp4(get_dict(item, "video")))
            if self._done(result, mode):
                return True

            result.add_video(self._music_entry(item))

        return result.has_media

    def _fill_from_walk(self, result: ParseResult, state: JsonValue, mode: ParseMode) -> None:
        """Generic walk over unknown page state: desc, image and mp4 fields anywhere."""

        def _visit(key: str, value: JsonValue) -> bool:
            if key == "desc" and isinstance(value, str) and value.strip() and not result.title:
                result.title = value
            if isinstance(value, str):
                if key in ("url", "img_url", "cover") and is_image_url(value):
                    result.add_image(value)
                elif key in ("playAddr", "playApi", "play_addr", "url") and _is_mp4(value):
                    result.add_video(strip_watermark_token(value))
            elif isinstance(value, dict) and key in ("play_addr", "playAddr", "cover", "display_image"):
                urls = [url for url in get_list(value, "url_list") if isinstance(url, str)]
                mp4 = next((url for url in urls if _is_mp4(url)), None)
                if mp4:
                    result.add_video(strip_watermark_token(mp4))
                else:
                    result.add_image(select_best_image_url(url for url in urls if is_image_url(url)))
            return self._done(result, mode)

        walk_json(state, _visit, max_depth=12)

    def _scan_player_urls(self, result: ParseResult, page: str, mode: ParseMode) -> None:
        """<video>/<source> tags, bare mp4/m3u8 links and the vid-derived play URL."""
        for pattern in (_VIDEO_TAG, _SOURCE_TAG):
            for match in pattern.finditer(page):
                if result.add_video(html_lib.unescape(match.group("u"))) and self._done(result, mode):
                    return

        self._scan_direct_links(result, page, mode, images=False)
        if self._done(result, mode):
            return

        match = _VID_URI.search(page) or _VID_FIELD.search(page)
        if match:
            play = NO_WATERMARK_PLAY.format(vid=match.group("u"))
            if result.add_video(play, front=True) and self._done(result, mode):
                return

        for url in list(result.video_urls):
            if "playwm" in url:
                result.add_video(strip_watermark_token(url), front=True)
