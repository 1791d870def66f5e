"""Parser for Bilibili videos (bilibili.com/video/BV..., b23.tv)."""

from typing import Any, Optional

import structlog

from ..schemas.result import AUDIO_MARKER, ParseMode, ParseResult, Platform
from ..utils.json_utils import JsonValue, extract_object_after, get_dict, get_int, get_list, get_path, get_str, loads_lenient
from .base import BaseURLParser

logger = structlog.get_logger(__name__)

VIEW_API = "https://api.bilibili.com/x/web-interface/view?bvid={bvid}"
PLAYURL_API = "https://api.bilibili.com/x/player/playurl?bvid={bvid}&cid={cid}&qn={qn}&fnval={fnval}&fourk=1"

# Progressive mp4 first (single file), DASH streams second
PLAYURL_VARIANTS = [(80, 0), (80, 16)]

PLAYINFO_ANCHOR = "window.__playinfo__"
INITIAL_STATE_ANCHOR = "window.__INITIAL_STATE__"


def _https(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    if url.startswith("//"):
        return "https:" + url
    if url.startswith("http://"):
        return "https://" + url[len("http://") :]
    return url


def _stream_url(entry: JsonValue) -> Optional[str]:
    url = get_str(entry, "baseUrl") or get_str(entry, "base_url")
    if url:
        return url
    for backup in get_list(entry, "backupUrl") or get_list(entry, "backup_url"):
        if isinstance(backup, str) and backup:
            return backup
    return None


def pick_dash_streams(dash: JsonValue) -> tuple[Optional[str], Optional[str]]:
    """Best DASH video (height, then bandwidth) and best audio (bandwidth)."""
    best_video: Optional[str] = None
    best_video_key = (-1, -1)
    for entry in get_list(dash, "video"):
        url = _stream_url(entry)
        if not url:
            continue
        key = (get_int(entry, "height") or 0, get_int(entry, "bandwidth") or 0)
        if key > best_video_key:
            best_video_key = key
            best_video = url

    best_audio: Optional[str] = None
    best_bandwidth = -1
    for entry in get_list(dash, "audio"):
        url = _stream_url(entry)
        bandwidth = get_int(entry, "bandwidth") or 0
        if url and bandwidth > best_bandwidth:
            best_bandwidth = bandwidth
            best_audio = url

    return best_video, best_audio


def durl_urls(data: JsonValue) -> list[str]:
    urls = []
    for segment in get_list(data, "durl"):
        url = get_str(segment, "url")
        if not url:
            backups = get_list(segment, "backup_url")
            url = backups[0] if backups and isinstance(backups[0], str) else None
        if url:
            urls.append(url)
    return urls


class BilibiliParser(BaseURLParser):
    """
    URL parser for Bilibili videos.

    Tiers: view API + playurl API, embedded __playinfo__/__INITIAL_STATE__,
    og meta. Stream URLs are signed and expire; a caller that fails to
    download one should parse again.
    """

    parser_name = "bilibili"
    platform = Platform.BILIBILI
    default_title = "Bilibili video"

    ID_PATTERNS = [
        r"/video/(BV[0-9A-Za-z]+)",
        r"[?&]bvid=(BV[0-9A-Za-z]+)",
    ]
    COOKIE_DOMAINS = ("bilibili.com",)
    CANONICAL_URL_PATTERN = r"https?://(?:www\.|m\.)?bilibili\.com/video/BV[0-9A-Za-z]+"

    async def parse(
        self,
        url: str,
        mode: ParseMode = ParseMode.ARTICLE_IMAGES,
        cookie: Optional[str] = None,
    ) -> ParseResult:
        logger.info("Bilibili parsing", url=url, mode=mode.value)
        result = self._new_result(url)

        final_url = await self._resolve_short_link(url)
        result.resolved_url = final_url
        bvid = self.extract_resource_id(final_url)
        if not bvid:
            logger.warning("No BV id in URL", url=final_url)
            return self._finalize(result)

        cid = await self._fill_from_view_api(result, bvid, mode, cookie)
        if self._done(result, mode):
            return self._finalize(result)

        if cid and await self._fill_from_playurl(result, bvid, cid, mode, cookie):
            return self._finalize(result)

        page = await self._fetch_text(
            f"https://www.bilibili.com/video/{bvid}/", headers=self._browser_headers(referer="https://www.bilibili.com/"), cookie=cookie
        )
        if page:
            self._fill_from_page(result, page, mode)
            if not result.has_media:
                self._fill_og_meta(result, page)

        return self._finalize(result)

    def _api_headers(self, bvid: str) -> dict[str, str]:
        headers = self._browser_headers(referer=f"https://www.bilibili.com/video/{bvid}/")
        headers["Accept"] = "application/json, text/plain, */*"
        headers["Origin"] = "https://www.bilibili.com"
        return headers

    def _fill_video_data(self, result: ParseResult, data: dict[str, Any]) -> None:
        title = get_str(data, "title")
        if title:
            result.title = title
        owner = get_str(data, "owner", "name")
        if owner:
            result.author = owner
        self._set_publish_time(result, get_path(data, "pubdate"))

    async def _fill_from_view_api(
        self, result: ParseResult, bvid: str, mode: ParseMode, cookie: Optional[str]
    ) -> Optional[int]:
        """Metadata and cover; returns the cid of the first page."""
        payload = await self._fetch_json(VIEW_API.format(bvid=bvid), headers=self._api_headers(bvid), cookie=cookie)
        if get_int(payload, "code") not in (0, None):
            logger.info("View API refused", bvid=bvid, code=get_int(payload, "code"), message=get_str(payload, "message"))
            return None
        data = get_dict(payload, "data")
        if not data:
            return None

        self._fill_video_data(result, data)
        result.add_image(_https(get_str(data, "pic")))
        if self._done(result, mode):
            return None

        return get_int(data, "cid") or get_int(data, "pages", 0, "cid")

    async def _fill_from_playurl(
        self, result: ParseResult, bvid: str, cid: int, mode: ParseMode, cookie: Optional[str]
    ) -> bool:
        for qn, fnval in PLAYURL_VARIANTS:
            api_url = PLAYURL_API.format(bvid=bvid, cid=cid, qn=qn, fnval=fnval)
            payload = await self._fetch_json(api_url, headers=self._api_headers(bvid), cookie=cookie)
            if get_int(payload, "code") not in (0, None):
                logger.info("Playurl refused", bvid=bvid, fnval=fnval, code=get_int(payload, "code"))
                continue
            if self._add_streams(result, get_dict(payload, "data"), mode):
                return True
        return False

    def _add_streams(self, result: ParseResult, data: Optional[dict[str, Any]], mode: ParseMode) -> bool:
        """durl mp4 segments, else DASH video plus its audio track."""
        if not data:
            return False

        added = False
        for url in durl_urls(data):
            added |= result.add_video(url)
            if self._done(result, mode):
                return True
        if added:
            return True

        video, audio = pick_dash_streams(get_dict(data, "dash"))
        if not video:
            return False
        result.add_video(video)
        if audio and not self._done(result, mode):
            result.add_video(audio + AUDIO_MARKER)
        return True

    def _fill_from_page(self, result: ParseResult, page: str, mode: ParseMode) -> None:
        raw_state = extract_object_after(page, INITIAL_STATE_ANCHOR)
        state = loads_lenient(raw_state) if raw_state else None
        video_data = get_dict(state, "videoData")
        if video_data:
            self._fill_video_data(result, video_data)
            result.add_image(_https(get_str(video_data, "pic")))
            if self._done(result, mode):
                return

        raw_playinfo = extract_object_after(page, PLAYINFO_ANCHOR)
        playinfo = loads_lenient(raw_playinfo) if raw_playinfo else None
        self._add_streams(result, get_dict(playinfo, "data"), mode)
