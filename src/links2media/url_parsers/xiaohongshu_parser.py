"""Parser for Xiaohongshu notes (xiaohongshu.com, xhslink.com)."""

import re
from typing import Any, Optional

import structlog

from ..schemas.result import ParseMode, ParseResult, Platform
from ..utils.json_utils import (
    JsonValue,
    extract_object_after,
    find_arrays_by_key,
    get_dict,
    get_list,
    get_path,
    get_str,
    loads_lenient,
)
from ..utils.media_select import extract_resolution, is_image_url, select_best_image_url
from .base import BaseURLParser

logger = structlog.get_logger(__name__)

NOTE_URL = "https://www.xiaohongshu.com/explore/{note_id}"
STATE_ANCHOR = "window.__INITIAL_STATE__"
IMAGE_ARRAY_KEYS = ("imageList", "images", "image_infos", "image_info_list")
VIDEO_URL_KEYS = ("playUrl", "url", "mediaUrl", "mainUrl")
PUBLISH_TIME_KEYS = ("lastUpdateTime", "time", "createTime", "publishTime", "postTime")


def _is_note_image(url: Optional[str]) -> bool:
    # xhscdn serves images without a dotted extension, e.g. ...!nd_dft_wlteh_jpg_3
    if not url:
        return False
    lowered = url.lower()
    return is_image_url(url) or ("xhscdn.com" in lowered and "jpg" in lowered)


def _is_video(url: Optional[str]) -> bool:
    return bool(url) and (".mp4" in url.lower() or ".mov" in url.lower())


def image_candidates(descriptor: JsonValue) -> list[str]:
    """Alternative URLs of one image descriptor, most preferred first."""
    candidates: list[str] = []

    def _add(url: Optional[str]) -> None:
        if url and url not in candidates:
            candidates.append(url)

    _add(get_str(descriptor, "urlDefault"))

    scenes = {
        (get_str(info, "imageScene") or "").upper(): get_str(info, "url")
        for info in get_list(descriptor, "infoList")
        if get_str(info, "url")
    }
    _add(scenes.get("WB_DFT"))
    _add(scenes.get("WB_PRV"))

    _add(get_str(descriptor, "urlPre"))
    _add(get_str(descriptor, "url"))
    for url in get_list(descriptor, "urls"):
        if isinstance(url, str):
            _add(url)

    return [url for url in candidates if _is_note_image(url)]


def pick_descriptor_image(descriptor: JsonValue) -> Optional[str]:
    """
    One URL per descriptor.

    When the alternatives carry size hints the largest wins, otherwise the
    preferred field order decides.
    """
    candidates = image_candidates(descriptor)
    if not candidates:
        return None
    if any(extract_resolution(url) != (0, 0) for url in candidates):
        return select_best_image_url(candidates)
    return candidates[0]


def pick_video_url(video: JsonValue) -> Optional[str]:
    for key in VIDEO_URL_KEYS:
        url = get_str(video, key)
        if _is_video(url):
            return url

    stream = get_dict(video, "media", "stream") or {}
    for entries in stream.values():
        # Either a direct URL or a list of codec entries with masterUrl
        if isinstance(entries, str) and _is_video(entries):
            return entries
        for entry in entries if isinstance(entries, list) else []:
            url = get_str(entry, "masterUrl") or get_str(entry, "url")
            if _is_video(url):
                return url
    return None


class XiaohongshuParser(BaseURLParser):
    """
    URL parser for Xiaohongshu notes.

    The note page embeds window.__INITIAL_STATE__, a JS literal full of
    undefined values; it is repaired before parsing.
    """

    parser_name = "xiaohongshu"
    platform = Platform.XIAOHONGSHU
    default_title = "Xiaohongshu note"

    ID_PATTERNS = [
        r"xiaohongshu\.com/explore/([0-9a-zA-Z]{16,40})",
        r"xiaohongshu\.com/(?:discovery|discover)/item/([0-9a-zA-Z]{16,40})",
    ]
    COOKIE_DOMAINS = ("xiaohongshu.com",)
    CANONICAL_URL_PATTERN = r"https?://(?:www\.)?xiaohongshu\.com/(?:explore|discovery/item)/[0-9a-zA-Z]{16,40}"

    def _map_app_scheme(self, location: str) -> Optional[str]:
        match = re.match(r"xiaohongshu://.*?note/([0-9a-zA-Z]{16,40})", location, re.IGNORECASE)
        return NOTE_URL.format(note_id=match.group(1)) if match else None

    async def parse(
        self,
        url: str,
        mode: ParseMode = ParseMode.ARTICLE_IMAGES,
        cookie: Optional[str] = None,
    ) -> ParseResult:
        logger.info("Xiaohongshu parsing", url=url, mode=mode.value)
        result = self._new_result(url)

        final_url = await self._resolve_short_link(url)
        result.resolved_url = final_url
        note_id = self.extract_resource_id(final_url)

        page = await self._fetch_text(final_url, headers=self._browser_headers(), cookie=cookie)
        if not page:
            return self._finalize(result)

        raw_state = extract_object_after(page, STATE_ANCHOR)
        state = loads_lenient(raw_state) if raw_state else None
        if isinstance(state, dict):
            self._fill_from_state(result, state, note_id, mode)
            if not result.image_urls:
                self._fill_images_anywhere(result, state, mode)
            if self._done(result, mode):
                return self._finalize(result)
        elif raw_state:
            logger.warning("Initial state unparseable", note_id=note_id)

        if not result.image_urls:
            self._scan_direct_links(result, page, mode, videos=False)
        if not result.video_urls and not self._done(result, mode):
            self._scan_direct_links(result, page, mode, images=False)

        if not result.title:
            self._fill_og_meta(result, page, want_image=False)

        return self._finalize(result)

    def _fill_from_state(
        self, result: ParseResult, state: dict[str, Any], note_id: Optional[str], mode: ParseMode
    ) -> None:
        section = get_dict(state, "note")
        if not section:
            return

        if self._fill_from_detail_map(result, section, note_id, mode):
            return

        # Older page shape: note.note / note.imageList
        note = get_dict(section, "note") or section
        title = get_str(note, "title") or get_str(note, "desc")
        if title:
            result.title = title
        for key in PUBLISH_TIME_KEYS:
            if self._set_publish_time(result, get_path(note, key)):
                break

        for node in (note, section):
            for key in IMAGE_ARRAY_KEYS:
                self._collect_images(result, get_list(node, key), mode)
                if result.image_urls:
                    break
            if result.image_urls:
                break
        if not result.image_urls:
            self._fill_images_anywhere(result, section, mode)
        if self._done(result, mode):
            return

        video = get_dict(section, "video") or get_dict(note, "video")
        if video:
            result.add_video(pick_video_url(video))

    def _fill_from_detail_map(
        self, result: ParseResult, section: dict[str, Any], note_id: Optional[str], mode: ParseMode
    ) -> bool:
        """note.noteDetailMap[<id>].note: title, author, time, imageList, video."""
        detail_map = get_dict(section, "noteDetailMap")
        if not detail_map:
            return False

        target_id = note_id or get_str(section, "firstNoteId") or get_str(section, "currentNoteId")
        entry = detail_map.get(target_id) if target_id else None
        if not isinstance(entry, dict):
            entry = next((value for value in detail_map.values() if isinstance(value, dict)), None)
        if entry is None:
            return False

        node = get_dict(entry, "note") or entry

        title = (get_str(node, "title") or "") + (get_str(node, "desc") or "")
        if title.strip():
            result.title = title
        nickname = get_str(node, "user", "nickname")
        if nickname:
            result.author = nickname
        self._set_publish_time(result, get_path(node, "lastUpdateTime") or get_path(node, "time"))

        self._collect_images(result, get_list(node, "imageList"), mode)
        if self._done(result, mode):
            return True

        video = get_dict(node, "video")
        if video:
            result.add_video(pick_video_url(video))

        return result.has_media or bool(result.title)

    def _collect_images(self, result: ParseResult, descriptors: list[Any], mode: ParseMode) -> None:
        for descriptor in descriptors:
            if result.add_image(pick_descriptor_image(descriptor)) and self._done(result, mode):
                return

    def _fill_images_anywhere(self, result: ParseResult, node: JsonValue, mode: ParseMode) -> None:
        """Catch-all: any image array anywhere in the state tree."""
        for descriptors in find_arrays_by_key(node, IMAGE_ARRAY_KEYS, max_depth=8):
            self._collect_images(result, descriptors, mode)
            if self._done(result, mode):
                return
