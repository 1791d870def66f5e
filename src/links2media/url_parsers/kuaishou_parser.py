"""Parser for Kuaishou short videos and photo albums."""

import re
from typing import Any, Optional

import structlog

from ..schemas.result import ParseMode, ParseResult, Platform
from ..utils.json_utils import (
    JsonValue,
    extract_object_after,
    extract_script_json,
    extract_state,
    get_dict,
    get_list,
    get_path,
    get_str,
    loads_lenient,
    walk_json,
)
from ..utils.media_select import is_image_url
from .base import BaseURLParser

logger = structlog.get_logger(__name__)

STATE_ANCHORS = ["window.INIT_STATE", "window.__APOLLO_STATE__", "window.pageData"]
VIDEO_URL_KEYS = ("videoUrl", "playUrl", "mediaUrl", "mainUrl", "url")
IMAGE_URL_KEYS = ("url", "imageUrl", "coverUrl")
COVER_LIST_KEYS = ("webpCoverUrls", "coverUrls")
_MANIFEST = re.compile(r"manifest\s*:", re.IGNORECASE)


def _is_mp4(url: Optional[str]) -> bool:
    return bool(url) and ".mp4" in url.lower()


def _url_of(item: Any) -> Optional[str]:
    return item if isinstance(item, str) else get_str(item, "url")


def pick_mp4(node: JsonValue) -> Optional[str]:
    """First mp4 among the fields a photo/media node uses for its stream."""
    for key in ("main_mv_urls", "mainMvUrls"):
        for item in get_list(node, key):
            url = _url_of(item)
            if _is_mp4(url):
                return url

    for key in VIDEO_URL_KEYS:
        url = get_str(node, key)
        if _is_mp4(url):
            return url

    for item in get_list(node, "urlList"):
        if isinstance(item, str) and _is_mp4(item):
            return item

    for key in ("media", "photo"):
        child = get_dict(node, key)
        if child:
            url = pick_mp4(child)
            if url:
                return url
    return None


def pick_image(node: JsonValue) -> Optional[str]:
    """First image among the cover and image fields of a node."""
    for item in get_list(node, "images"):
        url = pick_image(item)
        if url:
            return url

    for key in IMAGE_URL_KEYS:
        url = get_str(node, key)
        if is_image_url(url):
            return url

    for key in ("urls", "urlList"):
        for item in get_list(node, key):
            if isinstance(item, str) and is_image_url(item):
                return item

    for key in COVER_LIST_KEYS:
        for item in get_list(node, key):
            url = _url_of(item)
            if is_image_url(url):
                return url

    for key in ("media", "photo"):
        child = get_dict(node, key)
        if child:
            url = pick_image(child)
            if url:
                return url
    return None


def atlas_image_urls(atlas: dict[str, Any]) -> list[str]:
    """Album pictures: first CDN host joined with every path in atlas.list."""
    cdn = get_path(atlas, "cdn")
    host: Optional[str] = None
    if isinstance(cdn, str) and cdn.strip():
        host = cdn
    elif isinstance(cdn, list):
        host = next((item for item in cdn if isinstance(item, str) and item.strip()), None)
    if not host:
        for item in get_list(atlas, "cdnList"):
            candidate = get_str(item, "cdn") if isinstance(item, dict) else item
            if isinstance(candidate, str) and candidate.strip():
                host = candidate
                break
    if not host:
        return []

    base = host if "://" in host else f"https://{host}"
    base = base.rstrip("/")

    urls = []
    for path in get_list(atlas, "list"):
        if not isinstance(path, str) or not path.strip():
            continue
        if path.lower().startswith("http"):
            url = path
        elif path.startswith("/"):
            url = base + path
        else:
            url = f"{base}/{path}"
        if is_image_url(url):
            urls.append(url)
    return urls


class KuaishouParser(BaseURLParser):
    """
    URL parser for Kuaishou.

    Pages carry state under one of several globals; each top-level entry
    holding a "photo" object describes one post.
    """

    parser_name = "kuaishou"
    platform = Platform.KUAISHOU
    default_title = "Kuaishou post"

    ID_PATTERNS = [
        r"kuaishou\.com/(?:short-video|photo|fw/photo)/([0-9A-Za-z_-]+)",
        r"[?&]photoId=([0-9A-Za-z_-]+)",
        r"v\.kuaishou\.com/([0-9A-Za-z]+)",
    ]
    COOKIE_DOMAINS = ("kuaishou.com",)

    async def parse(
        self,
        url: str,
        mode: ParseMode = ParseMode.ARTICLE_IMAGES,
        cookie: Optional[str] = None,
    ) -> ParseResult:
        logger.info("Kuaishou parsing", url=url, mode=mode.value)
        result = self._new_result(url)

        final_url = await self._resolve_short_link(url)
        result.resolved_url = final_url

        headers = self._browser_headers(referer=final_url, mobile=True)
        page = await self._fetch_text(final_url, headers=headers, cookie=cookie)
        if not page:
            return self._finalize(result)

        self._fill_og_meta(result, page, want_image=False)

        state = extract_state(page, STATE_ANCHORS) or extract_script_json(page, "__NEXT_DATA__")
        if isinstance(state, dict):
            self._extract_photo_blocks(result, state, mode)
            if self._done(result, mode):
                return self._finalize(result)

        if not result.video_urls or not result.image_urls:
            self._fill_from_manifests(result, page, mode)
            if self._done(result, mode):
                return self._finalize(result)

        if not result.video_urls:
            self._scan_direct_links(result, page, mode, images=False)
        if not result.image_urls and not self._done(result, mode):
            self._scan_direct_links(result, page, mode, videos=False)

        return self._finalize(result)

    def _extract_photo_blocks(self, result: ParseResult, state: dict[str, Any], mode: ParseMode) -> None:
        for block in state.values():
            photo = get_dict(block, "photo")
            if not photo:
                continue

            caption = get_str(photo, "caption")
            if caption:
                result.title = caption
            user_name = get_str(photo, "userName")
            if user_name:
                result.author = user_name
            self._set_publish_time(result, get_path(photo, "timestamp"))

            if result.add_video(pick_mp4(photo)) and self._done(result, mode):
                return

            result.add_image(pick_image(photo))

            atlas = get_dict(block, "atlas")
            if atlas:
                for url in atlas_image_urls(atlas):
                    result.add_image(url)

            if self._done(result, mode):
                return

    def _fill_from_manifests(self, result: ParseResult, page: str, mode: ParseMode) -> None:
        """Inline `manifest: {...}` player configs."""
        for match in _MANIFEST.finditer(page):
            raw = extract_object_after(page[match.start() :], "manifest")
            manifest = loads_lenient(raw) if raw else None
            if not isinstance(manifest, dict):
                continue

            found: list[str] = []

            def _visit(key: str, value: JsonValue) -> bool:
                if key in ("url", "backupUrl") and isinstance(value, str) and _is_mp4(value):
                    found.append(value)
                    return True
                return False

            walk_json(manifest, _visit)
            if found and result.add_video(found[0]) and self._done(result, mode):
                return

            if result.add_image(pick_image(manifest)) and self._done(result, mode):
                return
