"""
Image candidate scoring, selection and deduplication.

CDNs serve the same picture under many URLs (resize suffixes, mirror hosts,
signed queries). These helpers rank candidates by what the URL itself says
about resolution and compression, and collapse mirrors of one picture.
"""

import re
from typing import TYPE_CHECKING, Iterable, Optional
from urllib.parse import urlsplit

import structlog

from ..config import settings

if TYPE_CHECKING:
    from .http_client import HttpTransport

logger = structlog.get_logger(__name__)

_RES_SHRINK = re.compile(r"shrink:(\d+):(\d+)", re.IGNORECASE)
_RES_SH = re.compile(r"[?&]sh=(\d+)_(\d+)", re.IGNORECASE)
_RES_WH = re.compile(r"[?&]w=(\d+)&.*?[?&]h=(\d+)", re.IGNORECASE)
_RES_WXH = re.compile(r"(\d{3,4})x(\d{3,4})", re.IGNORECASE)

_IMAGE_EXT = re.compile(r"\.(jpg|jpeg|png|webp)(\?|$)", re.IGNORECASE)
_HOST_SHARD = re.compile(r"^p\d+\.", re.IGNORECASE)


def is_image_url(url: Optional[str]) -> bool:
    return bool(url) and bool(_IMAGE_EXT.search(url))


def extract_resolution(url: str) -> tuple[int, int]:
    """
    Read (width, height) hints from a URL, or (0, 0).

    Recognised forms: shrink:W:H, sh=W_H, w=..&h=.., WxH.
    """
    for pattern in (_RES_SHRINK, _RES_SH, _RES_WH, _RES_WXH):
        match = pattern.search(url)
        if match:
            return int(match.group(1)), int(match.group(2))
    return 0, 0


def _pixels(url: str) -> int:
    width, height = extract_resolution(url)
    return width * height


def heuristic_image_score(url: str) -> int:
    """Score an image URL by resolution hint, format and quality keywords."""
    pixels = _pixels(url)
    score = min(pixels // 1000, 1500) if pixels > 0 else 0

    if "q75" in url.lower():
        score -= 80
    if "shrink:" in url.lower():
        score += 120

    lowered = url.lower()
    path = _path_of(lowered)
    if path.endswith((".jpeg", ".jpg")):
        score += 40
    elif path.endswith(".png"):
        score += 35
    elif path.endswith(".webp"):
        score += 10

    if "origin" in lowered or "raw" in lowered:
        score += 200

    if "watermark" in lowered or "wm_" in lowered:
        score -= 150
    if "compress" in lowered or "thumb" in lowered or "small" in lowered:
        score -= 100

    return score


def _path_of(url: str) -> str:
    try:
        return urlsplit(url).path
    except ValueError:
        return url


def _rank_key(url: str) -> tuple[int, int, int, str]:
    return heuristic_image_score(url), _pixels(url), len(url), url


def _ranked(urls: Iterable[str]) -> list[str]:
    unique = {url for url in urls if url}
    return sorted(unique, key=_rank_key, reverse=True)


def select_best_image_url(urls: Iterable[str]) -> Optional[str]:
    """
    Pick the best candidate without any network access.

    Ordering is score, then pixels, then URL length, then the URL itself,
    so the answer does not depend on input order.
    """
    ranked = _ranked(urls)
    return ranked[0] if ranked else None


async def select_best_image_url_probed(
    urls: Iterable[str],
    transport: Optional["HttpTransport"],
    candidate_limit: Optional[int] = None,
    pixel_tolerance: Optional[float] = None,
) -> Optional[str]:
    """
    Like select_best_image_url, but probes near-ties for their byte size.

    Candidates whose pixel count is within pixel_tolerance of the top
    candidate (at most candidate_limit of them) are probed with HEAD, then
    with a one-byte Range GET. The largest Content-Length wins. Probe
    failures are ignored; with no usable answer the heuristic pick stands.
    """
    ranked = _ranked(urls)
    if not ranked:
        return None

    top = ranked[0]
    if transport is None or not settings.probe_enabled or len(ranked) == 1:
        return top

    limit = settings.probe_candidate_limit if candidate_limit is None else candidate_limit
    tolerance = settings.probe_pixel_tolerance if pixel_tolerance is None else pixel_tolerance

    base_pixels = max(1, _pixels(top))
    candidates = [
        url for url in ranked if abs(_pixels(url) - base_pixels) / base_pixels <= tolerance
    ][:limit]
    if len(candidates) <= 1:
        return top

    best_url: Optional[str] = None
    best_size = -1
    for url in candidates:
        size = await transport.probe_content_length(url)
        if size is not None and size > best_size:
            best_size = size
            best_url = url

    if best_url and best_url != top:
        logger.debug("Probe overrode heuristic pick", heuristic=top, chosen=best_url, size=best_size)
    return best_url or top


def normalize_image_key(url: str) -> str:
    """
    Grouping key identifying one picture across CDN mirrors.

    Drops query and fragment, strips a numbered shard prefix from the host
    (p3.example.com -> example.com), cuts the path at /aweme-image/ or /tos-
    and keeps only its last two segments.
    """
    if not url or not url.strip():
        return ""

    no_query = re.split(r"[?#]", url, maxsplit=1)[0]
    try:
        parts = urlsplit(no_query)
    except ValueError:
        return no_query.lower()
    if not parts.hostname:
        return no_query.lower()

    host = _HOST_SHARD.sub("", parts.hostname)
    path = parts.path

    lowered = path.lower()
    idx = lowered.find("/aweme-image/")
    if idx >= 0:
        path = path[idx:]
        lowered = path.lower()
    idx = lowered.find("/tos-")
    if idx >= 0:
        path = path[idx:]

    segments = [seg for seg in path.split("/") if seg]
    if len(segments) >= 2:
        path = f"{segments[-2]}/{segments[-1]}"
    elif segments:
        path = segments[0]
    else:
        path = ""

    return f"{host}/{path}".lower()


def dedupe_image_urls(urls: list[str]) -> list[str]:
    """
    Keep the best-scoring URL of each normalize_image_key group.

    Groups stay in the order they were first seen. Applying this twice
    gives the same list.
    """
    if len(urls) <= 1:
        return list(urls)

    groups: dict[str, list[str]] = {}
    for url in urls:
        key = normalize_image_key(url)
        if not key:
            continue
        groups.setdefault(key, []).append(url)

    return [select_best_image_url(members) for members in groups.values()]


def pick_best_from_ladder(entries: Iterable[tuple[str, int, int, int]]) -> Optional[str]:
    """
    Pick the best stream from (url, width, height, bitrate) entries.

    Score is w*h*10 + bitrate (each factor at least 1). Earlier entries win ties.
    """
    best_url: Optional[str] = None
    best_score = -1
    for url, width, height, bitrate in entries:
        if not url:
            continue
        score = max(1, width) * max(1, height) * 10 + max(1, bitrate)
        if score > best_score:
            best_score = score
            best_url = url
    return best_url


def strip_watermark_token(url: str) -> str:
    """Douyin serves the watermark-free stream on /play/ instead of /playwm/."""
    return url.replace("playwm", "play") if "playwm" in url else url
