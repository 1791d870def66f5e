"""
Resilient media downloader.

Each (url, destination) pair runs a small state machine:

    FULL_GET -> success -> done
             -> retryable status -> PROBE_LENGTH -> CHUNKED_DOWNLOAD -> done
                                                 -> no length -> backoff -> FULL_GET
             -> non-retryable status -> failed
             -> network error -> backoff -> FULL_GET (last attempt: failed)

Every status, probe and exception lands in the attempt log, which is returned
to the caller whether or not the download succeeds.
"""

import asyncio
import re
from pathlib import Path
from typing import Optional

import httpx
import structlog

from .config import settings
from .schemas.result import DownloadOutcome
from .utils.http_client import HttpTransport
from .utils.retry import backoff_delay
from .utils.url_utils import get_host

logger = structlog.get_logger(__name__)

BILIBILI_CDN_MARKERS = ("bilivideo.com", "bilivideo.cn", "bilibili.com", "upos-", "mcdn.bilivideo.cn")
WEIBO_CDN_MARKERS = ("sinaimg.cn", "weibo.com", "weibocdn.com")
WECHAT_CDN_MARKERS = ("qpic.cn",)
DOUYIN_CDN_MARKERS = ("douyinpic.com", "douyinvod.com", "douyincdn.com", "snssdk.com", "amemv.com", "douyin.com")
XIAOHONGSHU_CDN_MARKERS = ("xhscdn.com", "xiaohongshu.com")
KUAISHOU_CDN_MARKERS = ("kwimgs.com", "yximgs.com", "kwaicdn.com", "kuaishou.com")

_WRITE_BUFFER = 64 * 1024
_CONTENT_RANGE = re.compile(r"\s*bytes\s+(\d+)-(\d+)/(?:\d+|\*)", re.IGNORECASE)


def build_download_headers(url: str, cookie: Optional[str] = None) -> dict[str, str]:
    """
    Referer/Origin/Sec-Fetch headers chosen from the target host.

    Hot-link protection on each platform's CDN checks the Referer; Bilibili
    lines also want the Sec-Fetch trio. An explicit cookie is attached as-is.
    """
    headers = {
        "Accept": "*/*",
        "Accept-Encoding": "identity",
        "Cache-Control": "no-cache",
    }
    lowered = url.lower()
    host = get_host(url)

    if any(marker in lowered for marker in BILIBILI_CDN_MARKERS):
        headers["Referer"] = "https://www.bilibili.com/"
        headers["Origin"] = "https://www.bilibili.com"
        headers["Sec-Fetch-Site"] = "cross-site"
        headers["Sec-Fetch-Mode"] = "cors"
        headers["Sec-Fetch-Dest"] = "video"
    elif any(marker in host for marker in WEIBO_CDN_MARKERS):
        headers["Referer"] = "https://weibo.com/"
    elif any(marker in host for marker in WECHAT_CDN_MARKERS):
        headers["Referer"] = "https://mp.weixin.qq.com/"
    elif any(marker in host for marker in DOUYIN_CDN_MARKERS):
        headers["Referer"] = "https://www.douyin.com/"
    elif any(marker in host for marker in XIAOHONGSHU_CDN_MARKERS):
        headers["Referer"] = "https://www.xiaohongshu.com/"
    elif any(marker in host for marker in KUAISHOU_CDN_MARKERS):
        headers["Referer"] = "https://www.kuaishou.com/"

    if cookie and cookie.strip():
        headers["Cookie"] = cookie.strip()

    return headers


class ResilientDownloader:
    """Download engine with retry, length probing and chunked Range fallback."""

    def __init__(self, transport: HttpTransport, retryable_statuses: Optional[set[int]] = None):
        self.transport = transport
        self.retryable_statuses = set(
            settings.retryable_statuses if retryable_statuses is None else retryable_statuses
        )

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in self.retryable_statuses

    async def download(
        self,
        url: str,
        destination: Path,
        cookie: Optional[str] = None,
        max_retry: Optional[int] = None,
        enable_chunk: Optional[bool] = None,
        chunk_size: Optional[int] = None,
    ) -> DownloadOutcome:
        """
        Fetch url into destination.

        Args:
            url: Direct media URL
            destination: Target file path (parent directories are created)
            cookie: Raw cookie header to send with every request
            max_retry: Attempt budget for the full GET (default from settings)
            enable_chunk: Allow the probe + chunked Range fallback
            chunk_size: Range size in bytes

        Returns:
            DownloadOutcome with the attempt log
        """
        max_retry = settings.download_max_retry if max_retry is None else max_retry
        enable_chunk = settings.enable_chunked_download if enable_chunk is None else enable_chunk
        chunk_size = settings.download_chunk_size if chunk_size is None else chunk_size

        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_name(destination.name + ".part")
        headers = build_download_headers(url, cookie)
        log: list[str] = []

        logger.info("Downloading", url=url, destination=str(destination))

        for attempt in range(1, max_retry + 1):
            try:
                async with self.transport.stream(url, headers=headers) as response:
                    code = response.status_code
                    log.append(f"GET#{attempt}:{code}")

                    if response.is_success:
                        with open(partial, "wb") as f:
                            async for block in response.aiter_bytes(_WRITE_BUFFER):
                                f.write(block)
                        return self._commit(partial, destination, log)

                if not self.is_retryable_status(code):
                    logger.warning("Non-retryable status", url=url, status=code)
                    break

                if enable_chunk:
                    length = await self._probe_length(url, headers, log)
                    log.append(f"ProbeLen:{length if length is not None else 'None'}")
                    if length:
                        if await self._download_chunks(url, headers, partial, length, chunk_size, log):
                            return self._commit(partial, destination, log)

                await asyncio.sleep(backoff_delay(attempt))

            except asyncio.CancelledError:
                _discard(partial)
                raise
            except (httpx.HTTPError, OSError) as e:
                if attempt < max_retry:
                    log.append(f"EX#{attempt}:{type(e).__name__}:{e}")
                    await asyncio.sleep(backoff_delay(attempt))
                else:
                    log.append(f"EX_LAST:{type(e).__name__}:{e}")

        _discard(partial)
        logger.warning("Download failed", url=url, attempts=log)
        return DownloadOutcome.failed(log)

    async def _probe_length(self, url: str, headers: dict[str, str], log: list[str]) -> Optional[int]:
        """Total size from the Content-Range of a bytes=0-0 request; failures go to the log."""
        probe_headers = {**headers, "Range": "bytes=0-0"}
        try:
            async with self.transport.stream(url, headers=probe_headers) as response:
                if not response.is_success:
                    log.append(f"Probe:{response.status_code}")
                    return None
                _, _, total = response.headers.get("Content-Range", "").rpartition("/")
                total = total.strip()
                return int(total) if total.isdigit() else None
        except httpx.HTTPError as e:
            log.append(f"ProbeEX:{type(e).__name__}")
            return None

    async def _download_chunks(
        self,
        url: str,
        headers: dict[str, str],
        partial: Path,
        total_length: int,
        chunk_size: int,
        log: list[str],
    ) -> bool:
        """
        Request [0, total_length) in ascending ranges.

        Only a 206 whose Content-Range starts at the requested offset is
        accepted. A short body moves the next range to where it actually
        ended. False on the first bad range or when the bytes overrun.
        """
        try:
            with open(partial, "wb") as f:
                offset = 0
                while offset < total_length:
                    end = min(offset + chunk_size - 1, total_length - 1)
                    range_headers = {**headers, "Range": f"bytes={offset}-{end}"}
                    async with self.transport.stream(url, headers=range_headers) as response:
                        log.append(f"RANGE {offset}-{end}:{response.status_code}")
                        if response.status_code != 206:
                            return False
                        start = _content_range_start(response.headers.get("Content-Range"))
                        if start is not None and start != offset:
                            log.append(f"RangeMismatch:{start}!={offset}")
                            return False
                        written = 0
                        async for block in response.aiter_bytes(_WRITE_BUFFER):
                            f.write(block)
                            written += len(block)
                    if written == 0 or offset + written > end + 1:
                        log.append(f"RangeSize:{written}")
                        return False
                    offset += written
            return True
        except (httpx.HTTPError, OSError) as e:
            log.append(f"ChunkEX:{type(e).__name__}:{e}")
            return False

    @staticmethod
    def _commit(partial: Path, destination: Path, log: list[str]) -> DownloadOutcome:
        partial.replace(destination)
        logger.info("Downloaded", destination=str(destination), attempts=len(log))
        return DownloadOutcome.succeeded(str(destination), log)


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.debug("Could not remove partial file", path=str(path), error=str(e))


def _content_range_start(value: Optional[str]) -> Optional[int]:
    """First byte offset of a "bytes s-e/total" header, or None when absent or malformed."""
    match = _CONTENT_RANGE.match(value or "")
    return int(match.group(1)) if match else None
