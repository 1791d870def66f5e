"""Main pipeline orchestration for Links2Media."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import structlog

from .config import settings
from .downloader import ResilientDownloader
from .errors import DownloadError, UnsupportedURLError
from .router import Router
from .schemas.result import (
    DownloadOutcome,
    HistoryRecord,
    ItemOutcome,
    ParseMode,
    ParseResult,
    Platform,
    RequestOutcome,
    now_stamp,
)
from .storage import (
    FileSystemWriter,
    LocalFileSystemWriter,
    LogNotifier,
    MediaStoreWriter,
    MetadataStore,
    NotificationSink,
    guess_mime_type,
    unique_display_name,
)
from .url_parsers.base import BaseURLParser
from .utils.file_utils import guess_extension, strip_audio_marker
from .utils.text_utils import parse_timestamp, sanitize_title
from .utils.url_utils import extract_first_url, normalize_url

logger = structlog.get_logger(__name__)

# Platforms whose media URLs are signed and expire shortly after parsing
SIGNED_URL_PLATFORMS = {
    Platform.DOUYIN,
    Platform.BILIBILI,
    Platform.WEIBO,
    Platform.XIAOHONGSHU,
    Platform.KUAISHOU,
}

# CDNs that check the account cookie on the media request itself
CDN_COOKIE_PLATFORMS = {Platform.BILIBILI}


class Links2MediaPipeline:
    """
    Main pipeline: resolve -> parse -> download every media item -> record.

    Independent requests may run concurrently; a URL already being processed
    is rejected with status "in_progress" instead of being fetched twice.
    """

    def __init__(
        self,
        router: Optional[Router] = None,
        downloader: Optional[ResilientDownloader] = None,
        history: Optional[MetadataStore] = None,
        file_system: Optional[FileSystemWriter] = None,
        media_store: Optional[MediaStoreWriter] = None,
        notifier: Optional[NotificationSink] = None,
        output_dir: Optional[Path] = None,
    ):
        """Initialize the pipeline."""
        self.router = router or Router()
        self.downloader = downloader or ResilientDownloader(self.router.transport)
        self.history = history
        self.file_system = file_system or LocalFileSystemWriter()
        self.media_store = media_store
        self.notifier = notifier or LogNotifier()
        self.output_dir = Path(output_dir or settings.output_dir)

        self._in_flight: set[str] = set()
        # Destinations of downloads still running
        self._claimed: set[Path] = set()

    async def parse_url(
        self,
        url: str,
        mode: ParseMode = ParseMode.ARTICLE_IMAGES,
        cookie: Optional[str] = None,
    ) -> ParseResult:
        """
        Resolve and parse a URL without downloading anything.

        Raises:
            UnsupportedURLError: If no parser accepts the URL
        """
        target = extract_first_url(url) or normalize_url(url)
        info = self.router.resolve_info(target)
        if not info.supported:
            raise UnsupportedURLError(f"{target or url!r}: {info.reason}")
        parser: BaseURLParser = info.parser
        return await parser.parse(target, mode, self._cookie_for(parser.platform, cookie))

    async def process(
        self,
        url: str,
        mode: ParseMode = ParseMode.ARTICLE_IMAGES,
        cookie: Optional[str] = None,
        skip_existing: bool = True,
    ) -> RequestOutcome:
        """
        Run one user request end to end.

        Args:
            url: Post URL or share text containing one
            mode: Extraction mode passed to the parser
            cookie: Caller cookie; falls back to the platform cookie in settings
            skip_existing: Return "skipped" for URLs already in history

        Returns:
            RequestOutcome describing every item
        """
        target = extract_first_url(url) or normalize_url(url)

        if target in self._in_flight:
            logger.info("Request already in progress", url=target)
            return RequestOutcome(url=target, status="in_progress", message="already in progress")

        self._in_flight.add(target)
        try:
            outcome = await self._process_impl(target, mode, cookie, skip_existing)
        finally:
            self._in_flight.discard(target)

        self._notify(self._summary_message(outcome))
        return outcome

    async def process_many(
        self,
        urls: Iterable[str],
        mode: ParseMode = ParseMode.ARTICLE_IMAGES,
        cookie: Optional[str] = None,
        skip_existing: bool = True,
    ) -> list[RequestOutcome]:
        """Process independent requests concurrently; results keep input order."""
        start_time = datetime.now()
        outcomes = await asyncio.gather(
            *(self.process(url, mode=mode, cookie=cookie, skip_existing=skip_existing) for url in urls)
        )
        self._log_summary(list(outcomes), (datetime.now() - start_time).total_seconds())
        return list(outcomes)

    async def aclose(self) -> None:
        await self.router.aclose()

    async def __aenter__(self) -> "Links2MediaPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # --- Internals ---

    async def _process_impl(
        self, url: str, mode: ParseMode, cookie: Optional[str], skip_existing: bool
    ) -> RequestOutcome:
        logger.info("Processing URL", url=url, mode=mode.value)

        info = self.router.resolve_info(url)
        if not info.supported:
            logger.warning("Unsupported URL", url=url, reason=info.reason)
            return RequestOutcome(url=url, status="unsupported", platform=info.platform or Platform.UNKNOWN, message=info.reason)

        parser: BaseURLParser = info.parser
        platform = parser.platform

        if skip_existing and self.history is not None and self.history.exists_by_url(url):
            logger.info("Skipping already-downloaded URL", url=url)
            return RequestOutcome(url=url, status="skipped", platform=platform, message="already downloaded")

        cookie = self._cookie_for(platform, cookie)
        result = await parser.parse(url, mode, cookie)
        if not result.has_media:
            return RequestOutcome(
                url=url, status="failed", platform=platform, title=result.title, message="no media found"
            )

        try:
            directory = self._target_directory(platform)
        except DownloadError as e:
            return RequestOutcome(url=url, status="failed", platform=platform, title=result.title, message=str(e))

        download_cookie = cookie if platform in CDN_COOKIE_PLATFORMS else None
        items: list[ItemOutcome] = []
        entries = [(u, False) for u in result.image_urls] + [(u, True) for u in result.video_urls]

        for index, (media_url, is_video) in enumerate(entries, start=1):
            item = await self._download_item(result, directory, index, media_url, is_video, download_cookie)

            if not item.outcome.success and index == 1 and platform in SIGNED_URL_PLATFORMS:
                item = await self._retry_with_fresh_url(parser, result, directory, mode, cookie, item, download_cookie)

            items.append(item)

        saved = [item.outcome.saved_path for item in items if item.outcome.success]
        failed = [item.url for item in items if not item.outcome.success]
        status = "success" if not failed else ("partial" if saved else "failed")

        outcome = RequestOutcome(
            url=url,
            status=status,
            platform=platform,
            title=result.title,
            saved_paths=saved,
            failed_urls=failed,
            message=f"{len(saved)}/{len(items)} saved",
            items=items,
        )

        if status == "success" and self.history is not None:
            self.history.insert(
                HistoryRecord(
                    url=url,
                    platform=platform,
                    title=result.title,
                    author=result.author,
                    publish_timestamp=result.publish_timestamp,
                    download_timestamp=result.download_timestamp,
                    saved_paths=saved,
                )
            )

        logger.info("URL processed", url=url, status=status, saved=len(saved), failed=len(failed))
        return outcome

    async def _download_item(
        self,
        result: ParseResult,
        directory: Path,
        index: int,
        media_url: str,
        is_video: bool,
        cookie: Optional[str],
        refreshed: bool = False,
    ) -> ItemOutcome:
        ext = guess_extension(media_url, result.media_type, is_video=is_video)
        destination = self.file_system.unique_path(
            directory, self._base_name(result, index), ext, reserved=self._claimed
        )
        self._claimed.add(destination)
        try:
            outcome = await self.downloader.download(strip_audio_marker(media_url), destination, cookie=cookie)
            if outcome.success:
                self._after_save(result, Path(outcome.saved_path), outcome.attempt_log)
            else:
                logger.warning("Item failed", index=index, url=media_url, attempts=outcome.attempt_log)
        finally:
            self._claimed.discard(destination)

        return ItemOutcome(index=index, url=media_url, outcome=outcome, refreshed=refreshed)

    async def _retry_with_fresh_url(
        self,
        parser: BaseURLParser,
        result: ParseResult,
        directory: Path,
        mode: ParseMode,
        cookie: Optional[str],
        failed: ItemOutcome,
        download_cookie: Optional[str],
    ) -> ItemOutcome:
        """Signed URLs expire: parse again and retry the first item once with its fresh URL."""
        logger.info("First item failed, re-parsing for a fresh signed URL", url=result.source_url)
        fresh = await parser.parse(result.source_url, mode, cookie)

        fresh_entries = [(u, False) for u in fresh.image_urls] + [(u, True) for u in fresh.video_urls]
        if not fresh_entries:
            return failed

        fresh_url, is_video = fresh_entries[0]
        retried = await self._download_item(result, directory, 1, fresh_url, is_video, download_cookie, refreshed=True)
        if not retried.outcome.success:
            # Keep both attempt logs for diagnostics
            retried.outcome = DownloadOutcome.failed(failed.outcome.attempt_log + retried.outcome.attempt_log)
        return retried

    def _after_save(self, result: ParseResult, path: Path, log: list[str]) -> None:
        """File times and media-store copy; their failures stay in the item's log."""
        if settings.modify_file_date:
            when = parse_timestamp(result.publish_timestamp)
            if when:
                try:
                    self.file_system.set_file_times(path, when)
                except OSError as e:
                    logger.warning("Could not set file times", path=str(path), error=str(e))
                    log.append(f"TimeEX:{type(e).__name__}:{e}")

        if self.media_store is not None:
            subfolder = result.platform.value if settings.classify_folders else ""
            try:
                name = unique_display_name(self.media_store, path.stem, path.suffix, subfolder)
                self.media_store.save(path.read_bytes(), name, subfolder, guess_mime_type(path))
            except OSError as e:
                logger.error("Media store copy failed", path=str(path), error=str(e))
                log.append(f"StoreEX:{type(e).__name__}:{e}")

    def _target_directory(self, platform: Platform) -> Path:
        directory = self.output_dir / platform.value if settings.classify_folders else self.output_dir
        try:
            return self.file_system.ensure_directory(directory)
        except OSError as e:
            raise DownloadError(f"Cannot create {directory}: {e}") from e

    @staticmethod
    def _base_name(result: ParseResult, index: int) -> str:
        """<publish>_<title>_<index> or <title>_<publish>_<index>."""
        title = sanitize_title(result.title, settings.title_max_length)
        stamp = result.publish_timestamp or now_stamp()
        if settings.datetime_first:
            return f"{stamp}_{title}_{index}"
        return f"{title}_{stamp}_{index}"

    @staticmethod
    def _cookie_for(platform: Platform, explicit: Optional[str]) -> Optional[str]:
        if explicit and explicit.strip():
            return explicit.strip()
        configured = {
            Platform.WEIBO: settings.weibo_cookie,
            Platform.BILIBILI: settings.bilibili_cookie,
            Platform.XIAOHONGSHU: settings.xiaohongshu_cookie,
            Platform.DOUYIN: settings.douyin_cookie,
        }.get(platform, "")
        return configured or None

    def _notify(self, message: str) -> None:
        """Hand the message to the sink on the next loop turn; its failures never reach the caller."""
        asyncio.get_running_loop().call_soon(self._deliver, message)

    def _deliver(self, message: str) -> None:
        try:
            self.notifier.notify(message)
        except Exception as e:
            logger.warning("Notification failed", error=str(e))

    @staticmethod
    def _summary_message(outcome: RequestOutcome) -> str:
        if outcome.status in ("success", "partial"):
            return f"[{outcome.status}] {outcome.title}: {outcome.message}"
        return f"[{outcome.status}] {outcome.url}: {outcome.message}"

    def _log_summary(self, outcomes: list[RequestOutcome], duration: float) -> None:
        """
        Log pipeline execution summary.

        Args:
            outcomes: Outcomes of every request in the batch
            duration: Total execution time in seconds
        """
        counts = {status: 0 for status in ("success", "partial", "failed", "skipped", "in_progress", "unsupported")}
        for outcome in outcomes:
            counts[outcome.status] += 1

        logger.info(
            "Pipeline completed",
            duration_seconds=f"{duration:.2f}",
            total_processed=len(outcomes),
            **counts,
        )
