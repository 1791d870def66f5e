"""Result schemas shared by parsers, the downloader and the pipeline."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

# Suffix marking a separate audio track inside ParseResult.video_urls
AUDIO_MARKER = "#audio"


def now_stamp() -> str:
    """Current local time in the fixed yyyyMMddHHmmss form."""
    return datetime.now().strftime(TIMESTAMP_FORMAT)


class Platform(str, Enum):
    """Closed set of recognised platforms."""

    WECHAT = "wechat"
    WEIBO = "weibo"
    XIAOHONGSHU = "xiaohongshu"
    KUAISHOU = "kuaishou"
    DOUYIN = "douyin"
    BILIBILI = "bilibili"
    TWITTER = "twitter"
    UNKNOWN = "unknown"


class MediaType(str, Enum):
    """Principal media kind, drives the default file extension."""

    JPEG = "jpeg"
    MP4 = "mp4"
    MOV = "mov"


class ParseMode(str, Enum):
    """
    Extraction mode.

    COVER_IMAGE stops at the first usable media item; ARTICLE_IMAGES collects everything.
    """

    ARTICLE_IMAGES = "article_images"
    COVER_IMAGE = "cover_image"


class ParseResult(BaseModel):
    """
    Schema for parser output.

    Image and video lists keep discovery order and never hold duplicates.
    Empty lists are a valid "no media found" outcome.
    """

    title: str = ""
    author: str = ""
    publish_timestamp: str = Field(default_factory=now_stamp)
    download_timestamp: str = Field(default_factory=now_stamp)
    platform: Platform = Platform.UNKNOWN

    image_urls: list[str] = Field(default_factory=list)
    video_urls: list[str] = Field(default_factory=list)
    media_type: MediaType = MediaType.JPEG

    source_url: str = ""
    resolved_url: str = ""

    def add_image(self, url: Optional[str], front: bool = False) -> bool:
        """Append (or prepend) an image URL unless empty or already present."""
        if not url or url in self.image_urls:
            return False
        if front:
            self.image_urls.insert(0, url)
        else:
            self.image_urls.append(url)
        return True

    def add_video(self, url: Optional[str], front: bool = False) -> bool:
        """Append (or prepend) a video URL and update media_type from its extension."""
        if not url or url in self.video_urls:
            return False
        if front:
            self.video_urls.insert(0, url)
        else:
            self.video_urls.append(url)
        if not url.endswith(AUDIO_MARKER):
            path = url.split("?", 1)[0].lower()
            self.media_type = MediaType.MOV if path.endswith(".mov") else MediaType.MP4
        return True

    @property
    def has_media(self) -> bool:
        return bool(self.image_urls or self.video_urls)


class ResolveInfo(BaseModel):
    """Structured routing diagnostics for UI feedback."""

    supported: bool
    parser: Optional[Any] = Field(default=None, exclude=True, repr=False)
    parser_name: Optional[str] = None
    platform: Optional[Platform] = None
    resource_id: Optional[str] = None
    requires_cookie: bool = False
    reason: str = ""


class DownloadOutcome(BaseModel):
    """
    Result of one (url, destination) download.

    attempt_log is diagnostic only: every status, probe and exception in order.
    """

    success: bool
    saved_path: Optional[str] = None
    attempt_log: list[str] = Field(default_factory=list)

    @classmethod
    def succeeded(cls, path: str, log: list[str]) -> "DownloadOutcome":
        return cls(success=True, saved_path=path, attempt_log=list(log))

    @classmethod
    def failed(cls, log: list[str]) -> "DownloadOutcome":
        return cls(success=False, saved_path=None, attempt_log=list(log))


class ItemOutcome(BaseModel):
    """Download outcome for one media item of a request."""

    index: int
    url: str
    outcome: DownloadOutcome
    refreshed: bool = False


class RequestOutcome(BaseModel):
    """What the pipeline reports back for one user request."""

    url: str
    status: Literal["success", "partial", "failed", "skipped", "in_progress", "unsupported"]
    platform: Platform = Platform.UNKNOWN
    title: str = ""
    saved_paths: list[str] = Field(default_factory=list)
    failed_urls: list[str] = Field(default_factory=list)
    message: str = ""
    items: list[ItemOutcome] = Field(default_factory=list)


class HistoryRecord(BaseModel):
    """Persisted record of a completed request."""

    url: str
    platform: Platform = Platform.UNKNOWN
    title: str = ""
    author: str = ""
    publish_timestamp: str = ""
    download_timestamp: str = ""
    saved_paths: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
