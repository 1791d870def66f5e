"""Pydantic schemas for links2media."""

from .result import (
    AUDIO_MARKER,
    DownloadOutcome,
    HistoryRecord,
    ItemOutcome,
    MediaType,
    ParseMode,
    ParseResult,
    Platform,
    RequestOutcome,
    ResolveInfo,
)

__all__ = [
    "AUDIO_MARKER",
    "DownloadOutcome",
    "HistoryRecord",
    "ItemOutcome",
    "MediaType",
    "ParseMode",
    "ParseResult",
    "Platform",
    "RequestOutcome",
    "ResolveInfo",
]
