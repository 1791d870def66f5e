"""
Collaborators the pipeline talks to: history store, media store, filesystem, notifications.

The pipeline depends only on the Protocols below; the concrete classes are
the simple local implementations used by the CLI.
"""

import json
import mimetypes
from datetime import datetime
from pathlib import Path
from typing import Collection, Optional, Protocol

import click
import structlog
from pydantic import BaseModel, Field

from .schemas.result import HistoryRecord
from .utils.file_utils import ensure_directory, set_file_times, unique_file_path, unique_name

logger = structlog.get_logger(__name__)


class MetadataStore(Protocol):
    def insert(self, record: HistoryRecord) -> None: ...

    def exists_by_url(self, url: str) -> bool: ...

    def page(
        self, page_index: int, page_size: int, order_key: str = "created_at", descending: bool = True
    ) -> list[HistoryRecord]: ...

    def delete(self, url: str) -> bool: ...


class MediaStoreWriter(Protocol):
    def save(self, data: bytes, display_name: str, relative_subfolder: str, mime_type: str) -> Optional[str]: ...

    def query_display_name_exists(self, display_name: str, relative_subfolder: str) -> bool: ...


class FileSystemWriter(Protocol):
    def ensure_directory(self, path: Path) -> Path: ...

    def unique_path(self, directory: Path, base: str, ext: str, reserved: Collection[Path] = ()) -> Path: ...

    def set_file_times(self, path: Path, when: datetime) -> None: ...


class NotificationSink(Protocol):
    def notify(self, message: str) -> None: ...


def unique_display_name(writer: MediaStoreWriter, base: str, ext: str, relative_subfolder: str) -> str:
    """Same base(1).ext numbering as the filesystem, checked against the media store."""
    return unique_name(base, ext, lambda name: writer.query_display_name_exists(name, relative_subfolder))


# --- History ---


class HistoryFile(BaseModel):
    """On-disk layout of the history JSON file."""

    records: list[HistoryRecord] = Field(default_factory=list)


class JsonHistoryStore:
    """
    MetadataStore backed by a single JSON file.

    The whole file is rewritten on every change; history is small.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> HistoryFile:
        if not self.path.exists():
            return HistoryFile()
        data = json.loads(self.path.read_text(encoding="utf-8"))
        return HistoryFile.model_validate(data)

    def _save(self, history: HistoryFile) -> None:
        ensure_directory(self.path.parent)
        self.path.write_text(history.model_dump_json(indent=2), encoding="utf-8")

    def insert(self, record: HistoryRecord) -> None:
        history = self._load()
        history.records.append(record)
        self._save(history)
        logger.debug("History record inserted", url=record.url)

    def exists_by_url(self, url: str) -> bool:
        return any(record.url == url for record in self._load().records)

    def page(
        self, page_index: int, page_size: int, order_key: str = "created_at", descending: bool = True
    ) -> list[HistoryRecord]:
        """
        One page of records.

        Args:
            page_index: Zero-based page number
            page_size: Records per page
            order_key: HistoryRecord field to sort by
            descending: Newest (largest) first when True

        Returns:
            Records of the requested page, possibly empty
        """
        if page_index < 0 or page_size <= 0:
            return []
        if order_key not in HistoryRecord.model_fields:
            raise ValueError(f"Unknown order key: {order_key}")

        records = sorted(self._load().records, key=lambda r: getattr(r, order_key), reverse=descending)
        start = page_index * page_size
        return records[start : start + page_size]

    def delete(self, url: str) -> bool:
        history = self._load()
        kept = [record for record in history.records if record.url != url]
        if len(kept) == len(history.records):
            return False
        history.records = kept
        self._save(history)
        return True


# --- Files ---


class LocalFileSystemWriter:
    """FileSystemWriter over the local disk."""

    def ensure_directory(self, path: Path) -> Path:
        return ensure_directory(Path(path))

    def unique_path(self, directory: Path, base: str, ext: str, reserved: Collection[Path] = ()) -> Path:
        return unique_file_path(Path(directory), base, ext, reserved)

    def set_file_times(self, path: Path, when: datetime) -> None:
        set_file_times(Path(path), when)


class DirectoryMediaStore:
    """
    MediaStoreWriter that copies saved media into a gallery-style folder.

    Display names are file names under root/relative_subfolder.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def query_display_name_exists(self, display_name: str, relative_subfolder: str) -> bool:
        return (self.root / relative_subfolder / display_name).exists()

    def save(self, data: bytes, display_name: str, relative_subfolder: str, mime_type: str) -> Optional[str]:
        target = self.root / relative_subfolder / display_name
        try:
            ensure_directory(target.parent)
            target.write_bytes(data)
        except OSError as e:
            logger.error("Media store write failed", name=display_name, error=str(e))
            return None
        logger.debug("Saved to media store", path=str(target), mime_type=mime_type)
        return str(target)


def guess_mime_type(path: Path) -> str:
    mime, _ = mimetypes.guess_type(str(path))
    return mime or "application/octet-stream"


# --- Notifications ---


class LogNotifier:
    """NotificationSink that writes to the structured log."""

    def notify(self, message: str) -> None:
        logger.info("Notification", message=message)


class ClickNotifier:
    """NotificationSink that echoes to the terminal."""

    def notify(self, message: str) -> None:
        click.echo(message)
