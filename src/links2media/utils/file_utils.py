"""File system utilities."""

import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Collection, Optional
from urllib.parse import urlsplit

from ..schemas.result import AUDIO_MARKER, MediaType

_KNOWN_EXTENSIONS = {
    ".jpg": ".jpg",
    ".jpeg": ".jpg",
    ".png": ".png",
    ".webp": ".webp",
    ".gif": ".gif",
    ".heic": ".heic",
    ".mp4": ".mp4",
    ".mov": ".mov",
    ".m4a": ".m4a",
    ".m4s": ".mp4",
    ".flv": ".flv",
}


def unique_name(base: str, ext: str, exists: Callable[[str], bool]) -> str:
    """
    First free name among base.ext, base(1).ext, base(2).ext, ...

    Args:
        base: File name without extension
        ext: Extension with or without the leading dot (may be empty)
        exists: Predicate telling whether a candidate name is taken

    Returns:
        Candidate file name (not a path)
    """
    ext = ext.lstrip(".")
    suffix = f".{ext}" if ext else ""

    candidate = f"{base}{suffix}"
    counter = 1
    while exists(candidate):
        candidate = f"{base}({counter}){suffix}"
        counter += 1
    return candidate


def unique_file_path(directory: Path, base: str, ext: str, reserved: Collection[Path] = ()) -> Path:
    """Bind unique_name to a real directory; paths in reserved count as taken."""
    directory = Path(directory)

    def taken(name: str) -> bool:
        path = directory / name
        return path in reserved or path.exists()

    return directory / unique_name(base, ext, taken)


def ensure_directory(path: Path) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists

    Returns:
        The same path for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def set_file_times(path: Path, when: datetime) -> None:
    """Set access and modification time of path to when."""
    stamp = when.timestamp()
    os.utime(path, (stamp, stamp))


def guess_extension(url: str, media_type: Optional[MediaType] = None, is_video: bool = False) -> str:
    """
    Extension for a media URL: audio marker first, then the URL path, then media_type.

    Returns:
        Extension including the leading dot
    """
    if url.endswith(AUDIO_MARKER):
        return ".m4a"

    try:
        path = urlsplit(url).path.lower()
    except ValueError:
        path = ""
    for ext, mapped in _KNOWN_EXTENSIONS.items():
        if path.endswith(ext):
            return mapped

    if is_video:
        return ".mov" if media_type == MediaType.MOV else ".mp4"
    return ".jpg"


def strip_audio_marker(url: str) -> str:
    """Request URL without the in-list audio marker."""
    return url[: -len(AUDIO_MARKER)] if url.endswith(AUDIO_MARKER) else url


def read_url_list(url_file: Path) -> list[str]:
    """
    Read URLs from a text file, one URL per line.
    Ignores empty lines and comments (lines starting with #).

    Args:
        url_file: Path to the URL list file

    Returns:
        List of URL strings
    """
    urls = []

    if not url_file.exists():
        return urls

    with open(url_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            urls.append(line)

    return urls
