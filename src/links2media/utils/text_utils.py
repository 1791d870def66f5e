"""Title/file-name sanitizing, timestamp parsing and cookie helpers."""

import html
import re
import unicodedata
from datetime import datetime
from typing import Any, Optional

from bs4 import BeautifulSoup

from ..schemas.result import TIMESTAMP_FORMAT

UNTITLED = "untitled"
DEFAULT_AUTHOR = "anonymous"

# Characters illegal in file names on at least one mainstream filesystem
_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WINDOWS_DEVICE = re.compile(r"^(CON|PRN|AUX|NUL|CLOCK\$|COM[1-9]|LPT[1-9])$", re.IGNORECASE)
_SURROGATES = re.compile(r"[\ud800-\udfff]")

_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
    "%Y%m%d%H%M%S",
    "%Y%m%d",
)
# Weibo API "created_at", e.g. "Tue Oct 08 20:15:43 +0800 2024"
_WEIBO_FORMAT = "%a %b %d %H:%M:%S %z %Y"
_MONTH_DAY = re.compile(r"^(\d{1,2})-(\d{1,2})\s+(\d{1,2}):(\d{2})$")


def sanitize_title(title: Optional[str], max_length: int = 64) -> str:
    """
    Make a post title usable as a file-name fragment.

    Drops all whitespace, control characters and path-illegal characters,
    escapes Windows device names, removes lone surrogates and caps the length.
    Falls back to "untitled" when nothing is left.
    """
    if not title or not title.strip():
        return UNTITLED

    cleaned = "".join(ch for ch in title if not ch.isspace() and ord(ch) >= 32)
    cleaned = _ILLEGAL_CHARS.sub("", cleaned)

    if _WINDOWS_DEVICE.match(cleaned):
        cleaned = "_" + cleaned

    cleaned = _SURROGATES.sub("", cleaned)
    cleaned = cleaned[:max_length]

    return cleaned or UNTITLED


def clean_label(text: Optional[str], max_length: int = 64, fallback: str = UNTITLED) -> str:
    """
    Single-line display form of a post title or author name.

    Whitespace runs collapse to one space; control, path-illegal and lone
    surrogate characters are dropped and the result is capped at max_length.
    """
    if not text:
        return fallback
    cleaned = " ".join(html.unescape(text).split())
    cleaned = "".join(ch for ch in cleaned if unicodedata.category(ch) != "Cc")
    cleaned = _ILLEGAL_CHARS.sub("", cleaned)
    cleaned = _SURROGATES.sub("", cleaned)
    cleaned = " ".join(cleaned.split())[:max_length].strip()
    return cleaned or fallback


def sanitize_author(author: Optional[str], max_length: int = 64) -> str:
    """clean_label for author names; never returns an empty string."""
    return clean_label(author, max_length, DEFAULT_AUTHOR)


def strip_html(text: Optional[str]) -> str:
    """Drop tags (Weibo text fields embed anchors and emoji <img>) and unescape entities."""
    if not text:
        return ""
    if "<" not in text:
        return html.unescape(text).strip()
    return BeautifulSoup(text, "html.parser").get_text(" ", strip=True)


def js_decode(text: str) -> str:
    """Undo JavaScript string escapes such as \\x26 and \\u0026."""
    text = re.sub(r"\\x([0-9a-fA-F]{2})", lambda m: chr(int(m.group(1), 16)), text)
    text = re.sub(r"\\u([0-9a-fA-F]{4})", lambda m: chr(int(m.group(1), 16)), text)
    return text.replace("\\/", "/").replace('\\"', '"').replace("\\'", "'")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse the many publish-time encodings platforms use.

    Accepts Unix seconds or milliseconds (int or digit string), ISO 8601,
    the Weibo created_at form, "MM-dd HH:mm" (current year) and a set of
    fixed formats. Returns None when nothing matches.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return _from_epoch(float(value))

    text = str(value).strip()
    if not text:
        return None

    if text.isdigit():
        if len(text) in (10, 13):
            return _from_epoch(float(text))
        if len(text) in (8, 14):
            fmt = "%Y%m%d" if len(text) == 8 else TIMESTAMP_FORMAT
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                return None
        return None

    try:
        parsed = datetime.strptime(text, _WEIBO_FORMAT)
        return parsed.astimezone().replace(tzinfo=None)
    except ValueError:
        pass

    match = _MONTH_DAY.match(text)
    if match:
        month, day, hour, minute = (int(part) for part in match.groups())
        try:
            return datetime(datetime.now().year, month, day, hour, minute)
        except ValueError:
            return None

    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def format_timestamp(value: Any) -> Optional[str]:
    """parse_timestamp, rendered in the fixed yyyyMMddHHmmss form."""
    parsed = parse_timestamp(value)
    return parsed.strftime(TIMESTAMP_FORMAT) if parsed else None


def _from_epoch(seconds: float) -> Optional[datetime]:
    if seconds <= 0:
        return None
    if seconds >= 1e12:
        seconds /= 1000.0
    try:
        return datetime.fromtimestamp(seconds)
    except (OverflowError, OSError, ValueError):
        return None


def parse_cookie_string(cookie: Optional[str]) -> dict[str, str]:
    """Split a raw "a=1; b=2" cookie header into name/value pairs."""
    pairs: dict[str, str] = {}
    if not cookie:
        return pairs
    for part in cookie.split(";"):
        name, sep, value = part.strip().partition("=")
        if sep and name.strip():
            pairs[name.strip()] = value.strip()
    return pairs
