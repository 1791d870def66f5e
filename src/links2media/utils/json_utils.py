"""
Structured-data extraction from HTML pages.

Pages embed their state as JavaScript object literals (window.__INITIAL_STATE__ = {...})
that are close to, but not always, valid JSON. This module finds those blobs,
repairs the usual deviations and offers small typed accessors over the parsed tree.
"""

import json
import math
import re
from typing import Any, Callable, Iterable, Optional, Union

import structlog
from bs4 import BeautifulSoup

logger = structlog.get_logger(__name__)

JsonValue = Union[dict[str, Any], list[Any], str, int, float, bool, None]
PathKey = Union[str, int]

_CLOSERS = {"{": "}", "[": "]"}
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_HEX_ESCAPE = re.compile(r"(?<!\\)((?:\\\\)*)\\x([0-9a-fA-F]{2})")
_BARE_TOKEN = re.compile(r"(?<![\w$.])(-?Infinity|NaN|undefined)(?![\w$])")


def extract_object_after(html: Optional[str], anchor: str, opener: str = "{") -> Optional[str]:
    """
    Return the balanced {...} (or [...]) literal that follows anchor.

    Quotes (single and double) are honoured so braces inside strings do not
    count; a backslash skips the next character.

    Args:
        html: Page source
        anchor: Text to locate, e.g. "window.__INITIAL_STATE__"
        opener: "{" for objects, "[" for arrays

    Returns:
        The literal including its delimiters, or None
    """
    if not html or not anchor:
        return None

    pos = html.find(anchor)
    if pos < 0:
        return None

    start = html.find(opener, pos + len(anchor))
    if start < 0:
        return None

    closer = _CLOSERS[opener]
    depth = 0
    quote: Optional[str] = None
    i = start
    while i < len(html):
        ch = html[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return html[start : i + 1]
        i += 1

    return None


def extract_script_json(html: Optional[str], element_id: str) -> Optional[JsonValue]:
    """Parse the JSON body of <script id="element_id"> (e.g. __NEXT_DATA__)."""
    if not html or element_id not in html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    node = soup.find("script", id=element_id)
    if node is None or not node.string:
        return None
    return loads_lenient(node.string)


def _split_strings(text: str) -> list[tuple[bool, str]]:
    """Split text into (is_string_literal, chunk) segments."""
    segments: list[tuple[bool, str]] = []
    buf: list[str] = []
    quote: Optional[str] = None
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            buf.append(ch)
            if ch == "\\" and i + 1 < len(text):
                buf.append(text[i + 1])
                i += 2
                continue
            if ch == quote:
                segments.append((True, "".join(buf)))
                buf = []
                quote = None
        elif ch == '"':
            if buf:
                segments.append((False, "".join(buf)))
            buf = [ch]
            quote = ch
        else:
            buf.append(ch)
        i += 1
    if buf:
        segments.append((quote is not None, "".join(buf)))
    return segments


def _map_code(text: str, fn: Callable[[str], str]) -> str:
    """Apply fn to everything outside double-quoted string literals."""
    return "".join(chunk if is_str else fn(chunk) for is_str, chunk in _split_strings(text))


def strip_comments(text: str) -> str:
    """Remove // line and /* block */ comments outside strings."""

    def _strip(chunk: str) -> str:
        chunk = re.sub(r"/\*.*?\*/", "", chunk, flags=re.DOTALL)
        return re.sub(r"(?<![:\\])//[^\n]*", "", chunk)

    return _map_code(text, _strip)


def repair_json(text: str, aggressive: bool = False) -> str:
    """
    Fix the common ways embedded page state deviates from JSON.

    Normal pass: unescape \\/, turn \\xNN into \\u00NN, strip trailing commas.
    Aggressive pass: also map bare undefined/NaN/Infinity to null and strip
    trailing commas again.
    """
    if not text:
        return text

    fixed = text.replace("\\/", "/")
    fixed = _HEX_ESCAPE.sub(lambda m: f"{m.group(1)}\\u00{m.group(2)}", fixed)
    fixed = _map_code(fixed, lambda chunk: _TRAILING_COMMA.sub(r"\1", chunk))

    if aggressive:
        fixed = _map_code(fixed, lambda chunk: _BARE_TOKEN.sub("null", chunk))
        fixed = _map_code(fixed, lambda chunk: _TRAILING_COMMA.sub(r"\1", chunk))

    return fixed


def _decode(text: str) -> JsonValue:
    """json.loads with NaN, Infinity and -Infinity read as null."""
    return json.loads(text, parse_constant=lambda _token: None)


def loads_lenient(text: Optional[str]) -> Optional[JsonValue]:
    """
    Parse JSON, repairing it if needed. Never raises.

    Returns:
        Parsed value, or None when the text stays unparseable after repair
    """
    if not text or not text.strip():
        return None

    try:
        return _decode(text)
    except json.JSONDecodeError:
        pass

    cleaned = strip_comments(text)
    for aggressive in (False, True):
        try:
            return _decode(repair_json(cleaned, aggressive=aggressive))
        except json.JSONDecodeError:
            continue

    logger.debug("Embedded JSON unrepairable", preview=text[:120])
    return None


def extract_state(html: Optional[str], anchors: Iterable[str]) -> Optional[JsonValue]:
    """Return the first anchored object literal that parses."""
    for anchor in anchors:
        raw = extract_object_after(html, anchor)
        if raw is None:
            continue
        parsed = loads_lenient(raw)
        if parsed is not None:
            logger.debug("Embedded state found", anchor=anchor)
            return parsed
    return None


# --- Typed tree access ---


def get_path(node: JsonValue, *keys: PathKey) -> JsonValue:
    """Walk dict keys / list indices; None as soon as a step is missing."""
    current: Any = node
    for key in keys:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def get_str(node: JsonValue, *keys: PathKey) -> Optional[str]:
    """String at path; numbers are stringified, empty strings count as missing."""
    value = get_path(node, *keys)
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, (int, float)):
        return str(int(value)) if float(value).is_integer() else str(value)
    if isinstance(value, str) and value.strip():
        return value
    return None


def get_int(node: JsonValue, *keys: PathKey) -> Optional[int]:
    value = get_path(node, *keys)
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def get_dict(node: JsonValue, *keys: PathKey) -> Optional[dict[str, Any]]:
    value = get_path(node, *keys)
    return value if isinstance(value, dict) else None


def get_list(node: JsonValue, *keys: PathKey) -> list[Any]:
    """List at path, or an empty list."""
    value = get_path(node, *keys)
    return value if isinstance(value, list) else []


def first_str(node: JsonValue, paths: Iterable[Iterable[PathKey]]) -> Optional[str]:
    """First non-empty string among several candidate paths."""
    for path in paths:
        value = get_str(node, *path)
        if value:
            return value
    return None


def walk_json(
    node: JsonValue,
    visit: Callable[[str, JsonValue], Optional[bool]],
    max_depth: int = 8,
) -> None:
    """
    Depth-first walk calling visit(key, value) for every dict entry.

    visit may return True to stop the whole walk early.
    """

    def _walk(current: JsonValue, depth: int) -> bool:
        if depth > max_depth:
            return False
        if isinstance(current, dict):
            for key, value in current.items():
                if visit(key, value):
                    return True
                if _walk(value, depth + 1):
                    return True
        elif isinstance(current, list):
            for item in current:
                if _walk(item, depth + 1):
                    return True
        return False

    _walk(node, 0)


def find_arrays_by_key(node: JsonValue, keys: Iterable[str], max_depth: int = 8) -> list[list[Any]]:
    """Collect every list stored under one of keys, in walk order."""
    wanted = set(keys)
    found: list[list[Any]] = []

    def _visit(key: str, value: JsonValue) -> None:
        if key in wanted and isinstance(value, list):
            found.append(value)

    walk_json(node, _visit, max_depth=max_depth)
    return found
