"""URL normalization and platform classification. No network access happens here."""

import re
from typing import Optional
from urllib.parse import quote, unquote, urljoin, urlsplit, urlunsplit

from ..schemas.result import Platform

# Ordered: the first matching row wins, so generic short-link hosts must come
# after any platform that could claim them.
PLATFORM_HOST_PATTERNS: list[tuple[Platform, tuple[str, ...]]] = [
    (Platform.WECHAT, ("mp.weixin.qq.com", "weixin.qq.com")),
    (Platform.WEIBO, ("weibo.com", "weibo.cn")),
    (Platform.XIAOHONGSHU, ("xiaohongshu.com", "xhslink.com")),
    (Platform.KUAISHOU, ("kuaishou.com", "kwai.com")),
    (Platform.DOUYIN, ("douyin.com", "iesdouyin.com", "amemv.com")),
]

# Hosts too short for substring matching; compared as exact host or dot-suffix.
TWITTER_HOSTS = ("twitter.com", "x.com", "t.co")

BILIBILI_SHORT_HOSTS = ("b23.tv",)

SHORT_LINK_HOSTS = {
    "xhslink.com",
    "v.douyin.com",
    "is.douyin.com",
    "v.kuaishou.com",
    "b23.tv",
    "t.cn",
}

_URL_IN_TEXT = re.compile(r"https?://[^\s\"'<>（）()]+", re.IGNORECASE)
_TRAILING_PUNCTUATION = ".。,，;；！!)）]】”\"'"


def normalize_url(text: Optional[str]) -> str:
    """Trim whitespace and prepend https:// when no scheme is present."""
    if not text:
        return ""
    url = text.strip()
    if not url:
        return ""
    if not url.lower().startswith(("http://", "https://")):
        url = "https://" + url
    return url


def get_host(url: str) -> str:
    """Lower-cased host of a (normalized) URL, or empty string."""
    try:
        return (urlsplit(normalize_url(url)).hostname or "").lower()
    except ValueError:
        return ""


def host_matches(host: str, domain: str) -> bool:
    """True when host equals domain or is a subdomain of it."""
    return host == domain or host.endswith("." + domain)


def is_short_link(url: str) -> bool:
    host = get_host(url)
    return any(host_matches(host, short) for short in SHORT_LINK_HOSTS)


def classify_platform(text: Optional[str]) -> Platform:
    """
    Map a raw or loosely formatted URL to its platform.

    Args:
        text: User supplied URL text

    Returns:
        Matching Platform, or Platform.UNKNOWN
    """
    url = normalize_url(text)
    if not url:
        return Platform.UNKNOWN

    try:
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
    except ValueError:
        return Platform.UNKNOWN
    if not host:
        return Platform.UNKNOWN
    path = parts.path.lower()

    for platform, patterns in PLATFORM_HOST_PATTERNS:
        if any(pattern in host for pattern in patterns):
            return platform

    if any(host_matches(host, domain) for domain in TWITTER_HOSTS):
        return Platform.TWITTER

    # Bilibili hosts many unrelated sections; only video pages count
    if "bilibili.com" in host and "/video/bv" in path:
        return Platform.BILIBILI
    if any(host_matches(host, domain) for domain in BILIBILI_SHORT_HOSTS):
        return Platform.BILIBILI

    return Platform.UNKNOWN


def extract_first_url(text: Optional[str]) -> Optional[str]:
    """
    Pull the first http(s) URL out of mixed share text and normalize it.

    Share texts usually wrap the link in prose and full-width punctuation,
    e.g. "看看这篇笔记 https://xhslink.com/a/AbC，复制打开".
    """
    if not text or not text.strip():
        return None

    match = _URL_IN_TEXT.search(text.strip())
    if not match:
        return None

    candidate = match.group(0).rstrip(_TRAILING_PUNCTUATION)
    full_width_comma = candidate.find("，")
    if full_width_comma > 0:
        candidate = candidate[:full_width_comma]

    return encode_url(candidate)


def encode_url(url: str) -> Optional[str]:
    """Punycode a non-ASCII host and percent-encode path and query components."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None

    host = parts.hostname
    if any(ord(ch) > 127 for ch in host):
        try:
            host = host.encode("idna").decode("ascii")
        except UnicodeError:
            pass

    netloc = host
    if parts.port and not (
        (parts.scheme == "https" and parts.port == 443) or (parts.scheme == "http" and parts.port == 80)
    ):
        netloc = f"{host}:{parts.port}"

    path = "/".join(quote(unquote(seg), safe="") for seg in parts.path.split("/"))

    query_pairs = []
    for pair in filter(None, parts.query.split("&")):
        key, _, value = pair.partition("=")
        query_pairs.append(f"{quote(unquote(key), safe='')}={quote(unquote(value), safe='')}")
    query = "&".join(query_pairs)

    return urlunsplit((parts.scheme, netloc, path or "/", query, parts.fragment))


def absolutize(base_url: str, location: str) -> str:
    """Resolve a (possibly relative) Location header against the request URL."""
    return urljoin(base_url, location)
