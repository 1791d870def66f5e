"""Front desk routing logic - determines which parser handles each URL."""

from typing import Optional

import structlog

from .schemas.result import ResolveInfo
from .url_parsers import DEFAULT_PARSER_CLASSES
from .url_parsers.base import BaseURLParser
from .utils.http_client import HttpTransport
from .utils.url_utils import classify_platform, normalize_url

logger = structlog.get_logger(__name__)


class Router:
    """
    Front desk script that routes URLs to platform parsers.

    Parsers are held in a fixed order and the first one whose can_handle()
    accepts the URL wins. All parsers share one transport.
    """

    def __init__(
        self,
        parsers: Optional[list[BaseURLParser]] = None,
        transport: Optional[HttpTransport] = None,
    ):
        """Initialize all parsers."""
        self.transport = transport or HttpTransport()
        if parsers is None:
            parsers = [parser_cls(self.transport) for parser_cls in DEFAULT_PARSER_CLASSES]
        self.parsers: list[BaseURLParser] = list(parsers)

    def resolve(self, url: str) -> Optional[BaseURLParser]:
        """
        Determine which parser to use for a URL.

        Args:
            url: URL to route

        Returns:
            The first parser that can handle the URL, or None
        """
        if not url or not url.strip():
            return None
        for parser in self.parsers:
            if parser.can_handle(url):
                logger.debug("Routing URL", url=url, parser=parser.parser_name)
                return parser
        logger.info("No parser for URL", url=url, platform=classify_platform(url).value)
        return None

    def resolve_info(self, url: str) -> ResolveInfo:
        """Routing diagnostics for a URL. Never raises."""
        if not url or not url.strip():
            return ResolveInfo(supported=False, reason="URL is empty")

        parser = self.resolve(url)
        if parser is None:
            return ResolveInfo(
                supported=False,
                platform=classify_platform(url),
                reason="no matching parser",
            )

        resource_id = parser.extract_resource_id(normalize_url(url))
        if resource_id:
            reason = "resource id extracted"
        elif not parser.resource_id_required:
            reason = "no resource id needed"
        else:
            reason = "resource id not recognised"

        return ResolveInfo(
            supported=True,
            parser=parser,
            parser_name=parser.parser_name,
            platform=parser.platform,
            resource_id=resource_id,
            requires_cookie=parser.requires_cookie,
            reason=reason,
        )

    async def aclose(self) -> None:
        await self.transport.aclose()
