"""URL parsers for Links2Media."""

from .base import BaseURLParser
from .bilibili_parser import BilibiliParser
from .douyin_parser import DouyinParser
from .kuaishou_parser import KuaishouParser
from .wechat_parser import WeChatParser
from .weibo_parser import WeiboParser
from .xiaohongshu_parser import XiaohongshuParser

# Dispatch order: the first parser whose can_handle() accepts a URL wins
DEFAULT_PARSER_CLASSES: list[type[BaseURLParser]] = [
    WeChatParser,
    WeiboParser,
    XiaohongshuParser,
    KuaishouParser,
    DouyinParser,
    BilibiliParser,
]

__all__ = [
    "BaseURLParser",
    "BilibiliParser",
    "DouyinParser",
    "KuaishouParser",
    "WeChatParser",
    "WeiboParser",
    "XiaohongshuParser",
    "DEFAULT_PARSER_CLASSES",
]
