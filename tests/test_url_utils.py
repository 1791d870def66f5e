"""Tests for URL normalization and platform classification."""

import pytest

from links2media.schemas.result import Platform
from links2media.utils.url_utils import (
    classify_platform,
    extract_first_url,
    host_matches,
    is_short_link,
    normalize_url,
)


class TestClassifyPlatform:
    """classify_platform maps hosts through the ordered table."""

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://mp.weixin.qq.com/s/AbCdEf", Platform.WECHAT),
            ("https://weibo.com/1234567890/NxYz12345", Platform.WEIBO),
            ("https://m.weibo.cn/detail/4950000000000000", Platform.WEIBO),
            ("https://www.xiaohongshu.com/explore/64f0c0a1000000001e03a1b2", Platform.XIAOHONGSHU),
            ("http://xhslink.com/a/AbCdEf", Platform.XIAOHONGSHU),
            ("https://v.kuaishou.com/AbCd12", Platform.KUAISHOU),
            ("https://www.douyin.com/video/7300000000000000001", Platform.DOUYIN),
            ("https://v.douyin.com/iRNBho6/", Platform.DOUYIN),
            ("https://twitter.com/someone/status/1", Platform.TWITTER),
            ("https://x.com/someone/status/1", Platform.TWITTER),
            ("https://www.bilibili.com/video/BV1xx411c7mD", Platform.BILIBILI),
            ("https://b23.tv/AbCdEf", Platform.BILIBILI),
        ],
    )
    def test_known_hosts(self, url, expected):
        assert classify_platform(url) == expected

    def test_missing_scheme_is_added(self):
        assert classify_platform("  mp.weixin.qq.com/s/abc  ") == Platform.WECHAT

    def test_bilibili_requires_video_path(self):
        assert classify_platform("https://space.bilibili.com/12345") == Platform.UNKNOWN
        assert classify_platform("https://www.bilibili.com/read/cv123") == Platform.UNKNOWN

    def test_short_twitter_host_does_not_match_substrings(self):
        assert classify_platform("https://box.com/file/1") == Platform.UNKNOWN
        assert classify_platform("https://dropbox.com/s/1") == Platform.UNKNOWN

    @pytest.mark.parametrize("text", ["", "   ", None, "https://", "https://example.com/post/1"])
    def test_unknown(self, text):
        assert classify_platform(text) == Platform.UNKNOWN

    def test_first_match_wins(self):
        # douyin.com path under a weibo host still classifies by host order
        assert classify_platform("https://weibo.com/redirect/douyin.com") == Platform.WEIBO


def test_normalize_url():
    assert normalize_url(" example.com/a ") == "https://example.com/a"
    assert normalize_url("http://example.com") == "http://example.com"
    assert normalize_url("") == ""


def test_host_matches():
    assert host_matches("x.com", "x.com")
    assert host_matches("mobile.x.com", "x.com")
    assert not host_matches("box.com", "x.com")


def test_is_short_link():
    assert is_short_link("https://xhslink.com/a/AbC")
    assert is_short_link("v.douyin.com/abc")
    assert not is_short_link("https://www.douyin.com/video/1")


class TestExtractFirstUrl:
    """Share texts wrap the link in prose and full-width punctuation."""

    def test_url_in_share_text(self):
        text = "看看这篇笔记 https://xhslink.com/a/AbCdEf，复制本条信息打开"
        assert extract_first_url(text) == "https://xhslink.com/a/AbCdEf"

    def test_trailing_punctuation_stripped(self):
        assert extract_first_url("see https://v.douyin.com/iRNBho6/ 。") == "https://v.douyin.com/iRNBho6/"
        assert extract_first_url("(https://weibo.com/1/Abc).") == "https://weibo.com/1/Abc"

    def test_non_ascii_path_is_percent_encoded(self):
        url = extract_first_url("https://example.com/路径?q=中文")
        assert url == "https://example.com/%E8%B7%AF%E5%BE%84?q=%E4%B8%AD%E6%96%87"

    def test_idn_host_is_punycoded(self):
        url = extract_first_url("https://例子.测试/a")
        assert url.startswith("https://xn--")

    def test_no_url(self):
        assert extract_first_url("no link here") is None
        assert extract_first_url("") is None
