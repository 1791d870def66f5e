"""End-to-end parser tests against canned platform responses."""

import asyncio
import json
from datetime import datetime

import httpx

from links2media.schemas.result import AUDIO_MARKER, MediaType, ParseMode, Platform
from links2media.url_parsers import (
    BilibiliParser,
    DouyinParser,
    KuaishouParser,
    WeChatParser,
    WeiboParser,
    XiaohongshuParser,
)
from links2media.url_parsers.douyin_parser import NO_WATERMARK_PLAY
from links2media.utils.http_client import HttpTransport


def _handler(routes, seen=None):
    """Serve routes keyed by host + path; anything else is a 404."""

    def handler(request):
        if seen is not None:
            seen.append(request)
        route = routes.get(request.url.host + request.url.path)
        if route is None:
            return httpx.Response(404)
        return route(request) if callable(route) else httpx.Response(200, **route)

    return handler


def _parse(parser_cls, routes, url, seen=None, **kwargs):
    async def _run():
        async with HttpTransport(transport=httpx.MockTransport(_handler(routes, seen))) as transport:
            return await parser_cls(transport).parse(url, **kwargs)

    return asyncio.run(_run())


def _stamp(epoch_seconds):
    return datetime.fromtimestamp(epoch_seconds).strftime("%Y%m%d%H%M%S")


class TestXiaohongshu:
    NOTE_ID = "64f0c0a1000000001e03a1b2"
    SHORT = "http://xhslink.com/a/AbCdEf"

    def _routes(self, title="Weekend", desc=" in Kyoto", nickname="Carol"):
        def descriptor(name):
            return {
                "urlDefault": f"https://sns-img.xhscdn.com/{name}_540x720.jpg",
                "infoList": [
                    {"imageScene": "WB_PRV", "url": f"https://sns-img.xhscdn.com/{name}_540x720.jpg"},
                    {"imageScene": "WB_DFT", "url": f"https://sns-img.xhscdn.com/{name}_1080x1440.jpg"},
                ],
            }

        state = {
            "note": {
                "noteDetailMap": {
                    self.NOTE_ID: {
                        "note": {
                            "title": title,
                            "desc": desc,
                            "user": {"nickname": nickname},
                            "lastUpdateTime": 1704164645000,
                            "imageList": [descriptor(name) for name in ("a", "b", "c")],
                        }
                    }
                }
            }
        }
        # the page literal is JS, not JSON
        literal = json.dumps(state)[:-1] + ',"user":undefined}'
        page = f"<html><head></head><body><script>window.__INITIAL_STATE__={literal}</script></body></html>"
        note_url = f"https://www.xiaohongshu.com/explore/{self.NOTE_ID}"

        return {
            "xhslink.com/a/AbCdEf": lambda request: httpx.Response(302, headers={"Location": note_url}),
            f"www.xiaohongshu.com/explore/{self.NOTE_ID}": {"text": page},
        }

    def test_short_link_gallery_picks_high_resolution_images(self):
        result = _parse(XiaohongshuParser, self._routes(), self.SHORT)

        assert result.platform == Platform.XIAOHONGSHU
        assert result.resolved_url == f"https://www.xiaohongshu.com/explore/{self.NOTE_ID}"
        assert result.image_urls == [
            "https://sns-img.xhscdn.com/a_1080x1440.jpg",
            "https://sns-img.xhscdn.com/b_1080x1440.jpg",
            "https://sns-img.xhscdn.com/c_1080x1440.jpg",
        ]
        assert result.video_urls == []
        assert result.title == "Weekend in Kyoto"
        assert result.author == "Carol"
        assert result.publish_timestamp == _stamp(1704164645)

    def test_cover_mode_stops_at_first_image(self):
        result = _parse(XiaohongshuParser, self._routes(), self.SHORT, mode=ParseMode.COVER_IMAGE)
        assert result.image_urls == ["https://sns-img.xhscdn.com/a_1080x1440.jpg"]

    def test_cookie_only_reaches_platform_hosts(self):
        seen = []
        _parse(XiaohongshuParser, self._routes(), self.SHORT, seen=seen, cookie="web_session=s1")

        by_host = {request.url.host: request for request in seen}
        assert "cookie" not in by_host["xhslink.com"].headers
        assert by_host["www.xiaohongshu.com"].headers["cookie"] == "web_session=s1"

    def test_unreachable_page_gives_empty_result(self):
        result = _parse(XiaohongshuParser, {}, f"https://www.xiaohongshu.com/explore/{self.NOTE_ID}")
        assert not result.has_media
        assert result.title == "Xiaohongshu note"

    def test_title_and_author_are_cleaned_and_capped(self):
        routes = self._routes(title="a/b:c\n" + "x" * 200, desc="", nickname="Nick:\t" + "n" * 300)
        result = _parse(XiaohongshuParser, routes, self.SHORT)

        assert result.title.startswith("abc x")
        assert len(result.title) == 64
        assert not set(result.title) & set('/:\n<>"|?*')
        assert result.author.startswith("Nick n")
        assert len(result.author) == 64


class TestDouyin:
    AWEME_ID = "7300000000000000001"
    URL = f"https://www.douyin.com/video/{AWEME_ID}"
    ITEMINFO = "www.iesdouyin.com/web/api/v2/aweme/iteminfo/"

    def test_iteminfo_video_prefers_watermark_free_stream(self):
        item = {
            "desc": "Dancing",
            "author": {"nickname": "Dave"},
            "create_time": 1704164645,
            "video": {
                "width": 1080,
                "height": 1920,
                "play_addr": {
                    "uri": "v0200fg10000abc",
                    "url_list": ["https://aweme.snssdk.com/aweme/v1/playwm/?video_id=v0200fg10000abc"],
                },
                "bit_rate": [
                    {"bit_rate": 1000, "play_addr": {"url_list": ["https://v26.douyinvod.com/a/low.mp4"]}},
                    {"bit_rate": 2000, "play_addr": {"url_list": ["https://v26.douyinvod.com/a/high.mp4"]}},
                ],
                "cover": {"url_list": ["https://p3.douyinpic.com/tos-cn-i-0813/cover.jpeg"]},
            },
            "music": {"play_url": {"url_list": ["https://sf3.douyinvod.com/obj/music.mp3"]}},
        }
        seen = []
        routes = {self.ITEMINFO: {"json": {"item_list": [item]}}}
        result = _parse(DouyinParser, routes, self.URL, seen=seen, cookie="sid=1")

        assert result.video_urls == [
            NO_WATERMARK_PLAY.format(vid="v0200fg10000abc"),
            "https://v26.douyinvod.com/a/high.mp4",
            "https://sf3.douyinvod.com/obj/music.mp3" + AUDIO_MARKER,
        ]
        assert result.image_urls == ["https://p3.douyinpic.com/tos-cn-i-0813/cover.jpeg"]
        assert result.media_type == MediaType.MP4
        assert result.title == "Dancing"
        assert result.author == "Dave"
        assert result.publish_timestamp == _stamp(1704164645)

        api_request = seen[0]
        assert api_request.url.params["item_ids"] == self.AWEME_ID
        assert api_request.headers["cookie"] == "sid=1"
        assert api_request.headers["referer"] == f"https://www.iesdouyin.com/share/video/{self.AWEME_ID}/"

    def test_page_video_tag_gets_play_variant_first(self):
        page = (
            "<html><body>"
            '<video src="https://v3-web.douyinvod.com/video/playwm/abc.mp4?x=1"></video>'
            "</body></html>"
        )
        routes = {f"www.douyin.com/video/{self.AWEME_ID}": {"text": page}}
        result = _parse(DouyinParser, routes, self.URL)

        assert result.video_urls == [
            "https://v3-web.douyinvod.com/video/play/abc.mp4?x=1",
            "https://v3-web.douyinvod.com/video/playwm/abc.mp4?x=1",
        ]
        assert result.title == "Douyin post"

    def test_router_data_image_post(self):
        note_id = "7300000000000000002"
        state = {
            "loaderData": {
                "note_(id)/page": {
                    "videoInfoRes": {
                        "item_list": [
                            {
                                "aweme_type": 2,
                                "desc": "Gallery",
                                "images": [
                                    {"url_list": ["https://p3.douyinpic.com/tos-cn-i-0813/one.jpeg"]},
                                    {"url_list": ["https://p3.douyinpic.com/tos-cn-i-0813/two.jpeg"]},
                                ],
                            }
                        ]
                    }
                }
            }
        }
        page = f"<script>window._ROUTER_DATA = {json.dumps(state)};</script>"
        routes = {f"www.douyin.com/note/{note_id}": {"text": page}}
        result = _parse(DouyinParser, routes, f"https://www.douyin.com/note/{note_id}")

        assert result.image_urls == [
            "https://p3.douyinpic.com/tos-cn-i-0813/one.jpeg",
            "https://p3.douyinpic.com/tos-cn-i-0813/two.jpeg",
        ]
        assert result.video_urls == []
        assert result.title == "Gallery"

    def test_router_data_with_non_finite_numbers(self):
        page = (
            "<script>window._ROUTER_DATA = {\"loaderData\": {\"video_(id)/page\": {\"videoInfoRes\": "
            "{\"item_list\": [{\"aweme_type\": 4, \"desc\": \"Odd numbers\", \"video\": {"
            "\"width\": Infinity, \"height\": NaN, \"play_addr\": {\"uri\": \"v0200fg10000inf\"}, "
            "\"bit_rate\": [{\"bit_rate\": -Infinity, \"play_addr\": "
            "{\"url_list\": [\"https://v26.douyinvod.com/a/high.mp4\"]}}]}}]}}}};</script>"
        )
        routes = {f"www.douyin.com/video/{self.AWEME_ID}": {"text": page}}
        result = _parse(DouyinParser, routes, self.URL)

        assert result.video_urls[0] == NO_WATERMARK_PLAY.format(vid="v0200fg10000inf")
        assert "https://v26.douyinvod.com/a/high.mp4" in result.video_urls
        assert result.title == "Odd numbers"


class TestWeibo:
    MID = "NabcDEF12"
    URL = f"https://weibo.com/1234567890/{MID}"

    def test_mobile_api(self):
        status = {
            "created_at": "Tue Jan 02 03:04:05 +0800 2024",
            "user": {"screen_name": "Alice"},
            "text": 'Hello <a href="/t">#tag#</a>',
            "pics": [
                {"large": {"url": "https://wx1.sinaimg.cn/large/a.jpg"}},
                {"url": "https://wx1.sinaimg.cn/orj360/b.jpg"},
            ],
            "page_info": {
                "media_info": {
                    "playback_list": [
                        {
                            "meta": {"quality_index": 1},
                            "play_info": {"url": "https://f.video.weibocdn.com/720.mp4?a=1", "mime": "video/mp4"},
                        },
                        {
                            "meta": {"quality_index": 2},
                            "play_info": {"url": "https://f.video.weibocdn.com/1080.mp4?a=1", "mime": "video/mp4"},
                        },
                    ]
                }
            },
        }
        routes = {"m.weibo.cn/statuses/show": {"json": {"ok": 1, "data": status}}}
        result = _parse(WeiboParser, routes, self.URL)

        assert result.image_urls == ["https://wx1.sinaimg.cn/large/a.jpg", "https://wx1.sinaimg.cn/orj360/b.jpg"]
        assert result.video_urls == ["https://f.video.weibocdn.com/1080.mp4?a=1"]
        assert result.title == "Hello #tag#"
        assert result.author == "Alice"
        assert result.publish_timestamp.startswith("2024010")

    def test_cookie_api_fallback_sends_xsrf_token(self):
        status = {
            "text_raw": "Long post",
            "pic_ids": ["p1"],
            "pic_infos": {"p1": {"largest": {"url": "https://wx2.sinaimg.cn/large/p1.jpg"}}},
        }
        seen = []
        routes = {
            "m.weibo.cn/statuses/show": {"json": {"ok": 0, "msg": "login required"}},
            "weibo.com/ajax/statuses/show": {"json": status},
        }
        result = _parse(WeiboParser, routes, self.URL, seen=seen, cookie="SUB=abc; XSRF-TOKEN=tok")

        assert result.image_urls == ["https://wx2.sinaimg.cn/large/p1.jpg"]
        assert result.title == "Long post"
        ajax = next(request for request in seen if request.url.path == "/ajax/statuses/show")
        assert ajax.headers["x-xsrf-token"] == "tok"
        assert ajax.headers["cookie"] == "SUB=abc; XSRF-TOKEN=tok"

    def test_without_mid(self):
        result = _parse(WeiboParser, {}, "https://weibo.com/")
        assert not result.has_media


class TestWeChat:
    URL = "https://mp.weixin.qq.com/s/AbCdEf"

    def test_article_images_from_data_src(self):
        page = """
        <html><head><meta property="og:title" content="Spring Trip">
        <meta property="og:image" content="https://mmbiz.qpic.cn/cover/0"></head>
        <body>
        <em id="publish_time">2024-01-02 03:04:05</em>
        <script>var nickname = htmlDecode("Travel &amp; Co");</script>
        <div id="js_content">
          <img data-src="https://mmbiz.qpic.cn/a/640?wx_fmt=jpeg" src="data:image/gif;base64,R0lGOD">
          <img src="https://mmbiz.qpic.cn/b/640">
        </div>
        </body></html>
        """
        routes = {"mp.weixin.qq.com/s/AbCdEf": {"text": page}}
        result = _parse(WeChatParser, routes, self.URL)

        assert result.image_urls == ["https://mmbiz.qpic.cn/a/640?wx_fmt=jpeg", "https://mmbiz.qpic.cn/b/640"]
        assert result.title == "Spring Trip"
        assert result.author == "Travel & Co"
        assert result.publish_timestamp == "20240102030405"

        cover = _parse(WeChatParser, routes, self.URL, mode=ParseMode.COVER_IMAGE)
        assert cover.image_urls == ["https://mmbiz.qpic.cn/cover/0"]

    def test_picture_page_list(self):
        page = (
            "<html><body><script>"
            r"""var picturePageInfoList = "[{'cdn_url': 'https://mmbiz.qpic.cn/p1/0?wx_fmt=jpeg\x26amp;from=appmsg'},"""
            r"""{'cdn_url': 'https://mmbiz.qpic.cn/p2/0'},]";"""
            "</script></body></html>"
        )
        routes = {"mp.weixin.qq.com/s/AbCdEf": {"text": page}}
        result = _parse(WeChatParser, routes, self.URL)

        assert result.image_urls == [
            "https://mmbiz.qpic.cn/p1/0?wx_fmt=jpeg&from=appmsg",
            "https://mmbiz.qpic.cn/p2/0",
        ]
        assert result.title == "WeChat article"


def test_kuaishou_photo_block_with_atlas():
    state = {
        "tuple": {
            "photo": {
                "caption": "Sunset",
                "userName": "Bob",
                "timestamp": 1704164645000,
                "mainMvUrls": [{"url": "https://v2.kwaicdn.com/upic/a.mp4?tag=1"}],
                "coverUrls": [{"url": "https://p2.a.yximgs.com/upic/cover.jpg"}],
            },
            "atlas": {"cdn": ["p5.a.yximgs.com"], "list": ["/ufile/atlas/1.jpg", "/ufile/atlas/2.webp"]},
        }
    }
    page = f"<html><script>window.INIT_STATE = {json.dumps(state)};</script></html>"
    routes = {"www.kuaishou.com/short-video/3xabc": {"text": page}}
    result = _parse(KuaishouParser, routes, "https://www.kuaishou.com/short-video/3xabc")

    assert result.video_urls == ["https://v2.kwaicdn.com/upic/a.mp4?tag=1"]
    assert result.image_urls == [
        "https://p2.a.yximgs.com/upic/cover.jpg",
        "https://p5.a.yximgs.com/ufile/atlas/1.jpg",
        "https://p5.a.yximgs.com/ufile/atlas/2.webp",
    ]
    assert result.title == "Sunset"
    assert result.author == "Bob"
    assert result.publish_timestamp == _stamp(1704164645)


class TestBilibili:
    BVID = "BV1xx411c7mD"
    URL = f"https://www.bilibili.com/video/{BVID}"

    def _routes(self, playurl):
        view = {
            "code": 0,
            "data": {
                "title": "Cooking",
                "owner": {"name": "Eve"},
                "pubdate": 1704164645,
                "pic": "http://i0.hdslb.com/bfs/archive/cover.jpg",
                "cid": 123,
            },
        }
        return {
            "api.bilibili.com/x/web-interface/view": {"json": view},
            "api.bilibili.com/x/player/playurl": playurl,
        }

    def test_durl_progressive_stream(self):
        def playurl(request):
            assert request.url.params["cid"] == "123"
            return httpx.Response(200, json={"code": 0, "data": {"durl": [{"url": "https://upos-sz.bilivideo.com/v.mp4"}]}})

        seen = []
        result = _parse(BilibiliParser, self._routes(playurl), self.URL, seen=seen, cookie="SESSDATA=x")

        assert result.image_urls == ["https://i0.hdslb.com/bfs/archive/cover.jpg"]
        assert result.video_urls == ["https://upos-sz.bilivideo.com/v.mp4"]
        assert result.title == "Cooking"
        assert result.author == "Eve"
        assert all(request.headers["cookie"] == "SESSDATA=x" for request in seen)

    def test_dash_streams_with_audio_track(self):
        dash = {
            "video": [
                {"baseUrl": "https://upos-sz.bilivideo.com/v720.m4s", "height": 720, "bandwidth": 1000},
                {"baseUrl": "https://upos-sz.bilivideo.com/v1080.m4s", "height": 1080, "bandwidth": 900},
            ],
            "audio": [
                {"baseUrl": "https://upos-sz.bilivideo.com/a1.m4s", "bandwidth": 100},
                {"base_url": "https://upos-sz.bilivideo.com/a2.m4s", "bandwidth": 300},
            ],
        }

        def playurl(request):
            if request.url.params["fnval"] == "0":
                return httpx.Response(200, json={"code": -404, "message": "nope"})
            return httpx.Response(200, json={"code": 0, "data": {"dash": dash}})

        result = _parse(BilibiliParser, self._routes(playurl), self.URL)

        assert result.video_urls == [
            "https://upos-sz.bilivideo.com/v1080.m4s",
            "https://upos-sz.bilivideo.com/a2.m4s" + AUDIO_MARKER,
        ]

    def test_cover_mode_stops_after_cover(self):
        seen = []
        result = _parse(
            BilibiliParser, self._routes({"json": {}}), self.URL, seen=seen, mode=ParseMode.COVER_IMAGE
        )
        assert result.image_urls == ["https://i0.hdslb.com/bfs/archive/cover.jpg"]
        assert [request.url.path for request in seen] == ["/x/web-interface/view"]


def test_scoped_cookie_header():
    headers = HttpTransport.scoped_headers(
        "https://cdn.example.com/x.jpg", {"Accept": "*/*"}, cookie="a=b", cookie_domains=("weibo.com",)
    )
    assert headers == {"Accept": "*/*"}
    assert HttpTransport.scoped_headers("https://m.weibo.cn/x", cookie="a=b", cookie_domains=("weibo.cn",)) == {
        "Cookie": "a=b"
    }
    assert HttpTransport.scoped_headers("https://a.com/", cookie="a=b") == {"Cookie": "a=b"}
