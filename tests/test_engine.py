import hashlib
import threading
from pathlib import Path

import pytest

from depthcrawl.config import CrawlConfig
from depthcrawl.engine import Crawler
from depthcrawl.rate import RateLimiter
from depthcrawl.types import FetchResult, HttpClientProtocol


class StubHttp(HttpClientProtocol):
    """Serves a fixed site; unknown urls answer 404."""

    def __init__(self, pages):
        self.pages = pages
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, url: str) -> FetchResult | None:
        with self._lock:
            self.calls.append(url)
        page = self.pages.get(url)
        if page is None:
            return FetchResult(status=404, content_type="text/html", body=b"")
        if isinstance(page, int):
            return FetchResult(status=page, content_type="text/html", body=b"")
        return FetchResult(status=200, content_type="text/html", body=page.encode("utf-8"))


def make_crawler(tmp_path, http, **overrides) -> Crawler:
    params = dict(seed_url="http://example.com", base_dir=str(tmp_path / "crawl"), max_depth=3, delay_seconds=0.0)
    params.update(overrides)
    return Crawler(CrawlConfig(**params), http_client=http)


def run(crawler: Crawler) -> Crawler:
    crawler.run()
    crawler.close()
    return crawler


SCENARIO = {
    "http://example.com": '<a href="/p2">two</a><img src="img1.png">',
    "http://example.com/p2": '<a href="/p3">three</a>',
    "http://example.com/img1.png": "PNG",
    "http://example.com/p3": "end",
}


def test_depth_one_fetches_seed_and_its_links(tmp_path):
    http = StubHttp(SCENARIO)
    c = run(make_crawler(tmp_path, http, max_depth=1))
    assert http.calls == ["http://example.com", "http://example.com/p2", "http://example.com/img1.png"]
    c2 = make_crawler(tmp_path, StubHttp({}), max_depth=1)
    assert c2.index.exists("http://example.com/p3")
    assert not c2.index.is_visited("http://example.com/p3")
    assert c2.index.is_visited("http://example.com/img1.png")
    c2.close()


def test_depth_zero_fetches_only_the_seed(tmp_path):
    http = StubHttp(SCENARIO)
    c = run(make_crawler(tmp_path, http, max_depth=0))
    assert http.calls == ["http://example.com"]
    assert c.pages_crawled == 1
    idx = make_crawler(tmp_path, StubHttp({}), max_depth=0).index
    assert idx.exists("http://example.com/p2")
    assert idx.exists("http://example.com/img1.png")
    assert not idx.is_visited("http://example.com/p2")
    idx.close()


def test_traversal_is_depth_first(tmp_path):
    pages = {
        "http://example.com": '<a href="/a">a</a><a href="/b">b</a>',
        "http://example.com/a": '<a href="/c">c</a>',
        "http://example.com/b": "b",
        "http://example.com/c": "c",
    }
    http = StubHttp(pages)
    run(make_crawler(tmp_path, http))
    assert http.calls == [
        "http://example.com",
        "http://example.com/a",
        "http://example.com/c",
        "http://example.com/b",
    ]


def test_cycles_and_repeated_links_are_fetched_once(tmp_path):
    pages = {
        "http://example.com": '<a href="/a">a</a><a href="/a">again</a><a href="/">home</a>',
        "http://example.com/a": '<a href="http://example.com">back</a><a href="/a">self</a>',
        "http://example.com/": "home",
    }
    http = StubHttp(pages)
    run(make_crawler(tmp_path, http, max_depth=10))
    assert sorted(http.calls) == sorted(set(http.calls))
    assert http.calls == ["http://example.com", "http://example.com/a", "http://example.com/"]


def test_pages_are_stored_under_md5_names(tmp_path):
    http = StubHttp(SCENARIO)
    c = run(make_crawler(tmp_path, http, max_depth=1))
    base = Path(c.config.base_dir)
    for url in ["http://example.com", "http://example.com/p2", "http://example.com/img1.png"]:
        name = hashlib.md5(url.encode("utf-8")).hexdigest()
        assert (base / name).read_bytes() == SCENARIO[url].encode("utf-8")
    idx = make_crawler(tmp_path, StubHttp({}), max_depth=1).index
    rec = idx.get("http://example.com/p2")
    assert rec.content_path == str(base / hashlib.md5(b"http://example.com/p2").hexdigest())
    idx.close()


def test_failed_fetch_stays_unvisited_and_is_not_retried(tmp_path):
    pages = {
        "http://example.com": '<a href="/broken">x</a><a href="/ok">ok</a>',
        "http://example.com/broken": 500,
        "http://example.com/ok": '<a href="/broken">x</a>',
    }
    http = StubHttp(pages)
    c = run(make_crawler(tmp_path, http))
    assert http.calls.count("http://example.com/broken") == 1
    totals, _ = c.metrics.snapshot()
    assert totals.fetches == 3
    assert totals.errors == 1
    idx = make_crawler(tmp_path, StubHttp({}), max_depth=0).index
    assert idx.exists("http://example.com/broken")
    assert not idx.is_visited("http://example.com/broken")
    assert idx.get("http://example.com/broken").content_path is None
    idx.close()


def test_unresolvable_links_are_dropped(tmp_path):
    pages = {"http://example.com": '<a href="%zz">bad</a><a href="http://[::1">bad</a><a href="/ok">ok</a>', "http://example.com/ok": "ok"}
    http = StubHttp(pages)
    c = run(make_crawler(tmp_path, http))
    assert http.calls == ["http://example.com", "http://example.com/ok"]
    totals, _ = c.metrics.snapshot()
    assert totals.discovered == 2


def test_quote_characters_in_urls(tmp_path):
    pages = {
        "http://example.com": "<a href=\"/it's\">q</a>",
        "http://example.com/it's": "quoted",
    }
    http = StubHttp(pages)
    run(make_crawler(tmp_path, http))
    assert http.calls == ["http://example.com", "http://example.com/it's"]
    idx = make_crawler(tmp_path, StubHttp({})).index
    assert idx.is_visited("http://example.com/it's")
    idx.close()


def test_every_attempt_waits_for_the_rate_limiter(tmp_path):
    sleeps = []
    limiter = RateLimiter(0.25, now=lambda: 0.0, sleep=sleeps.append)
    pages = dict(SCENARIO)
    pages["http://example.com/p2"] = 404
    http = StubHttp(pages)
    cfg = CrawlConfig(seed_url="http://example.com", base_dir=str(tmp_path / "crawl"), max_depth=1, delay_seconds=0.25)
    c = Crawler(cfg, http_client=http, rate_limiter=limiter)
    run(c)
    assert len(sleeps) == len(http.calls) == 3


@pytest.mark.parametrize("use_bloom", [True, False])
def test_bloom_cache_does_not_change_results(tmp_path, use_bloom):
    http = StubHttp(SCENARIO)
    run(make_crawler(tmp_path, http, max_depth=2, use_bloom=use_bloom))
    assert sorted(http.calls) == sorted(SCENARIO)


def test_html_link_parser(tmp_path):
    pages = {
        "http://example.com": '<!-- <a href="/hidden"> --><a href="/shown">s</a>',
        "http://example.com/shown": "s",
        "http://example.com/hidden": "h",
    }
    http = StubHttp(pages)
    run(make_crawler(tmp_path, http, link_parser="html"))
    assert http.calls == ["http://example.com", "http://example.com/shown"]


def chain_site(total):
    pages = {}
    for i in range(total):
        links = "".join(f'<a href="/page/{j}">n</a>' for j in (i + 1, i + 2) if j < total)
        pages[f"http://example.com/page/{i}"] = links
    return pages


def test_concurrent_workers_fetch_each_url_once(tmp_path):
    total = 40
    http = StubHttp(chain_site(total))
    c = run(make_crawler(tmp_path, http, seed_url="http://example.com/page/0", max_depth=total, concurrency=4))
    assert len(http.calls) == total
    assert len(set(http.calls)) == total
    assert c.pages_crawled == total


def tree_site(total):
    pages = {}
    for i in range(total):
        links = "".join(f'<a href="/node/{j}">n</a>' for j in (2 * i + 1, 2 * i + 2) if j < total)
        pages[f"http://example.com/node/{i}"] = links
    return pages


def test_concurrent_workers_respect_depth(tmp_path):
    http = StubHttp(tree_site(31))
    run(make_crawler(tmp_path, http, seed_url="http://example.com/node/0", max_depth=2, concurrency=3))
    assert sorted(http.calls) == sorted(f"http://example.com/node/{i}" for i in range(7))


def test_crawler_creates_missing_base_dir(tmp_path):
    base = tmp_path / "deep" / "nested" / "crawl"
    c = make_crawler(tmp_path, StubHttp({}), base_dir=str(base))
    assert base.is_dir()
    assert (base / "sqlite.db").exists()
    c.close()
