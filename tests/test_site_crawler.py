"""
Tests for site_crawler.py: BFS discovery over a fake site.
"""

import pytest

from fakes import FakePage, nav_error
from visual_baseline.run_config import CrawlConfig, ViewportConfig
from visual_baseline.site_crawler import CrawlState, SiteCrawler

BASE = "https://example.com"


def make_config(**kwargs):
    return CrawlConfig(viewports=[ViewportConfig("desktop", 1280, 720)], **kwargs)


THREE_PAGE_SITE = {
    f"{BASE}/": (200, [f"{BASE}/about", "https://other.com/x", "mailto:hi@example.com"]),
    f"{BASE}/about": (200, [f"{BASE}/contact", f"{BASE}/", f"{BASE}/about/"]),
    f"{BASE}/contact": (200, [f"{BASE}/about#team"]),
}


class TestCrawlState:

    def test_starts_at_root(self):
        state = CrawlState()
        assert list(state.queue) == ["/"]
        assert state.visited == set()

    def test_enqueue_skips_visited(self):
        state = CrawlState()
        state.visited.add("/a")
        assert state.enqueue("/a") is False
        assert state.enqueue("/b") is True
        assert list(state.queue) == ["/", "/b"]


class TestSiteCrawler:

    @pytest.mark.asyncio
    async def test_three_page_site(self):
        page = FakePage(site=THREE_PAGE_SITE)
        paths = await SiteCrawler(BASE, make_config()).crawl(page)
        assert paths == ["/", "/about", "/contact"]

    @pytest.mark.asyncio
    async def test_never_visits_twice(self):
        page = FakePage(site=THREE_PAGE_SITE)
        await SiteCrawler(BASE, make_config()).crawl(page)
        urls = [g["url"] for g in page.gotos]
        assert len(urls) == len(set(urls))

    @pytest.mark.asyncio
    async def test_output_sorted_and_unique(self):
        site = {
            f"{BASE}/": (200, [f"{BASE}/zeta", f"{BASE}/alpha", f"{BASE}/zeta/"]),
            f"{BASE}/zeta": (200, [f"{BASE}/alpha"]),
            f"{BASE}/alpha": (200, []),
        }
        paths = await SiteCrawler(BASE, make_config()).crawl(FakePage(site=site))
        assert paths == ["/", "/alpha", "/zeta"]

    @pytest.mark.asyncio
    async def test_non_ok_page_dropped_and_not_followed(self):
        site = {
            f"{BASE}/": (200, [f"{BASE}/broken", f"{BASE}/ok"]),
            f"{BASE}/broken": (500, [f"{BASE}/secret"]),
            f"{BASE}/ok": (200, []),
        }
        crawler = SiteCrawler(BASE, make_config())
        paths = await crawler.crawl(FakePage(site=site))
        assert paths == ["/", "/ok"]
        assert "/broken" in crawler.state.visited
        assert "/secret" not in crawler.state.visited

    @pytest.mark.asyncio
    async def test_missing_page_dropped(self):
        site = {f"{BASE}/": (200, [f"{BASE}/gone"])}
        paths = await SiteCrawler(BASE, make_config()).crawl(FakePage(site=site))
        assert paths == ["/"]

    @pytest.mark.asyncio
    async def test_navigation_exception_does_not_abort(self):
        site = {
            f"{BASE}/": (200, [f"{BASE}/slow", f"{BASE}/fine"]),
            f"{BASE}/slow": nav_error("Timeout 30000ms exceeded."),
            f"{BASE}/fine": (200, []),
        }
        paths = await SiteCrawler(BASE, make_config()).crawl(FakePage(site=site))
        assert paths == ["/", "/fine"]

    @pytest.mark.asyncio
    async def test_discovered_subset_of_visited(self):
        site = {
            f"{BASE}/": (200, [f"{BASE}/a", f"{BASE}/b"]),
            f"{BASE}/a": (404, []),
            f"{BASE}/b": (200, []),
        }
        crawler = SiteCrawler(BASE, make_config())
        await crawler.crawl(FakePage(site=site))
        assert crawler.state.discovered <= crawler.state.visited
        assert crawler.state.visited == {"/", "/a", "/b"}

    @pytest.mark.asyncio
    async def test_blacklisted_paths_not_visited(self):
        site = {
            f"{BASE}/": (200, [f"{BASE}/admin/users", f"{BASE}/blog"]),
            f"{BASE}/admin/users": (200, []),
            f"{BASE}/blog": (200, []),
        }
        config = make_config(blacklist_patterns=["/admin/*"])
        page = FakePage(site=site)
        paths = await SiteCrawler(BASE, config).crawl(page)
        assert paths == ["/", "/blog"]
        assert f"{BASE}/admin/users" not in [g["url"] for g in page.gotos]

    @pytest.mark.asyncio
    async def test_navigation_options(self):
        page = FakePage(site={f"{BASE}/": (200, [])})
        await SiteCrawler(BASE, make_config(timeout=12345)).crawl(page)
        assert page.gotos == [
            {"url": f"{BASE}/", "timeout": 12345, "wait_until": "networkidle"},
        ]

    @pytest.mark.asyncio
    async def test_governor_scoped_to_crawl(self):
        page = FakePage(site={f"{BASE}/": (200, [])})
        await SiteCrawler(BASE, make_config()).crawl(page)
        assert page.routes == []

    @pytest.mark.asyncio
    async def test_each_crawl_starts_fresh(self):
        crawler = SiteCrawler(BASE, make_config())
        first = await crawler.crawl(FakePage(site=THREE_PAGE_SITE))
        second = await crawler.crawl(FakePage(site=THREE_PAGE_SITE))
        assert first == second == ["/", "/about", "/contact"]
