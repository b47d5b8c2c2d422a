"""
Tests for utils.py
"""

import pytest

from visual_baseline.utils import (
    is_xpath_selector,
    normalize_base_url,
    normalize_xpath,
    screenshot_filename,
    slugify_path,
)


@pytest.mark.parametrize("path,slug", [
    ("/", "homepage"),
    ("/about", "about"),
    ("/blog/post-1", "blog-post-1"),
    ("/a/b/c", "a-b-c"),
    ("/search?q=x", "search?q=x"),
])
def test_slugify_path(path, slug):
    assert slugify_path(path) == slug


def test_screenshot_filename():
    assert screenshot_filename("/", "desktop") == "desktop-homepage.png"
    assert screenshot_filename("/blog/post-1", "tablet-landscape") == "tablet-landscape-blog-post-1.png"


def test_filenames_unique_per_pair():
    names = {screenshot_filename(p, v) for p in ("/", "/about") for v in ("desktop", "mobile")}
    assert len(names) == 4


class TestBaseUrl:

    def test_strips_trailing_slash(self):
        assert normalize_base_url("https://example.com/") == "https://example.com"

    def test_adds_scheme(self):
        assert normalize_base_url("example.com") == "https://example.com"

    def test_keeps_base_path(self):
        assert normalize_base_url("http://localhost:8080/app/") == "http://localhost:8080/app"

    @pytest.mark.parametrize("typed,canonical", [
        ("https://Example.COM", "https://example.com"),
        ("https://example.com:443/", "https://example.com"),
        ("http://example.com:80", "http://example.com"),
        ("HTTPS://example.com", "https://example.com"),
        ("https://example.com:8443", "https://example.com:8443"),
        ("http://example.com:443", "http://example.com:443"),
        ("https://Example.com/Docs/", "https://example.com/Docs"),
    ])
    def test_canonical_origin(self, typed, canonical):
        assert normalize_base_url(typed) == canonical

    @pytest.mark.parametrize("bad", ["", "   ", "http://"])
    def test_invalid(self, bad):
        with pytest.raises(ValueError):
            normalize_base_url(bad)


def test_xpath_detection():
    assert is_xpath_selector("//div[@id='x']")
    assert is_xpath_selector("xpath=//aside")
    assert not is_xpath_selector(".banner")
    assert normalize_xpath("xpath=//aside") == "//aside"
    assert normalize_xpath("//aside") == "//aside"
