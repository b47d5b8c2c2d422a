"""
Utility Functions
Base-URL handling, screenshot naming, and selector helpers.
"""

import logging
from urllib.parse import urlparse, urlsplit, urlunsplit

logger = logging.getLogger(__name__)


def is_valid_url(url: str) -> bool:
    """Check if URL is valid."""
    try:
        parsed = urlparse(url)
        return all([parsed.scheme in ('http', 'https'), parsed.netloc])
    except Exception:
        return False


def strip_default_port(netloc: str, scheme: str) -> str:
    """Remove ``:80`` for http and ``:443`` for https from *netloc*."""
    if ':' not in netloc:
        return netloc
    host, _, port = netloc.rpartition(':')
    if scheme == 'http' and port == '80':
        return host
    if scheme == 'https' and port == '443':
        return host
    return netloc


def normalize_base_url(url: str) -> str:
    """
    Normalize a user-supplied base URL for prefix comparisons.

    Adds ``https://`` when no scheme is given, lower-cases scheme and host,
    drops the default port and strips trailing slashes.  The result is the
    same origin string the browser reports in request URLs, so that
    ``base + path`` yields a well-formed URL for any ``/``-prefixed path
    and same-origin checks can compare prefixes.

    Args:
        url: Base URL as typed by the user or read from ``BASE_URL``

    Returns:
        Canonical base URL without a trailing slash

    Raises:
        ValueError: If the result is not an http(s) URL with a host

    Examples:
        "example.com"                -> "https://example.com"
        "https://Example.com:443/"   -> "https://example.com"
        "http://localhost:8080/app/" -> "http://localhost:8080/app"
    """
    url = (url or '').strip()
    if url and not url.lower().startswith(('http://', 'https://')):
        url = 'https://' + url
    url = url.rstrip('/')
    if not is_valid_url(url):
        raise ValueError(f"Invalid base URL: {url!r}")

    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    netloc = strip_default_port(parts.netloc.lower(), scheme)
    return urlunsplit((scheme, netloc, parts.path.rstrip('/'), parts.query, ''))


def slugify_path(page_path: str) -> str:
    """
    Flatten a page path into a filename-safe slug.

    ``/`` maps to ``homepage``; other paths have every ``/`` replaced by
    ``-`` and a single leading ``-`` removed.

    Examples:
        "/"              -> "homepage"
        "/about"         -> "about"
        "/blog/post-1"   -> "blog-post-1"
    """
    if page_path == '/':
        return 'homepage'
    slug = page_path.replace('/', '-')
    if slug.startswith('-'):
        slug = slug[1:]
    return slug


def screenshot_filename(page_path: str, viewport_name: str) -> str:
    """Deterministic artifact name: ``{viewport}-{slugified path}.png``."""
    return f"{viewport_name}-{slugify_path(page_path)}.png"


def is_xpath_selector(selector: str) -> bool:
    """Selectors starting with ``//`` or ``xpath=`` are XPath, anything else is CSS."""
    return selector.startswith('//') or selector.startswith('xpath=')


def normalize_xpath(selector: str) -> str:
    """Strip the ``xpath=`` engine prefix, if present."""
    return selector[len('xpath='):] if selector.startswith('xpath=') else selector
