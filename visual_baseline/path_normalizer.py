"""
Path Normalizer
===============
Turns raw hyperlinks found during discovery into canonical, origin-relative
paths, or rejects them.

A path is the crawl-state key and the basis of every screenshot filename,
so two links that point at the same page must normalise identically:

- Relative links are resolved against the page they were found on
- Only links on the base origin are kept (scheme + host + port)
- Dot-segment resolution (``/a/../b`` → ``/b``)
- Fragment removal
- Percent-encoding normalisation (decode unreserved, no double-decode)
- Optional query-string stripping
- A single trailing slash is stripped (except root ``/``)
- Exclusion patterns: ``/prefix/*`` rejects by prefix, anything else
  rejects only the identical path

Public API
----------
- ``PathNormalizer.normalize(link)``: canonical path or ``None``
- ``PathNormalizer.is_blacklisted(p)``: exclusion-pattern check alone
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional
from urllib.parse import urljoin, urlsplit

from .utils import strip_default_port

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------
# RFC 3986 §2.3: unreserved characters that should be decoded
# -----------------------------------------------------------------------
_UNRESERVED_RE = re.compile(r"%([0-9A-Fa-f]{2})")

_UNRESERVED_CHARS = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
    "0123456789-._~"
)


def _decode_unreserved(path: str) -> str:
    """
    Decode percent-encoded *unreserved* characters only (RFC 3986 §2.3).

    Encoded reserved characters (``/``, ``?``, ``#``, ``&`` ...) keep their
    encoding, with the hex digits upper-cased.
    """

    def _replace(m: re.Match) -> str:
        char = chr(int(m.group(1), 16))
        if char in _UNRESERVED_CHARS:
            return char
        return f"%{m.group(1).upper()}"

    return _UNRESERVED_RE.sub(_replace, path)


def _remove_dot_segments(path: str) -> str:
    """Resolve ``.`` and ``..`` segments (RFC 3986 §5.2.4); ``/a/b/../c`` → ``/a/c``."""
    if "." not in path:
        return path
    trailing = path.endswith(("/.", "/.."))
    out: List[str] = []
    for segment in path.split("/"):
        if segment == ".":
            continue
        if segment == "..":
            if len(out) > 1:
                out.pop()
            continue
        out.append(segment)
    resolved = "/".join(out)
    if trailing:
        resolved += "/"
    return resolved if resolved.startswith("/") else "/" + resolved


class _Origin(NamedTuple):
    scheme: str
    netloc: str      # lower-cased, default port stripped
    path: str        # base path prefix without trailing slash ("" for a bare origin)


def _parse_origin(url: str) -> Optional[_Origin]:
    try:
        p = urlsplit(url)
    except ValueError:
        return None
    scheme = p.scheme.lower()
    if scheme not in ("http", "https") or not p.netloc:
        return None
    netloc = strip_default_port(p.netloc.lower(), scheme)
    return _Origin(scheme=scheme, netloc=netloc, path=p.path.rstrip("/"))


# -----------------------------------------------------------------------
# PathNormalizer
# -----------------------------------------------------------------------

@dataclass
class PathNormalizer:
    """
    Canonicalises discovered links for a single crawl.

    Parameters
    ----------
    base_url : str
        The site origin that defines crawl scope, e.g. ``https://example.com``.
    ignore_query_params : bool
        If True (default), query strings are dropped from paths.
    blacklist_patterns : list[str]
        Paths to exclude.  A pattern ending in ``/*`` excludes every path
        that starts with the text before ``/*`` (plain string prefix); any
        other pattern excludes only the identical path.
    """

    base_url: str = ""
    ignore_query_params: bool = True
    blacklist_patterns: List[str] = field(default_factory=list)

    _origin: Optional[_Origin] = field(init=False, repr=False, default=None)
    _prefixes: List[str] = field(init=False, repr=False, default_factory=list)
    _exact: frozenset = field(init=False, repr=False, default=frozenset())

    def __post_init__(self):
        self._origin = _parse_origin(self.base_url)
        if self._origin is None:
            logger.warning(f"[SCOPE] Could not parse base URL: {self.base_url}")

        prefixes, exact = [], set()
        for pattern in self.blacklist_patterns:
            if pattern.endswith("/*"):
                prefixes.append(pattern[:-2])
            else:
                exact.add(pattern)
        self._prefixes = prefixes
        self._exact = frozenset(exact)

    # ------------------------------------------------------------------
    # Primary API
    # ------------------------------------------------------------------

    def normalize(self, link: str) -> Optional[str]:
        """
        Return the canonical in-scope path for *link*, or ``None``.

        Never raises: malformed links are rejected like out-of-scope ones.
        """
        if self._origin is None or not isinstance(link, str) or not link.strip():
            return None

        try:
            absolute = urljoin(self.base_url + "/", link.strip())
            p = urlsplit(absolute)
            scheme = p.scheme.lower()
            netloc = strip_default_port(p.netloc.lower(), scheme)
        except ValueError:
            return None

        if scheme != self._origin.scheme or netloc != self._origin.netloc:
            return None

        path = _remove_dot_segments(_decode_unreserved(p.path or "/"))
        base_path = self._origin.path
        if base_path:
            if path != base_path and not path.startswith(base_path + "/"):
                return None
            path = path[len(base_path):] or "/"

        if path != "/" and path.endswith("/"):
            path = path[:-1]

        if self.is_blacklisted(path):
            return None

        if not self.ignore_query_params and p.query:
            path = f"{path}?{p.query}"
        return path

    def is_blacklisted(self, path: str) -> bool:
        """True if *path* matches one of the exclusion patterns."""
        if path in self._exact:
            return True
        return any(path.startswith(prefix) for prefix in self._prefixes)

    # ------------------------------------------------------------------
    # Logging / introspection
    # ------------------------------------------------------------------

    def log_scope(self) -> None:
        """Emit scope information to the logger."""
        host = self._origin.netloc if self._origin else "(unknown)"
        logger.info(f"[SCOPE] Origin: {host}")
        logger.info(f"[SCOPE] Query strings: {'stripped' if self.ignore_query_params else 'kept'}")
        if self.blacklist_patterns:
            logger.info(f"[SCOPE] Blacklist patterns: {len(self.blacklist_patterns)}")
