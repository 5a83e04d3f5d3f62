"""
URL filter hook for the crawl currently in progress.

The crawler owns the filtering policy. It makes its filter visible to the
browser client through a context variable, so redirected URLs can be checked
against the same scope without threading the filter through every call.
"""

import re
from contextvars import ContextVar, Token
from typing import Protocol, runtime_checkable


@runtime_checkable
class UrlFilter(Protocol):
    """Decides whether a URL belongs to the crawl."""

    def match(self, url: str) -> bool:
        ...


class RegexUrlFilter:
    """Include/exclude regular expression filter.

    A URL matches when it matches at least one include pattern (or no include
    patterns are configured) and none of the exclude patterns.
    """

    def __init__(
        self,
        includes: list[str] | None = None,
        excludes: list[str] | None = None,
    ):
        self._includes = [re.compile(p) for p in includes or []]
        self._excludes = [re.compile(p) for p in excludes or []]

    def match(self, url: str) -> bool:
        if self._includes and not any(p.match(url) for p in self._includes):
            return False
        return not any(p.match(url) for p in self._excludes)


_current_url_filter: ContextVar[UrlFilter | None] = ContextVar(
    "renderfetch_url_filter", default=None
)


def get_url_filter() -> UrlFilter | None:
    """URL filter of the current crawl context, if any."""
    return _current_url_filter.get()


class CrawlContext:
    """Context manager that installs a URL filter for the enclosed calls.

    Example:
        with CrawlContext(url_filter=RegexUrlFilter(includes=[r"https://example\\.com/.*"])):
            response = await client.execute(RequestData.get(url))
    """

    def __init__(self, url_filter: UrlFilter | None):
        self.url_filter = url_filter
        self._token: Token | None = None

    def __enter__(self) -> "CrawlContext":
        self._token = _current_url_filter.set(self.url_filter)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _current_url_filter.reset(self._token)
            self._token = None
