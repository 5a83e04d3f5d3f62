"""
renderfetch Crawler Module.

Provides the Playwright-backed client, its request/response model and the
error taxonomy callers handle.
"""

from renderfetch.crawler.auth import (
    AuthBootstrapper,
    CookieData,
)

from renderfetch.crawler.errors import (
    ChildUrlNotTargetError,
    CrawlerError,
    CrawlerSystemError,
    CrawlingAccessError,
)

from renderfetch.crawler.mime import (
    MimeTypeHelper,
    SignatureMimeTypeHelper,
)

from renderfetch.crawler.playwright_client import PlaywrightClient

from renderfetch.crawler.request_data import (
    RequestData,
    RequestMethod,
    ResponseData,
    TempFileBody,
)

from renderfetch.crawler.session import (
    BrowserEngine,
    BrowsingSession,
    SessionRegistry,
    get_session_registry,
    reset_session_registry,
)

from renderfetch.crawler.url_filter import (
    CrawlContext,
    RegexUrlFilter,
    UrlFilter,
)

__all__ = [
    # Client
    "PlaywrightClient",
    # Request/response
    "RequestData",
    "RequestMethod",
    "ResponseData",
    "TempFileBody",
    # Errors
    "CrawlerError",
    "CrawlerSystemError",
    "CrawlingAccessError",
    "ChildUrlNotTargetError",
    # Sessions
    "BrowserEngine",
    "BrowsingSession",
    "SessionRegistry",
    "get_session_registry",
    "reset_session_registry",
    # Authentication
    "AuthBootstrapper",
    "CookieData",
    # Collaborators
    "MimeTypeHelper",
    "SignatureMimeTypeHelper",
    "UrlFilter",
    "RegexUrlFilter",
    "CrawlContext",
]
