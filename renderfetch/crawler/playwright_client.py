"""
Playwright-backed crawler client.

PlaywrightClient is the worker a crawler talks to. It turns a RequestData
into a ResponseData by loading the URL in a real browser, so JavaScript-built
pages come back rendered and files the browser downloads come back as
temp-file bodies.

Usage:
    async with PlaywrightClient(PlaywrightClientConfig(browser_name="firefox")) as client:
        with CrawlContext(url_filter=RegexUrlFilter(includes=[r"https://example\\.com/.*"])):
            response = await client.execute(RequestData.get("https://example.com/"))

The browser session is created lazily on first use (or by init()) and
released by close(). With shared_client=True every worker backed by the same
SessionRegistry reuses one browser and page.
"""

import asyncio
from typing import Any

from renderfetch.crawler.auth import AuthBootstrapper
from renderfetch.crawler.executor import RequestExecutor
from renderfetch.crawler.mime import MimeTypeHelper
from renderfetch.crawler.request_data import RequestData, ResponseData
from renderfetch.crawler.session import (
    BrowsingSession,
    SessionRegistry,
    get_session_registry,
)
from renderfetch.crawler.shutdown import ShutdownCoordinator
from renderfetch.utils.config import PlaywrightClientConfig, get_settings
from renderfetch.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class PlaywrightClient:
    """Crawler client that fetches URLs through a browser.

    Args:
        config: Client configuration. Defaults to the client section of the
            loaded settings.
        mime_type_helper: Optional MIME detector for response bodies.
        registry: Session registry. Defaults to the process-wide registry.
        bootstrapper: Context builder. Defaults to one whose HTTP client
            follows the TLS and proxy settings of config.
    """

    def __init__(
        self,
        config: PlaywrightClientConfig | None = None,
        *,
        mime_type_helper: MimeTypeHelper | None = None,
        registry: SessionRegistry | None = None,
        bootstrapper: AuthBootstrapper | None = None,
    ):
        self.config = config or get_settings().client
        self._registry = registry or get_session_registry()
        self._bootstrapper = bootstrapper or AuthBootstrapper(
            verify=not self.config.should_ignore_https_errors,
            proxy=self.config.build_http_proxy_url(),
        )
        self._executor = RequestExecutor(self.config, mime_type_helper)
        self._shutdown = ShutdownCoordinator(self.config.close_timeout)
        self._options: dict[str, str] = {}
        self._session: BrowsingSession | None = None
        self._init_lock = asyncio.Lock()

    def add_option(self, key: str, value: Any) -> None:
        """Add an environment variable for the browser process.

        Only takes effect for sessions created after the call.
        """
        self._options[key] = str(value)

    @property
    def options(self) -> dict[str, str]:
        return dict(self._options)

    @property
    def is_initialized(self) -> bool:
        return self._session is not None

    async def init(self, target_url: str | None = None) -> None:
        """Create (or join) the browser session. No-op when already initialized.

        Args:
            target_url: First URL to be crawled. Authentication entries without
                their own URL run their handshake against it.

        Raises:
            CrawlerSystemError: If the session cannot be created.
        """
        if self._session is not None:
            return

        async with self._init_lock:
            if self._session is not None:
                return

            logger.info(
                "Initializing Playwright client",
                browser_name=self.config.browser_name,
                shared=self.config.shared_client,
            )
            self._session = await self._registry.acquire(
                self.config,
                self._bootstrapper,
                env=self._options or None,
                shutdown=self._shutdown,
                target_url=target_url,
            )

    async def execute(self, request: RequestData) -> ResponseData:
        """Fetch one URL.

        Args:
            request: URL and method (GET or HEAD).

        Returns:
            Response with the final URL, status, headers and body.

        Raises:
            CrawlerSystemError: If the session cannot be created.
            CrawlingAccessError: If the URL cannot be accessed.
            ChildUrlNotTargetError: If a redirect leaves the crawl scope.
        """
        await self.init(request.url)
        session = self._session
        if session is None:
            raise RuntimeError("PlaywrightClient is not initialized")

        with LogContext(url=request.url, method=request.method.value):
            logger.debug("Executing request")
            response = await self._executor.execute(session, request)
            logger.debug(
                "Request completed",
                final_url=response.url,
                status=response.http_status_code,
                mime_type=response.mime_type,
                content_length=response.content_length,
            )
            return response

    async def close(self) -> None:
        """Release the browser session. Safe to call repeatedly."""
        async with self._init_lock:
            session = self._session
            if session is None:
                return
            self._session = None

        logger.info("Closing Playwright client", shared=session.shared)
        await self._registry.release(session, self._shutdown)

    async def __aenter__(self) -> "PlaywrightClient":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
